import dagster as dg
import pandas as pd

from pushdown.defs.display import preview
from pushdown.defs.model import FittedModel
from pushdown.defs.settings import StoreResource, WorkflowSettings
from pushdown.defs.workflow import flights, scoring_query, test_predicate, train_predicate


@dg.asset(
  name="delay_scores",
  group_name="delays",
  compute_kind="duckdb",
  ins={"delay_model": dg.AssetIn()},
  tags={"stage": "score"},
)
def delay_scores(context, delay_model: FittedModel, store: StoreResource,
                 settings: WorkflowSettings) -> dg.Output:
  """
    Score the test years in the store and bring back only the per-carrier
    averages of observed and predicted gain.
  """
  with store.get_store() as st:
    query = scoring_query(st, settings, delay_model)
    sql = query.render()
    context.log.info("Scoring test partition remotely")
    scores: pd.DataFrame = query.collect()

  unmatched = int(scores["predicted"].isna().sum())
  if unmatched:
    context.log.warning(f"{unmatched} label(s) had no carriers seen in training")
  return dg.Output(
    value=scores,
    metadata={
      "rows": len(scores),
      "unscored_labels": unmatched,
      "sql": dg.MetadataValue.md(f"```sql\n{sql}\n```"),
      "preview": dg.MetadataValue.md(f"```\n{preview(scores)}\n```"),
    },
  )


@dg.asset_check(
  asset=delay_scores,
  name="partitions_disjoint_check",
  description="No flight is in both the train and the test years",
)
def partitions_disjoint_check(context, store: StoreResource, settings: WorkflowSettings):
  with store.get_store() as st:
    overlap = (flights(st, settings)
               .filter(train_predicate(settings))
               .filter(test_predicate(settings))
               .count())
  return dg.AssetCheckResult(
    passed=(overlap == 0),
    severity=dg.AssetCheckSeverity.ERROR,
    metadata={"overlapping_rows": overlap},
  )
