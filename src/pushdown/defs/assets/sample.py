import dagster as dg
import numpy as np
import pandas as pd

from pushdown.defs.display import preview
from pushdown.defs.settings import StoreResource, WorkflowSettings
from pushdown.defs.workflow import training_query


@dg.asset(
  name="flight_sample",
  group_name="delays",
  compute_kind="duckdb",
  tags={"stage": "sample"},
)
def flight_sample(context, store: StoreResource, settings: WorkflowSettings) -> dg.Output:
  """
    Pull an approximate `sample_fraction` of the training years into memory.
    Filtering and the random draw both happen in the store; only the sampled
    rows come back.
  """
  rng = np.random.default_rng(settings.seed) if settings.seed is not None else None
  with store.get_store() as st:
    query = training_query(st, settings, rng)
    sql = query.render()
    context.log.info(f"Sampling {settings.sample_fraction:.2%} of {settings.flights_table}")
    sample: pd.DataFrame = query.collect()

  context.log.info(f"Sample holds {len(sample):,} rows")
  return dg.Output(
    value=sample,
    metadata={
      "rows": len(sample),
      "sample_fraction": settings.sample_fraction,
      "sql": dg.MetadataValue.md(f"```sql\n{sql}\n```"),
      "preview": dg.MetadataValue.md(f"```\n{preview(sample)}\n```"),
    },
  )
