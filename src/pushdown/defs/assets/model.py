import dagster as dg
import pandas as pd

from pushdown.defs.model import FittedModel, coefficient_table, score_column
from pushdown.defs.settings import WorkflowSettings
from pushdown.defs.workflow import fit_delay_model


@dg.asset(
  name="delay_model",
  group_name="delays",
  compute_kind="numpy",
  ins={"flight_sample": dg.AssetIn()},
  tags={"stage": "fit"},
)
def delay_model(context, flight_sample: pd.DataFrame, settings: WorkflowSettings) -> dg.Output:
  """Fit gain ~ depdelay + distance + carrier on the local sample."""
  model = fit_delay_model(flight_sample, settings)
  summary = model.summary()
  context.log.info(f"Model: {summary}")
  return dg.Output(
    value=model,
    metadata={
      "n_obs": model.n_obs,
      "r_squared": model.r_squared,
      "categories": len(model.category_effects),
      "coefficients": dg.MetadataValue.json(summary),
    },
  )


@dg.asset_check(
  asset=delay_model,
  name="coefficient_table_check",
  description="One coefficient row per carrier seen, reference carrier scored 0",
)
def coefficient_table_check(context, delay_model: FittedModel):
  lookup = coefficient_table(delay_model)
  key = delay_model.categorical
  duplicated = int(lookup[key].duplicated().sum())
  reference_rows = lookup.loc[lookup[key] == delay_model.reference, score_column(key)]
  reference_zero = len(reference_rows) == 1 and float(reference_rows.iloc[0]) == 0.0
  return dg.AssetCheckResult(
    passed=(duplicated == 0 and reference_zero),
    severity=dg.AssetCheckSeverity.ERROR,
    metadata={
      "rows": len(lookup),
      "duplicated_categories": duplicated,
      "reference": str(delay_model.reference),
      "reference_scored_zero": reference_zero,
    },
  )
