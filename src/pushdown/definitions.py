import dagster as dg

from pushdown.defs.assets.model import coefficient_table_check, delay_model
from pushdown.defs.assets.sample import flight_sample
from pushdown.defs.assets.scores import delay_scores, partitions_disjoint_check
from pushdown.defs.jobs import delay_model_job
from pushdown.defs.resources import resources

defs = dg.Definitions(
  assets=[flight_sample, delay_model, delay_scores],
  asset_checks=[coefficient_table_check, partitions_disjoint_check],
  jobs=[delay_model_job],
  resources=resources,
)
