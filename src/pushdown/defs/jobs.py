import dagster as dg

# ---- Jobs (asset selections) ----
delay_model_job = dg.define_asset_job(
  name="delay_model_job",
  description="Sample the training years, fit the delay model and score the test years",
  selection=dg.AssetSelection.groups("delays"),
  # one store connection at a time
  executor_def=dg.multiprocess_executor.configured({"max_concurrent": 1}),
)
