import logging

import dagster as dg
import pandas as pd
import pytest
import pytest_check as check

logging.getLogger("dagster").setLevel(logging.WARNING)
logging.getLogger("dagster._core").setLevel(logging.ERROR)
logging.getLogger("dagster._utils").setLevel(logging.ERROR)

from pushdown.cli import main
from pushdown.defs.assets.model import coefficient_table_check, delay_model
from pushdown.defs.assets.sample import flight_sample
from pushdown.defs.assets.scores import delay_scores, partitions_disjoint_check
from pushdown.defs.errors import PartitionOverlapError
from pushdown.defs.jobs import delay_model_job
from pushdown.defs.settings import StoreResource, WorkflowSettings
from pushdown.defs.store import StoreParams, connect
from pushdown.defs.workflow import fit_delay_model, scoring_query, training_query

from conftest import TRUE_DEPDELAY, TRUE_DISTANCE


def settings(**overrides) -> WorkflowSettings:
  values = {"sample_fraction": 0.5, "seed": 11}
  values.update(overrides)
  return WorkflowSettings(**values)


def test_training_sample_only_holds_training_years(store):
  sample = training_query(store, settings()).collect()
  assert len(sample) > 0
  assert sample["year"].between(2003, 2007).all()
  assert sample["depdelay"].between(15, 240, inclusive="neither").all()
  assert sample["arrdelay"].notna().all()
  assert (sample["gain"] == sample["depdelay"] - sample["arrdelay"]).all()


def test_workflow_end_to_end(store):
  cfg = settings()
  sample = training_query(store, cfg).collect()
  model = fit_delay_model(sample, cfg)
  check.almost_equal(model.coefficients["depdelay"], TRUE_DEPDELAY, abs=0.01)
  check.almost_equal(model.coefficients["distance"], TRUE_DISTANCE, abs=0.001)

  scores = scoring_query(store, cfg, model).collect()
  assert list(scores.columns) == ["description", "gain", "predicted", "n"]
  by_label = scores.set_index("description")
  # Zed Air only flies in the test year, nothing to score it with
  assert pd.isna(by_label.loc["Zed Air", "predicted"])
  for label in ["American", "Delta", "Southwest", "United"]:
    check.almost_equal(by_label.loc[label, "predicted"], by_label.loc[label, "gain"], abs=1.0)


def test_overlapping_years_stop_scoring(store):
  cfg = settings(test_start_year=2007)
  model = fit_delay_model(training_query(store, cfg).collect(), cfg)
  with pytest.raises(PartitionOverlapError):
    scoring_query(store, cfg, model)


def test_scores_by_carrier_code_without_carriers_table(store):
  cfg = settings(carriers_table=None)
  model = fit_delay_model(training_query(store, cfg).collect(), cfg)
  scores = scoring_query(store, cfg, model).collect()
  assert scores["uniquecarrier"].tolist() == ["AA", "DL", "UA", "WN", "ZZ"]


def test_sample_asset_alone(flights_db):
  result = dg.materialize([flight_sample],
                          resources={
                            "store": StoreResource(database=flights_db),
                            "settings": settings(),
                          })
  assert result.success
  sample = result.output_for_node("flight_sample")
  check.greater(len(sample), 0)
  check.equal(list(sample.columns),
              ["year", "depdelay", "arrdelay", "distance", "uniquecarrier", "gain"])
  mat = result.asset_materializations_for_node("flight_sample")[0]
  check.equal(mat.metadata["rows"].value, len(sample))


def test_delay_model_job(flights_db):
  resources = {
    "store": StoreResource(database=flights_db),
    "settings": settings(),
    "io_manager": dg.mem_io_manager,
  }
  defs = dg.Definitions(
    assets=[flight_sample, delay_model, delay_scores],
    asset_checks=[coefficient_table_check, partitions_disjoint_check],
    jobs=[delay_model_job],
    resources=resources,
  )
  result = defs.resolve_job_def("delay_model_job").execute_in_process()
  assert result.success

  sample = result.output_for_node("flight_sample")
  assert sample["year"].max() <= 2007
  scores = result.output_for_node("delay_scores")
  assert len(scores) == 5

  evaluations = result.get_asset_check_evaluations()
  assert {e.check_name for e in evaluations} == {
    "coefficient_table_check", "partitions_disjoint_check"
  }
  assert all(e.passed for e in evaluations)


def test_cli_lists_tables(flights_db, capsys):
  main(["-d", flights_db, "tables"])
  out = capsys.readouterr().out.split()
  assert sorted(out) == ["carriers", "flights"]


def test_cli_renders_training_sql(flights_db, capsys):
  main(["-d", flights_db, "render"])
  sql = capsys.readouterr().out
  assert "random()" in sql
  assert 'FROM "flights"' in sql


def test_cli_reports_missing_tables(tmp_path, capsys):
  db = tmp_path / "empty.duckdb"
  connect(StoreParams(database=str(db))).close()
  with pytest.raises(SystemExit) as exit_info:
    main(["-d", str(db), "run", "--fraction", "0.5"])
  assert exit_info.value.code == 1
  assert "NotFoundError" in capsys.readouterr().err


def test_cli_writes_sql_to_file(flights_db, tmp_path, capsys):
  out = tmp_path / "sql" / "sample.sql"
  main(["-d", flights_db, "render", "-o", str(out)])
  assert "Rendered to:" in capsys.readouterr().out
  assert out.read_text().startswith("SELECT")
