import pandas as pd
import pytest

from pushdown.defs.errors import PartitionOverlapError
from pushdown.defs.expr import col
from pushdown.defs.model import coefficient_table, fit_ols, predict_local
from pushdown.defs.scoring import assert_disjoint, score_by_label, score_query

TRAIN = col("year") <= 2007
TEST = col("year") >= 2008


@pytest.fixture
def tiny(mem_store):
  frame = pd.DataFrame({
    "year": [2003, 2003, 2008, 2008],
    "depdelay": [58, 20, 30, 45],
    "arrdelay": [64, 10, 20, 40],
    "distance": [654, 500, 600, 800],
    "category": ["X", "Y", "X", "Z"],
  })
  return mem_store.copy_to(frame, "flights").mutate(gain=col("depdelay") - col("arrdelay"))


@pytest.fixture
def tiny_model(tiny):
  train = tiny.filter(TRAIN).collect()
  return fit_ols(train, "gain", ["depdelay", "distance"], "category", allow_rank_deficient=True)


def test_two_row_fit_gives_one_lookup_row_per_category(tiny_model):
  lookup = coefficient_table(tiny_model)
  assert len(lookup) == 2
  assert sorted(lookup["category"]) == ["X", "Y"]
  assert lookup.loc[lookup["category"] == "X", "category_score"].tolist() == [0.0]


def test_remote_prediction_matches_local_arithmetic(tiny, tiny_model):
  assert_disjoint(tiny, TRAIN, TEST)
  scored = score_query(tiny.filter(TEST), tiny_model).order_by("category").collect()
  row = scored[scored["category"] == "X"].iloc[0]
  expected = (tiny_model.intercept + tiny_model.category_effects["X"] +
              tiny_model.coefficients["distance"] * 600 +
              tiny_model.coefficients["depdelay"] * 30)
  assert row["predicted"] == pytest.approx(expected, abs=1e-9)
  local = predict_local(tiny_model, scored)
  assert scored["predicted"].iloc[0] == pytest.approx(local.iloc[0], abs=1e-9)


def test_unseen_category_scores_null(tiny, tiny_model):
  scored = score_query(tiny.filter(TEST), tiny_model).collect()
  unseen = scored[scored["category"] == "Z"].iloc[0]
  assert pd.isna(unseen["category_score"])
  assert pd.isna(unseen["intercept"])
  assert pd.isna(unseen["predicted"])


def test_scoring_stays_deferred(tiny, tiny_model):
  query = score_query(tiny.filter(TEST), tiny_model)
  sql = query.render()
  assert "LEFT JOIN" in sql
  assert '"predicted"' in sql
  assert query.columns[-1] == "predicted"


def test_overlapping_partitions_are_rejected(tiny):
  with pytest.raises(PartitionOverlapError):
    assert_disjoint(tiny, TRAIN, col("year") >= 2003)


def test_score_by_label_aggregates_remotely(tiny, tiny_model):
  out = score_by_label(tiny.filter(TEST), tiny_model, label="category").collect()
  assert out["category"].tolist() == ["X", "Z"]
  assert out["gain"].tolist() == [10, 5]
  assert out["n"].tolist() == [1, 1]
  assert pd.isna(out.loc[1, "predicted"])
