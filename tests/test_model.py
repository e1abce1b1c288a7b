import pickle
import numpy as np
import pandas as pd
import pytest

from pushdown.defs.errors import NotFoundError, RankDeficiencyError
from pushdown.defs.model import coefficient_table, fit_ols, predict_local

from conftest import CARRIER_EFFECTS, TRUE_DEPDELAY, TRUE_DISTANCE, TRUE_INTERCEPT, make_flights


@pytest.fixture
def training():
  frame = make_flights(rows=3000, noise=0.0)
  frame = frame[frame["year"] < 2008].dropna().copy()
  frame["gain"] = frame["depdelay"] - frame["arrdelay"]
  return frame


def fit(frame, **kwargs):
  return fit_ols(frame, "gain", ["depdelay", "distance"], "uniquecarrier", **kwargs)


def test_recovers_known_coefficients(training):
  model = fit(training)
  assert model.intercept == pytest.approx(TRUE_INTERCEPT, abs=1e-6)
  assert model.coefficients["depdelay"] == pytest.approx(TRUE_DEPDELAY, abs=1e-8)
  assert model.coefficients["distance"] == pytest.approx(TRUE_DISTANCE, abs=1e-8)
  # AA sorts first and is the reference
  assert model.reference == "AA"
  for carrier, effect in CARRIER_EFFECTS.items():
    assert model.category_effects[carrier] == pytest.approx(effect, abs=1e-6)
  assert model.r_squared == pytest.approx(1.0)


def test_coefficient_table_one_row_per_category(training):
  model = fit(training)
  table = coefficient_table(model)
  assert len(table) == training["uniquecarrier"].nunique()
  assert table["uniquecarrier"].is_unique
  assert list(table.columns) == [
    "uniquecarrier", "uniquecarrier_score", "intercept", "depdelay_score", "distance_score"
  ]
  ref = table.loc[table["uniquecarrier"] == model.reference, "uniquecarrier_score"]
  assert ref.tolist() == [0.0]
  assert (table["intercept"] == model.intercept).all()


def test_missing_category_is_rank_deficient():
  frame = pd.DataFrame({
    "gain": [1.0, 2.0, 3.0, 4.0],
    "depdelay": [10.0, 20.0, 30.0, 40.0],
    "distance": [100.0, 100.0, 100.0, 100.0],  # never varies, same as the intercept
    "uniquecarrier": ["AA", "AA", "UA", "UA"],
  })
  with pytest.raises(RankDeficiencyError) as err:
    fit(frame)
  assert err.value.rank < err.value.n_params


def test_rank_deficiency_can_be_allowed():
  frame = pd.DataFrame({
    "gain": [-6.0, 10.0],
    "depdelay": [58.0, 20.0],
    "distance": [654.0, 500.0],
    "uniquecarrier": ["X", "Y"],
  })
  with pytest.raises(RankDeficiencyError):
    fit(frame)
  model = fit(frame, allow_rank_deficient=True)
  assert model.rank == 2
  # minimum norm solution still reproduces the training rows
  np.testing.assert_allclose(predict_local(model, frame), frame["gain"])


def test_missing_columns():
  with pytest.raises(NotFoundError):
    fit(pd.DataFrame({"gain": [1.0]}))


def test_incomplete_rows_are_dropped(training):
  dirty = training.copy()
  dirty.loc[dirty.index[:10], "distance"] = np.nan
  model = fit(dirty)
  assert model.n_obs == len(training) - 10


def test_predict_local_unseen_category_is_nan(training):
  model = fit(training)
  frame = pd.DataFrame({"uniquecarrier": ["DL", "ZZ"], "depdelay": [30.0, 30.0],
                        "distance": [600.0, 600.0]})
  pred = predict_local(model, frame)
  expected = model.intercept + model.category_effects["DL"] + 30 * TRUE_DEPDELAY + 600 * TRUE_DISTANCE
  assert pred.iloc[0] == pytest.approx(expected)
  assert np.isnan(pred.iloc[1])


def test_fitted_model_is_read_only(training):
  model = fit(training)
  with pytest.raises(TypeError):
    model.coefficients["depdelay"] = 0.0
  with pytest.raises(TypeError):
    model.category_effects["ZZ"] = 1.0
  assert "ZZ" not in coefficient_table(model)["uniquecarrier"].tolist()


def test_fitted_model_pickles(training):
  model = fit(training)
  again = pickle.loads(pickle.dumps(model))
  assert again == model
  with pytest.raises(TypeError):
    again.coefficients["depdelay"] = 0.0
