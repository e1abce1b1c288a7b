"""
The flight delay workflow: sample the training years, fit gain on the
sample, then score a later year inside the store.
"""
import numpy as np
import pandas as pd

from pushdown.defs.expr import Expr, col
from pushdown.defs.model import FittedModel, fit_ols
from pushdown.defs.query import Query
from pushdown.defs.sampling import approximate_sample
from pushdown.defs.scoring import assert_disjoint, score_query, summarize_scores
from pushdown.defs.settings import WorkflowSettings
from pushdown.defs.store import Store


def flights(store: Store, settings: WorkflowSettings) -> Query:
  """Complete, late-departing flights with the response attached."""
  dep = col(settings.depdelay_column)
  arr = col(settings.arrdelay_column)
  return (store.table(settings.flights_table)
          .filter(dep.not_null(), arr.not_null(), col(settings.distance_column).not_null())
          .filter(dep > settings.min_depdelay, dep < settings.max_depdelay)
          .mutate(**{settings.response: dep - arr}))


def train_predicate(settings: WorkflowSettings) -> Expr:
  return col(settings.year_column).between(settings.train_start_year, settings.train_end_year)


def test_predicate(settings: WorkflowSettings) -> Expr:
  return col(settings.year_column).between(settings.test_start_year, settings.test_end_year)


def model_columns(settings: WorkflowSettings) -> list[str]:
  return [
    settings.year_column,
    settings.depdelay_column,
    settings.arrdelay_column,
    settings.distance_column,
    settings.carrier_column,
    settings.response,
  ]


def training_query(store: Store,
                   settings: WorkflowSettings,
                   rng: np.random.Generator | int | None = None) -> Query:
  train = flights(store, settings).filter(train_predicate(settings))
  return approximate_sample(train, settings.sample_fraction, rng).select(*model_columns(settings))


def fit_delay_model(sample: pd.DataFrame, settings: WorkflowSettings) -> FittedModel:
  return fit_ols(sample,
                 response=settings.response,
                 continuous=settings.continuous_predictors,
                 categorical=settings.carrier_column,
                 allow_rank_deficient=settings.allow_rank_deficient)


def scoring_query(store: Store, settings: WorkflowSettings, model: FittedModel) -> Query:
  """
    Mean observed vs mean predicted gain per carrier over the test years.
    Checks the partitions are disjoint before building anything.
    """
  base = flights(store, settings)
  assert_disjoint(base, train_predicate(settings), test_predicate(settings))
  test = base.filter(test_predicate(settings)).select(*model_columns(settings))
  scored = score_query(test, model)

  label = settings.carrier_column
  if settings.carriers_table:
    carriers = (store.table(settings.carriers_table)
                .select(settings.carrier_code_column, settings.label_column)
                .rename(**{settings.carrier_column: settings.carrier_code_column}))
    scored = scored.left_join(carriers, on=settings.carrier_column)
    label = settings.label_column
  return summarize_scores(scored, label, settings.response)
