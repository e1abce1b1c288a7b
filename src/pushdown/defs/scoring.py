"""
Score the full table in the store instead of pulling it down: the
coefficient table goes up as a temp table, gets left joined on the
category, and the prediction is plain arithmetic in a derived column.
"""
import dagster as dg
import pandas as pd

from pushdown.defs.errors import PartitionOverlapError
from pushdown.defs.expr import Expr, col, mean, n
from pushdown.defs.model import FittedModel, coefficient_table, score_column
from pushdown.defs.query import Query

log = dg.get_dagster_logger()


def assert_disjoint(base: Query, train_predicate: Expr, test_predicate: Expr) -> None:
  """Fail if any row of `base` lands in both partitions."""
  overlap = base.filter(train_predicate).filter(test_predicate).count()
  if overlap:
    raise PartitionOverlapError(
      f"{overlap:,} rows match both the train ({train_predicate.sql()}) "
      f"and test ({test_predicate.sql()}) predicates")
  log.info("Train and test partitions are disjoint")


def prediction_expr(model: FittedModel) -> Expr:
  expr = col("intercept") + col(score_column(model.categorical))
  for name in model.continuous:
    expr = expr + col(score_column(name)) * col(name)
  return expr


def score_query(query: Query,
                model: FittedModel,
                lookup: pd.DataFrame | None = None,
                output: str = "predicted") -> Query:
  """
    Deferred query with `output` = intercept + category score + sum of
    slope * predictor, evaluated by the store. Categories the model never saw
    find no row in the lookup table and score null.
    """
  if lookup is None:
    lookup = coefficient_table(model)
  joined = query.left_join(lookup, on=model.categorical, copy=True)
  return joined.mutate(**{output: prediction_expr(model)})


def summarize_scores(scored: Query,
                     label: str,
                     response: str,
                     predicted: str = "predicted") -> Query:
  """Mean observed and mean predicted response per label."""
  return (scored.group_by(label)
          .aggregate(**{response: mean(response), predicted: mean(predicted), "n": n()})
          .order_by(label))


def score_by_label(query: Query,
                   model: FittedModel,
                   label: str,
                   lookup: pd.DataFrame | None = None) -> Query:
  return summarize_scores(score_query(query, model, lookup), label, model.response)
