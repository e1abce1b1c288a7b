"""
Sampling pushed into the store.

`approximate_sample` keeps each row independently with probability
`fraction`, so the sample size is binomial, not exact. Callers that need an
exact row count over-sample (`sample_rows`) and truncate locally.
"""
import math

import dagster as dg
import numpy as np
import pandas as pd

from pushdown.defs.errors import SchemaMismatchError
from pushdown.defs.expr import col, drop, random_uniform
from pushdown.defs.query import Query

SAMPLE_COLUMN = "_u"

log = dg.get_dagster_logger()


def store_seed(rng: np.random.Generator | int) -> float:
  """Draw a seed for the store's random() from a local generator (setseed wants [-1, 1])."""
  if not isinstance(rng, np.random.Generator):
    rng = np.random.default_rng(rng)
  return float(rng.uniform(-1.0, 1.0))


def approximate_sample(query: Query,
                       fraction: float,
                       rng: np.random.Generator | int | None = None) -> Query:
  """
    Tag every row with a uniform draw, freeze that as a base, keep the rows
    whose draw is <= fraction and drop the tag. With `rng` the store is
    seeded right before the query runs, so a single threaded session gives
    the same sample twice.
    """
  if not 0 < fraction <= 1:
    raise ValueError(f"fraction must be in (0, 1], got {fraction}")
  if SAMPLE_COLUMN in query.columns:
    raise SchemaMismatchError(
      f"Column {SAMPLE_COLUMN!r} is reserved for the sample draw; rename it before sampling")
  sampled = (query.mutate(**{SAMPLE_COLUMN: random_uniform()})
             .collapse()
             .filter(col(SAMPLE_COLUMN) <= fraction)
             .select(drop(SAMPLE_COLUMN)))
  if rng is not None:
    sampled = sampled.with_seed(store_seed(rng))
  return sampled


def oversample_fraction(rows: int, total: int, margin: float = 4.0) -> float:
  """Fraction whose binomial sample falls short of `rows` only `margin` sds out."""
  if total <= 0:
    return 1.0
  wanted = rows + margin * math.sqrt(rows) + 1
  return min(1.0, wanted / total)


def exact_sample(frame: pd.DataFrame,
                 rows: int,
                 rng: np.random.Generator | int | None = None) -> pd.DataFrame:
  if rows > len(frame):
    raise ValueError(f"Asked for {rows} rows from a frame of {len(frame)}")
  return frame.sample(n=rows, random_state=rng).reset_index(drop=True)


def sample_rows(query: Query,
                rows: int,
                rng: np.random.Generator | int | None = None,
                margin: float = 4.0) -> pd.DataFrame:
  """Exactly `rows` random rows: over-sample in the store, truncate locally."""
  if not isinstance(rng, np.random.Generator):
    rng = np.random.default_rng(rng)
  total = query.count()
  if rows > total:
    raise ValueError(f"Asked for {rows} rows but the query only has {total}")
  while True:
    fraction = oversample_fraction(rows, total, margin)
    frame = approximate_sample(query, fraction, rng).collect()
    if len(frame) >= rows:
      return exact_sample(frame, rows, rng)
    log.warning(f"Over-sample came back with {len(frame)} < {rows} rows; widening")
    margin *= 2
