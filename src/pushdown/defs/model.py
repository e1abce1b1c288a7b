"""
Ordinary least squares on the local sample.

Categories are dummy coded: the first category (sorted) is the reference
and is folded into the intercept, every other category gets its own
coefficient. The coefficient table keeps that convention under the raw
categorical column name, with the reference category scored 0.
"""
from dataclasses import dataclass, fields
from types import MappingProxyType
from typing import Any, Mapping, Sequence

import dagster as dg
import numpy as np
import pandas as pd

from pushdown.defs.errors import NotFoundError, RankDeficiencyError

log = dg.get_dagster_logger()


def score_column(name: str) -> str:
  return f"{name}_score"


@dataclass(frozen=True)
class FittedModel:
  response: str
  categorical: str
  intercept: float
  coefficients: Mapping[str, float]  # continuous predictor -> slope
  category_effects: Mapping[Any, float]  # category -> offset, reference is 0.0
  reference: Any
  n_obs: int
  rank: int
  r_squared: float
  residual_std_error: float

  def __post_init__(self):
    # read-only copies, the caller keeps its own dicts
    object.__setattr__(self, "coefficients", MappingProxyType(dict(self.coefficients)))
    object.__setattr__(self, "category_effects", MappingProxyType(dict(self.category_effects)))

  def __reduce__(self):
    # mapping proxies do not pickle; rebuild from plain dicts
    values = (getattr(self, f.name) for f in fields(self))
    return (type(self), tuple(dict(v) if isinstance(v, MappingProxyType) else v for v in values))

  @property
  def continuous(self) -> list[str]:
    return list(self.coefficients)

  def summary(self) -> dict:
    """JSON friendly view for logs and asset metadata."""
    return {
      "response": self.response,
      "intercept": self.intercept,
      "coefficients": dict(self.coefficients),
      "category_effects": {str(k): v for k, v in self.category_effects.items()},
      "reference": str(self.reference),
      "n_obs": self.n_obs,
      "rank": self.rank,
      "r_squared": self.r_squared,
      "residual_std_error": self.residual_std_error,
    }


def fit_ols(frame: pd.DataFrame,
            response: str,
            continuous: Sequence[str],
            categorical: str,
            allow_rank_deficient: bool = False) -> FittedModel:
  """
    Fit `response ~ 1 + continuous + C(categorical)`.

    Rows with a missing value in any of the used columns are dropped. A
    design matrix that isn't full column rank (a predictor that never
    varies, fewer rows than parameters, ...) raises RankDeficiencyError
    unless allow_rank_deficient is set, in which case the minimum norm
    solution is used.
    """
  used = [response, *continuous, categorical]
  missing = [c for c in used if c not in frame.columns]
  if missing:
    raise NotFoundError(f"Column(s) {missing} not in the sample; have {list(frame.columns)}")

  data = frame[used].dropna()
  if data.empty:
    raise ValueError("No complete rows to fit on")

  levels = sorted(data[categorical].unique())
  reference = levels[0]
  design = [np.ones(len(data))]
  design += [data[c].to_numpy(dtype=float) for c in continuous]
  design += [(data[categorical] == level).to_numpy(dtype=float) for level in levels[1:]]
  X = np.column_stack(design)
  y = data[response].to_numpy(dtype=float)

  beta, _, rank, _ = np.linalg.lstsq(X, y, rcond=None)
  n_obs, n_params = X.shape
  if rank < n_params:
    message = (f"Design matrix has rank {rank} < {n_params} parameters "
               f"({n_obs} rows, {len(levels)} categories of {categorical})")
    if not allow_rank_deficient:
      raise RankDeficiencyError(message, rank=int(rank), n_params=n_params)
    log.warning(f"{message}; using the minimum norm solution")

  resid = y - X @ beta
  ss_res = float(resid @ resid)
  ss_tot = float(((y - y.mean())**2).sum())
  dof = n_obs - rank
  effects = {reference: 0.0}
  effects.update({level: float(b) for level, b in zip(levels[1:], beta[1 + len(continuous):])})
  model = FittedModel(
    response=response,
    categorical=categorical,
    intercept=float(beta[0]),
    coefficients={c: float(b) for c, b in zip(continuous, beta[1:1 + len(continuous)])},
    category_effects=effects,
    reference=reference,
    n_obs=n_obs,
    rank=int(rank),
    r_squared=1.0 - ss_res / ss_tot if ss_tot > 0 else float("nan"),
    residual_std_error=float(np.sqrt(ss_res / dof)) if dof > 0 else float("nan"),
  )
  log.info(f"Fit {response} on {n_obs:,} rows, {n_params} parameters, r2={model.r_squared:.3f}")
  return model


def coefficient_table(model: FittedModel) -> pd.DataFrame:
  """One row per category seen in the fit, shared coefficients broadcast."""
  rows = []
  for level, effect in model.category_effects.items():
    row = {model.categorical: level, score_column(model.categorical): effect}
    row["intercept"] = model.intercept
    for name, coef in model.coefficients.items():
      row[score_column(name)] = coef
    rows.append(row)
  return pd.DataFrame(rows)


def predict_local(model: FittedModel, frame: pd.DataFrame) -> pd.Series:
  """Same arithmetic as the remote score; unseen categories come out NaN."""
  effects = frame[model.categorical].map(dict(model.category_effects)).astype(float)
  pred = model.intercept + effects
  for name, coef in model.coefficients.items():
    pred = pred + coef * frame[name]
  return pred
