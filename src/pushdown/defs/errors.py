class PushdownError(Exception):
  """Base class for everything the workflow raises on purpose."""


class StoreConnectionError(PushdownError, ConnectionError):
  """Store unreachable, credentials rejected or database unknown."""


class NotFoundError(PushdownError, LookupError):
  """Unknown table or column reference."""


class ExecutionError(PushdownError):
  """The store rejected (or interrupted) a generated statement."""

  def __init__(self, message: str, sql: str | None = None):
    self.sql = sql
    if sql:
      message = f"{message}\n-- generated sql --\n{sql}"
    super().__init__(message)


class RankDeficiencyError(PushdownError):
  """Design matrix is not of full column rank."""

  def __init__(self, message: str, rank: int, n_params: int):
    self.rank = rank
    self.n_params = n_params
    super().__init__(message)


class SchemaMismatchError(PushdownError):
  """Join or union over incompatible column sets."""


class PartitionOverlapError(PushdownError):
  """Train and test predicates select common rows."""
