import os
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, Type

import dagster as dg
from pydantic import Field

from pushdown.defs.store import Store, StoreParams, connect


def get_typed_env(key: str, value_type: Type, default_value: Any) -> Callable[[], Any]:
  """
    Returns a default_factory callable that retrieves and casts an environment
    variable, falling back to a default value if the variable is not set or
    casting fails.
    """

  def factory() -> Any:
    env_val = os.getenv(key)

    if env_val is None or env_val == "":
      return default_value
    try:
      if value_type is bool:
        return env_val.lower() not in ('false', '0', 'no', 'f')

      return value_type(env_val)

    except (ValueError, TypeError):
      dg.get_dagster_logger().warning(
        f"Failed to cast env var '{key}' ('{env_val}') to {value_type.__name__}. Using default."
      )
      return default_value

  return factory


class StoreResource(dg.ConfigurableResource):
  """Where the data lives. Opens a fresh `Store` per use."""
  dialect: str = Field(default=os.getenv("PUSHDOWN_DIALECT", "duckdb"),
                       description="duckdb (a database file) or postgres (attached server)")
  database: str = Field(default=os.getenv("PUSHDOWN_DATABASE", "/opt/test-data/flights.duckdb"),
                        description="DuckDB file path, or the postgres database name")
  host: Optional[str] = Field(default=os.getenv("PUSHDOWN_HOST"))
  port: Optional[int] = Field(
    default_factory=get_typed_env(key="PUSHDOWN_PORT", value_type=int, default_value=None))
  username: Optional[str] = Field(default=os.getenv("PUSHDOWN_USER"))
  password: Optional[str] = Field(default=os.getenv("PUSHDOWN_PASSWORD"))
  read_only: bool = Field(default_factory=get_typed_env(
    key="PUSHDOWN_READ_ONLY", value_type=bool, default_value=False))
  threads: int = Field(
    default_factory=get_typed_env(key="PUSHDOWN_THREADS", value_type=int, default_value=1),
    description="single thread keeps seeded sampling reproducible")
  memory_limit: str = Field(default=os.getenv("PUSHDOWN_MEMORY_LIMIT", "6GB"))
  temp_directory: str = Field(default=os.getenv("PUSHDOWN_TEMP_DIR", "/tmp/duckdb-temp"))
  query_timeout: Optional[float] = Field(
    default_factory=get_typed_env(key="PUSHDOWN_QUERY_TIMEOUT",
                                  value_type=float,
                                  default_value=None),
    description="seconds before a running statement is interrupted")

  def params(self) -> StoreParams:
    return StoreParams(
      dialect=self.dialect,
      database=self.database,
      host=self.host,
      port=self.port,
      username=self.username,
      password=self.password,
      read_only=self.read_only,
      threads=self.threads,
      memory_limit=self.memory_limit,
      temp_directory=self.temp_directory,
      query_timeout=self.query_timeout,
    )

  @contextmanager
  def get_store(self) -> Iterator[Store]:
    store = connect(self.params())
    try:
      yield store
    finally:
      store.close()


class WorkflowSettings(dg.ConfigurableResource):
  # Table references
  flights_table: str = Field(default=os.getenv("FLIGHTS_TABLE", "flights"),
                             description="One row per flight.")
  carriers_table: Optional[str] = Field(
    default=os.getenv("CARRIERS_TABLE", "carriers"),
    description="Carrier code -> description; unset to label scores by carrier code.")
  carrier_code_column: str = Field(default=os.getenv("CARRIER_CODE_COLUMN", "code"))
  label_column: str = Field(default=os.getenv("LABEL_COLUMN", "description"))

  # Columns
  year_column: str = Field(default=os.getenv("YEAR_COLUMN", "year"))
  carrier_column: str = Field(default=os.getenv("CARRIER_COLUMN", "uniquecarrier"))
  depdelay_column: str = Field(default=os.getenv("DEPDELAY_COLUMN", "depdelay"))
  arrdelay_column: str = Field(default=os.getenv("ARRDELAY_COLUMN", "arrdelay"))
  distance_column: str = Field(default=os.getenv("DISTANCE_COLUMN", "distance"))
  response: str = Field(default=os.getenv("RESPONSE_COLUMN", "gain"),
                        description="depdelay - arrdelay, minutes made up in the air")

  # Partitions (inclusive year ranges, must not overlap)
  train_start_year: int = Field(default_factory=get_typed_env(
    key="TRAIN_START_YEAR", value_type=int, default_value=2003))
  train_end_year: int = Field(default_factory=get_typed_env(
    key="TRAIN_END_YEAR", value_type=int, default_value=2007))
  test_start_year: int = Field(default_factory=get_typed_env(
    key="TEST_START_YEAR", value_type=int, default_value=2008))
  test_end_year: int = Field(default_factory=get_typed_env(
    key="TEST_END_YEAR", value_type=int, default_value=2008))

  # Only flights that left late, but not absurdly late
  min_depdelay: float = Field(default_factory=get_typed_env(
    key="MIN_DEPDELAY", value_type=float, default_value=15.0))
  max_depdelay: float = Field(default_factory=get_typed_env(
    key="MAX_DEPDELAY", value_type=float, default_value=240.0))

  # Sampling
  sample_fraction: float = Field(default_factory=get_typed_env(
    key="SAMPLE_FRACTION", value_type=float, default_value=0.01))
  seed: Optional[int] = Field(
    default_factory=get_typed_env(key="SAMPLE_SEED", value_type=int, default_value=None),
    description="unset for a different sample every run")
  allow_rank_deficient: bool = Field(default_factory=get_typed_env(
    key="ALLOW_RANK_DEFICIENT", value_type=bool, default_value=False))

  @property
  def continuous_predictors(self) -> list[str]:
    return [self.depdelay_column, self.distance_column]
