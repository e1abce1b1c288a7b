"""
Connection & catalog.

Everything runs through DuckDB. A `duckdb` store opens a database file; a
`postgres` store opens an in-memory DuckDB and attaches the remote server
through the postgres extension, so the generated SQL is the same either way
and filters/aggregates execute next to the data.
"""
from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

import dagster as dg
import duckdb
import pandas as pd

from pushdown.defs.errors import ExecutionError, NotFoundError, StoreConnectionError
from pushdown.defs.expr import quote_ident, quote_qualified, sql_literal
from pushdown.defs.query import Query, Table
from pushdown.defs.sql_utils import render_sql

DIALECTS = ("duckdb", "postgres")
REMOTE_ALIAS = "remote"

log = dg.get_dagster_logger()


@dataclass(frozen=True)
class StoreParams:
  dialect: str = "duckdb"
  database: str = ":memory:"
  host: str | None = None
  port: int | None = None
  username: str | None = None
  password: str | None = field(default=None, repr=False)
  read_only: bool = False
  threads: int = 1
  memory_limit: str | None = None
  temp_directory: str | None = None
  query_timeout: float | None = None


def _libpq_value(value: Any) -> str:
  escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
  return f"'{escaped}'"


def _dsn(params: StoreParams) -> str:
  """libpq key=value connection string"""
  parts = {
    "host": params.host,
    "port": params.port,
    "dbname": params.database,
    "user": params.username,
    "password": params.password,
  }
  return " ".join(f"{k}={_libpq_value(v)}" for k, v in parts.items() if v not in (None, ""))


def connect(params: StoreParams) -> "Store":
  """Open a store or fail with StoreConnectionError. No retries."""
  if params.dialect not in DIALECTS:
    raise StoreConnectionError(
      f"Unsupported dialect {params.dialect!r}; expected one of {DIALECTS}")
  con = None
  try:
    if params.dialect == "duckdb":
      read_only = params.read_only and params.database != ":memory:"
      con = duckdb.connect(params.database, read_only=read_only)
    else:
      con = duckdb.connect(":memory:")
      con.execute("INSTALL postgres")
      con.execute("LOAD postgres")
      con.execute(
        render_sql("attach_postgres.sql.j2",
                   dsn=_dsn(params).replace("'", "''"),
                   alias=REMOTE_ALIAS,
                   read_only=params.read_only))
      con.execute(f"USE {REMOTE_ALIAS}")

    # keep per-process memory/threading tame
    con.execute(f"PRAGMA threads={int(params.threads)}")
    if params.memory_limit:
      con.execute(f"PRAGMA memory_limit={sql_literal(params.memory_limit)}")
    if params.temp_directory:
      con.execute(f"PRAGMA temp_directory={sql_literal(params.temp_directory)}")
  except duckdb.Error as e:
    if con is not None:
      con.close()
    where = params.database if params.dialect == "duckdb" else f"{params.host}:{params.port}"
    message = f"Could not open {params.dialect} store {where}: {e}"
    if params.password and params.password in message:
      # the attach error can echo the connection string
      message = message.replace(params.password, "***")
      raise StoreConnectionError(message) from None
    raise StoreConnectionError(message) from e

  log.info(f"Connected to {params.dialect} store {params.database}")
  return Store(con, params)


class Store:
  """
  Handle on one store session. Owns a single DuckDB connection; the
  password it was opened with is not kept around.
  """

  def __init__(self, con: duckdb.DuckDBPyConnection, params: StoreParams):
    self._con = con
    self.dialect = params.dialect
    self.database = params.database
    self.host = params.host
    self.port = params.port
    self.username = params.username
    self.query_timeout = params.query_timeout
    self._tmp_names = itertools.count()

  def __repr__(self) -> str:
    return f"<Store {self.dialect} database={self.database!r} host={self.host!r}>"

  def __enter__(self) -> "Store":
    return self

  def __exit__(self, *exc) -> None:
    self.close()

  def close(self) -> None:
    self._con.close()

  # ---- execution -------------------------------------------------------

  def _run(self, sql: str, params: Any = None, fetch: Callable | None = None):
    timer = None
    if self.query_timeout:
      timer = threading.Timer(self.query_timeout, self._con.interrupt)
      timer.start()
    try:
      cursor = self._con.execute(sql, params)
      return fetch(cursor) if fetch else cursor
    except duckdb.InterruptException as e:
      raise ExecutionError(f"Query interrupted after {self.query_timeout}s", sql) from e
    except duckdb.Error as e:
      raise ExecutionError(f"Store rejected query: {e}", sql) from e
    finally:
      if timer:
        timer.cancel()

  def execute(self, sql: str, params: Any = None) -> list[tuple]:
    return self._run(sql, params, fetch=lambda cur: cur.fetchall())

  def fetch_df(self, sql: str, seed: float | None = None) -> pd.DataFrame:
    if seed is not None:
      # random() draws from the session generator
      self._run("SELECT setseed(?)", [seed])
    frame = self._run(sql, fetch=lambda cur: cur.fetch_df())
    log.debug(f"Fetched {len(frame):,} rows")
    return frame

  # ---- catalog ---------------------------------------------------------

  def list_tables(self, schema: str | None = None) -> list[str]:
    """Tables and views in `schema` (default: the current one), in store order."""
    sql = render_sql(
      "list_tables.sql.j2",
      catalog="current_database()",
      schema="current_schema()" if schema is None else sql_literal(schema),
    )
    return [row[0] for row in self.execute(sql)]

  def _temp_tables(self) -> list[str]:
    sql = render_sql("list_tables.sql.j2", catalog="'temp'", schema="'main'")
    return [row[0] for row in self.execute(sql)]

  def table(self, name: str) -> Query:
    """
    Reference a table by name (optionally schema.table). The result is the
    identity query over that table.
    """
    schema, _, table = name.rpartition(".")
    visible = self.list_tables(schema or None)
    if table not in visible and not (not schema and table in self._temp_tables()):
      raise NotFoundError(f"Table {name!r} not found; visible tables: {visible}")
    cursor = self._run(f"SELECT * FROM {quote_qualified(name)} LIMIT 0")
    columns = tuple(d[0] for d in cursor.description)
    return Query.over(self, Table(name, columns))

  def copy_to(self, frame: pd.DataFrame, name: str | None = None) -> Query:
    """Push a local frame into a temporary table and reference it."""
    name = name or f"pushdown_tmp_{next(self._tmp_names)}"
    view = f"{name}__df"
    self._con.register(view, frame)
    try:
      self._run(f"CREATE OR REPLACE TEMP TABLE {quote_ident(name)} AS "
                f"SELECT * FROM {quote_ident(view)}")
    finally:
      self._con.unregister(view)
    log.info(f"Copied {len(frame):,} local rows into temp table {name}")
    return self.table(name)
