# tests/conftest.py
import logging

import duckdb
import numpy as np
import pandas as pd
import pytest

from dotenv import load_dotenv

load_dotenv("./tests/.env.test")

from pushdown.defs.store import StoreParams, connect

logging.getLogger("dagster").setLevel(logging.WARNING)

CARRIER_EFFECTS = {"AA": 0.0, "DL": 2.5, "UA": -1.5, "WN": 4.0}
TRUE_INTERCEPT = 3.0
TRUE_DEPDELAY = 0.05
TRUE_DISTANCE = 0.004


def make_flights(rows: int = 4000, seed: int = 42, noise: float = 1.0) -> pd.DataFrame:
  """
  Flights for 2003-2008 where gain = depdelay - arrdelay follows a known
  linear model. Carrier ZZ only flies in 2008, so the model never sees it.
  """
  rng = np.random.default_rng(seed)
  years = rng.integers(2003, 2009, rows)
  carriers = rng.choice(list(CARRIER_EFFECTS), rows)
  carriers = np.where((years == 2008) & (rng.random(rows) < 0.1), "ZZ", carriers)
  depdelay = rng.uniform(0, 300, rows).round()
  distance = rng.uniform(100, 2500, rows).round()
  effects = np.array([CARRIER_EFFECTS.get(c, 0.0) for c in carriers])
  gain = (TRUE_INTERCEPT + TRUE_DEPDELAY * depdelay + TRUE_DISTANCE * distance + effects +
          rng.normal(0, noise, rows))
  frame = pd.DataFrame({
    "year": years,
    "month": rng.integers(1, 13, rows),
    "uniquecarrier": carriers,
    "depdelay": depdelay,
    "arrdelay": depdelay - gain,
    "distance": distance,
  })
  # a few incomplete rows, the workflow filters them out
  frame.loc[frame.sample(frac=0.02, random_state=seed).index, "arrdelay"] = np.nan
  return frame


def make_carriers() -> pd.DataFrame:
  return pd.DataFrame({
    "code": ["AA", "DL", "UA", "WN", "ZZ"],
    "description": ["American", "Delta", "United", "Southwest", "Zed Air"],
  })


def load_tables(con: duckdb.DuckDBPyConnection, **frames: pd.DataFrame) -> None:
  for name, frame in frames.items():
    con.register(f"{name}_df", frame)
    con.execute(f"create or replace table {name} as select * from {name}_df")
    con.unregister(f"{name}_df")


@pytest.fixture
def flights_frame() -> pd.DataFrame:
  return make_flights()


@pytest.fixture
def flights_db(tmp_path, flights_frame) -> str:
  """A DuckDB file holding flights + carriers."""
  path = tmp_path / "flights.duckdb"
  con = duckdb.connect(str(path))
  load_tables(con, flights=flights_frame, carriers=make_carriers())
  con.close()
  return str(path)


@pytest.fixture
def store(flights_db):
  st = connect(StoreParams(database=flights_db))
  yield st
  st.close()


@pytest.fixture
def mem_store():
  """Empty in-memory store; tests copy in what they need."""
  st = connect(StoreParams())
  yield st
  st.close()
