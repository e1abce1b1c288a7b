#!/usr/bin/env python3
import argparse
import sys

import numpy as np
from dotenv import load_dotenv

# settings read the environment when they are imported
load_dotenv()

from pushdown.defs.display import preview
from pushdown.defs.errors import PushdownError
from pushdown.defs.model import coefficient_table
from pushdown.defs.settings import StoreResource, WorkflowSettings
from pushdown.defs.sql_utils import write_sql
from pushdown.defs.workflow import fit_delay_model, scoring_query, training_query


def build_parser() -> argparse.ArgumentParser:
  parser = argparse.ArgumentParser(
    prog="pushdown",
    description="Sample a large table in its store, fit locally, score remotely")
  parser.add_argument("--dialect", help="duckdb or postgres (default: env PUSHDOWN_DIALECT)")
  parser.add_argument(
    "-d",
    "--database",
    help="DuckDB file or postgres database name (default: env PUSHDOWN_DATABASE)")
  parser.add_argument("--host", help="postgres host (default: env PUSHDOWN_HOST)")
  parser.add_argument("--port", type=int, help="postgres port (default: env PUSHDOWN_PORT)")
  parser.add_argument("--user", help="postgres user (default: env PUSHDOWN_USER)")
  parser.add_argument("--timeout", type=float, help="seconds before a query is interrupted")

  sub = parser.add_subparsers(dest="command", required=True)
  tables = sub.add_parser("tables", help="List tables visible to the connection")
  tables.add_argument("--schema", help="schema to list (default: current)")

  render = sub.add_parser("render", help="Print the SQL for the training sample")
  render.add_argument("-o", "--out", help="write the SQL to this file instead")

  run = sub.add_parser("run", help="Sample, fit and score; print the results")
  run.add_argument("--fraction", type=float, help="approximate sample fraction")
  run.add_argument("--seed", type=int, help="seed for a reproducible sample")
  return parser


def store_from_args(args) -> StoreResource:
  # precedence: CLI > ENV > default
  overrides = {
    "dialect": args.dialect,
    "database": args.database,
    "host": args.host,
    "port": args.port,
    "username": args.user,
    "query_timeout": args.timeout,
  }
  return StoreResource(**{k: v for k, v in overrides.items() if v is not None})


def run(args) -> None:
  store = store_from_args(args)
  overrides = {}
  if getattr(args, "fraction", None) is not None:
    overrides["sample_fraction"] = args.fraction
  if getattr(args, "seed", None) is not None:
    overrides["seed"] = args.seed
  settings = WorkflowSettings(**overrides)

  with store.get_store() as st:
    if args.command == "tables":
      for name in st.list_tables(args.schema):
        print(name)
      return

    rng = np.random.default_rng(settings.seed) if settings.seed is not None else None
    query = training_query(st, settings, rng)
    if args.command == "render":
      sql = query.render()
      if args.out:
        print(f"Rendered to: {write_sql(sql, args.out)}")
      else:
        print(sql)
      return

    sample = query.collect()
    print(f"Sample:\n{preview(sample)}\n")
    model = fit_delay_model(sample, settings)
    print(f"Coefficients:\n{preview(coefficient_table(model))}\n")
    scores = scoring_query(st, settings, model).collect()
    print(f"Scores:\n{preview(scores)}")


def main(argv=None):
  args = build_parser().parse_args(argv)
  try:
    run(args)
  except PushdownError as e:
    sys.stderr.write(f"{type(e).__name__}: {e}\n")
    sys.exit(1)


if __name__ == "__main__":
  main()
