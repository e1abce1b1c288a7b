"""
Deferred queries.

A `Query` is an immutable description of a relational pipeline over a table
in the store. Every operation returns a new `Query`; nothing runs until
`collect()` (or `count()`) is called, and `render()` shows the SQL that
would run.

Each query is one SELECT level over a source. Operations fold into the
current level when that keeps the meaning of the SQL intact (a filter on a
plain column, a projection over plain columns, ...). Anything else wraps the
current level as a subquery first, the same thing `collapse()` does
explicitly. Output column names are always known, so bad column references
fail while composing rather than when the store sees the SQL.
"""
from __future__ import annotations

import dataclasses
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Union

import pandas as pd

from pushdown.defs.errors import NotFoundError, SchemaMismatchError
from pushdown.defs.expr import Col, Drop, Expr, Sort, as_expr, n, quote_ident, quote_qualified
from pushdown.defs.sql_utils import render_sql, subquery

if TYPE_CHECKING:
  from pushdown.defs.store import Store


@dataclass(frozen=True)
class Table:
  """Named pointer into the store, with the columns seen when it was referenced."""
  name: str
  columns: tuple[str, ...]

  def from_sql(self, level: int) -> str:
    return quote_qualified(self.name)


@dataclass(frozen=True, eq=False)
class Subquery:
  query: "Query"

  @property
  def columns(self) -> tuple[str, ...]:
    return self.query.columns

  def from_sql(self, level: int) -> str:
    return subquery(self.query._render(level + 1), f"q{level}")


@dataclass(frozen=True, eq=False)
class LeftJoin:
  left: "Query"
  right: "Query"
  on: tuple[tuple[str, str], ...]

  @property
  def right_keys(self) -> set[str]:
    return {r for _, r in self.on}

  @property
  def columns(self) -> tuple[str, ...]:
    return self.left.columns + tuple(c for c in self.right.columns
                                     if c not in self.right_keys)

  def from_sql(self, level: int) -> str:
    right_keys = self.right_keys
    columns = [f"l.{quote_ident(c)}" for c in self.left.columns]
    columns += [f"r.{quote_ident(c)}" for c in self.right.columns if c not in right_keys]
    sql = render_sql(
      "left_join.sql.j2",
      columns=columns,
      left=subquery(self.left._render(level + 1), "l"),
      right=subquery(self.right._render(level + 1), "r"),
      conditions=[f"l.{quote_ident(a)} = r.{quote_ident(b)}" for a, b in self.on],
    )
    return subquery(sql, f"q{level}")


@dataclass(frozen=True, eq=False)
class UnionAll:
  left: "Query"
  right: "Query"

  @property
  def columns(self) -> tuple[str, ...]:
    return self.left.columns

  def from_sql(self, level: int) -> str:
    sql = render_sql(
      "union_all.sql.j2",
      columns=[quote_ident(c) for c in self.columns],
      left=subquery(self.left._render(level + 1), "l"),
      right=subquery(self.right._render(level + 1), "r"),
    )
    return subquery(sql, f"q{level}")


Source = Union[Table, Subquery, LeftJoin, UnionAll]


def _flatten(items: Iterable[Any]) -> list[Any]:
  out = []
  for item in items:
    if isinstance(item, (list, tuple)):
      out.extend(item)
    else:
      out.append(item)
  return out


def _join_pairs(on: str | Iterable[str] | Mapping[str, str]) -> tuple[tuple[str, str], ...]:
  if isinstance(on, str):
    return ((on, on), )
  if isinstance(on, Mapping):
    return tuple(on.items())
  return tuple((k, k) for k in on)


@dataclass(frozen=True, eq=False)
class Query:
  store: "Store" = field(repr=False)
  source: Source
  projection: tuple[tuple[str, Expr], ...]
  where: tuple[Expr, ...] = ()
  group_keys: tuple[str, ...] = ()
  grouped: bool = False
  order: tuple[Sort, ...] = ()
  limit: int | None = None
  seed: float | None = None

  @classmethod
  def over(cls, store: "Store", source: Source, seed: float | None = None) -> "Query":
    return cls(store=store,
               source=source,
               projection=tuple((c, Col(c)) for c in source.columns),
               seed=seed)

  @property
  def columns(self) -> tuple[str, ...]:
    return tuple(name for name, _ in self.projection)

  def __repr__(self) -> str:
    return f"<Query columns={list(self.columns)}>\n{self.render()}"

  # ---- internals -------------------------------------------------------

  def _check(self, names: Iterable[str], op: str) -> None:
    missing = sorted(set(names) - set(self.columns))
    if missing:
      raise NotFoundError(
        f"Unknown column(s) {missing} in {op}; available: {list(self.columns)}")

  def _passthrough(self, name: str) -> bool:
    expr = dict(self.projection)[name]
    return isinstance(expr, Col) and expr.name == name

  def _plain(self) -> bool:
    return (not self.grouped and not self.order and self.limit is None
            and all(self._passthrough(c) for c in self.columns))

  def _nest(self) -> "Query":
    return Query.over(self.store, Subquery(self), seed=self.seed)

  def _can_inline(self, entries: list[tuple[str, Expr]]) -> bool:
    current = dict(self.projection)
    if self.order:
      # ORDER BY may point at any of these names, keep them as they are
      sorted_on = set().union(*(s.expr.columns() for s in self.order))
      kept = {name for name, e in entries if isinstance(e, Col) and e.name == name}
      if not sorted_on <= kept or len(kept) != len(entries):
        return False
    volatile_refs: Counter = Counter()
    for _name, expr in entries:
      if isinstance(expr, Col):
        if current[expr.name].is_volatile():
          volatile_refs[expr.name] += 1
        continue
      if self.grouped:
        return False
      if not all(self._passthrough(c) for c in expr.columns()):
        return False
    # copying a random() column twice would draw it twice
    return all(v <= 1 for v in volatile_refs.values())

  def _project(self, entries: list[tuple[str, Expr]]) -> "Query":
    names = [name for name, _ in entries]
    dupes = sorted(name for name, c in Counter(names).items() if c > 1)
    if dupes:
      raise ValueError(f"Duplicate output column(s) {dupes}")
    if not entries:
      raise ValueError("A query needs at least one column")
    if not self._can_inline(entries):
      return self._nest()._project(entries)
    current = dict(self.projection)
    projection = tuple(
      (name, current[expr.name] if isinstance(expr, Col) else expr) for name, expr in entries)
    return dataclasses.replace(self, projection=projection)

  def _render(self, level: int) -> str:
    columns = []
    for name, expr in self.projection:
      if isinstance(expr, Col) and expr.name == name:
        columns.append(expr.sql())
      else:
        columns.append(f"{expr.sql()} AS {quote_ident(name)}")
    return render_sql(
      "select.sql.j2",
      columns=columns,
      source=self.source.from_sql(level),
      where=[w.sql() for w in self.where],
      group_by=[quote_ident(k) for k in self.group_keys],
      order_by=[s.sql() for s in self.order],
      limit=self.limit,
    )

  # ---- composition -----------------------------------------------------

  def filter(self, *predicates: Expr) -> "Query":
    """Keep rows matching every predicate (AND, in the order given)."""
    query = self
    for pred in predicates:
      if not isinstance(pred, Expr):
        raise TypeError(f"filter() takes expressions, got {type(pred).__name__}")
      if pred.is_aggregate():
        raise ValueError("Aggregates can't be used in filter(); aggregate first")
      query._check(pred.columns(), "filter")
      inline = (not query.grouped and query.limit is None
                and all(query._passthrough(c) for c in pred.columns()))
      if not inline:
        query = query._nest()
      query = dataclasses.replace(query, where=query.where + (pred, ))
    return query

  def select(self, *items: str | Drop | list[Drop], **derived: str | Expr) -> "Query":
    """
    Project to columns, in the order given.

      q.select("year", "depdelay")          keep two columns
      q.select(drop("_u"))                  everything but _u
      q.select("year", delay=col("depdelay") / 60)
    """
    keep: list[str] = []
    dropped: list[str] = []
    for item in _flatten(items):
      if isinstance(item, Drop):
        dropped.append(item.name)
      elif isinstance(item, str):
        keep.append(item)
      else:
        raise TypeError(f"select() takes column names or drop() markers, got {item!r}")
    self._check(keep + dropped, "select")
    if not keep and dropped:
      keep = list(self.columns)
    entries = [(c, Col(c)) for c in keep if c not in dropped]
    for name, value in derived.items():
      expr = Col(value) if isinstance(value, str) else as_expr(value)
      self._check(expr.columns(), "select")
      entries.append((name, expr))
    return self._project(entries)

  def rename(self, **mapping: str) -> "Query":
    """rename(new=old), keeping column order"""
    self._check(mapping.values(), "rename")
    new_names = {old: new for new, old in mapping.items()}
    return self._project([(new_names.get(c, c), Col(c)) for c in self.columns])

  def mutate(self, name: str | None = None, expr: Any = None, **derived: Any) -> "Query":
    """
    Add or replace columns. Later expressions may use earlier ones:

      q.mutate(gain=col("depdelay") - col("arrdelay"))
      q.mutate("_u", random_uniform())
    """
    if name is not None:
      derived = {name: expr, **derived}
    query = self
    for target, value in derived.items():
      value = as_expr(value)
      if value.is_aggregate():
        raise ValueError("Aggregates can't be used in mutate(); use group_by().aggregate()")
      query._check(value.columns(), "mutate")
      entries = [(c, value if c == target else Col(c)) for c in query.columns]
      if target not in query.columns:
        entries.append((target, value))
      query = query._project(entries)
    return query

  def group_by(self, *keys: str) -> "GroupedQuery":
    keys = tuple(_flatten(keys))
    self._check(keys, "group_by")
    return GroupedQuery(self, keys)

  def order_by(self, *keys: str | Expr | Sort) -> "Query":
    sorts = []
    for key in keys:
      if isinstance(key, Sort):
        sorts.append(key)
      else:
        sorts.append(Sort(Col(key) if isinstance(key, str) else key))
    query = self
    for s in sorts:
      query._check(s.expr.columns(), "order_by")
    simple = all(all(query._passthrough(c) for c in s.expr.columns()) for s in sorts)
    if query.limit is not None or not simple:
      query = query._nest()
    return dataclasses.replace(query, order=tuple(sorts))

  def head(self, rows: int = 10) -> "Query":
    if rows < 0:
      raise ValueError("head() needs a non-negative row count")
    limit = rows if self.limit is None else min(rows, self.limit)
    return dataclasses.replace(self, limit=limit)

  def collapse(self) -> "Query":
    """Treat the result of this query as a fresh base table."""
    return self._nest()

  def with_seed(self, seed: float | None) -> "Query":
    return dataclasses.replace(self, seed=seed)

  def left_join(self,
                other: "Query | pd.DataFrame",
                on: str | Iterable[str] | Mapping[str, str],
                copy: bool = False) -> "Query":
    """
    Keep every row of this query and add the columns of the matching row of
    `other` (nulls when nothing matches). A local DataFrame has to be copied
    into the store first, so it needs copy=True; its keys must be unique.
    A remote `other` with repeated keys yields one row per match.
    """
    pairs = _join_pairs(on)
    right_keys = [r for _, r in pairs]
    if isinstance(other, pd.DataFrame):
      if not copy:
        raise ValueError("Joining a local frame needs copy=True")
      missing = sorted(set(right_keys) - set(other.columns))
      if missing:
        raise SchemaMismatchError(f"Join key(s) {missing} missing from the local frame")
      if other.duplicated(subset=right_keys).any():
        raise SchemaMismatchError(f"Local join keys {right_keys} are not unique")
      other = self.store.copy_to(other)
    if not isinstance(other, Query):
      raise TypeError(f"Can't join against {type(other).__name__}")
    if other.store is not self.store:
      raise ValueError("Both sides of a join must come from the same store")

    missing_left = sorted({l for l, _ in pairs} - set(self.columns))
    missing_right = sorted(set(right_keys) - set(other.columns))
    if missing_left or missing_right:
      raise SchemaMismatchError(f"Join keys missing: left {missing_left}, right {missing_right}")
    overlap = sorted((set(other.columns) - set(right_keys)) & set(self.columns))
    if overlap:
      raise SchemaMismatchError(
        f"Both sides of the join carry column(s) {overlap}; rename or drop them first")
    seed = self.seed if self.seed is not None else other.seed
    return Query.over(self.store, LeftJoin(self, other, pairs), seed=seed)

  def union_all(self, other: "Query") -> "Query":
    if other.store is not self.store:
      raise ValueError("Both sides of a union must come from the same store")
    if set(other.columns) != set(self.columns):
      raise SchemaMismatchError(
        f"Can't union {list(self.columns)} with {list(other.columns)}")
    if other.columns != self.columns:
      other = other.select(*self.columns)
    seed = self.seed if self.seed is not None else other.seed
    return Query.over(self.store, UnionAll(self, other), seed=seed)

  # ---- terminal --------------------------------------------------------

  def render(self) -> str:
    """SQL for the whole chain. Nothing is executed."""
    return self._render(0)

  def collect(self) -> pd.DataFrame:
    """Run the query and pull every row into memory."""
    return self.store.fetch_df(self.render(), seed=self.seed)

  def count(self) -> int:
    frame = self.group_by().aggregate(n=n()).collect()
    return int(frame["n"].iloc[0])


class GroupedQuery:

  def __init__(self, query: Query, keys: tuple[str, ...]):
    self.query = query
    self.keys = keys

  def aggregate(self, **aggs: Expr) -> Query:
    """One row per distinct key combination; nulls are skipped by the aggregates."""
    query = self.query
    if not self.keys and not aggs:
      raise ValueError("aggregate() needs group keys or at least one aggregate")
    clash = sorted(set(aggs) & set(self.keys))
    if clash:
      raise ValueError(f"Aggregate name(s) {clash} collide with group keys")
    for name, expr in aggs.items():
      if not isinstance(expr, Expr) or not expr.is_aggregate():
        raise ValueError(f"{name} is not an aggregate expression")
      query._check(expr.columns(), "aggregate")
    if not query._plain():
      query = query._nest()
    projection = tuple((k, Col(k)) for k in self.keys) + tuple(aggs.items())
    return dataclasses.replace(query,
                               projection=projection,
                               group_keys=self.keys,
                               grouped=True)

  summarise = aggregate
