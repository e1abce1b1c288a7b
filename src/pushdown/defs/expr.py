"""
Small expression language for deferred queries.

Expressions are immutable trees built with ordinary python operators and
rendered to DuckDB SQL only when a query is compiled:

  (col("depdelay") - col("arrdelay")) > 0
  col("arrdelay").not_null() & col("year").between(2003, 2007)

`&`, `|` and `~` stand in for and/or/not since python won't let us
overload the keywords. Comparisons return expressions, so an expression
can't be used in an `if`.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable


def quote_ident(name: str) -> str:
  return '"' + name.replace('"', '""') + '"'


def quote_qualified(name: str) -> str:
  """quote each part of a dotted name: silver.flights -> "silver"."flights" """
  return ".".join(quote_ident(part) for part in name.split("."))


def sql_literal(value: Any) -> str:
  # numpy scalars show up whenever values come back from pandas
  if hasattr(value, "item") and not isinstance(value, (str, bytes)):
    value = value.item()
  if value is None:
    return "NULL"
  if isinstance(value, bool):
    return "TRUE" if value else "FALSE"
  if isinstance(value, int):
    return str(value)
  if isinstance(value, float):
    if math.isnan(value):
      return "NULL"
    if math.isinf(value):
      return "'inf'::DOUBLE" if value > 0 else "'-inf'::DOUBLE"
    return repr(value)
  if isinstance(value, str):
    return "'" + value.replace("'", "''") + "'"
  raise TypeError(f"Can't render {type(value).__name__} as a SQL literal")


def as_expr(value: Any) -> "Expr":
  return value if isinstance(value, Expr) else Lit(value)


class Expr:
  """Base of the expression tree. Subclasses are frozen dataclasses."""

  volatile = False

  def sql(self) -> str:
    raise NotImplementedError

  def children(self) -> tuple["Expr", ...]:
    return ()

  def columns(self) -> set[str]:
    """Every column name this expression reads."""
    out: set[str] = set()
    for child in self.children():
      out |= child.columns()
    return out

  def is_volatile(self) -> bool:
    return self.volatile or any(c.is_volatile() for c in self.children())

  def is_aggregate(self) -> bool:
    return any(c.is_aggregate() for c in self.children())

  def __bool__(self):
    raise TypeError("Expressions have no truth value; combine them with &, | and ~")

  __hash__ = object.__hash__

  def __repr__(self) -> str:
    return f"<{type(self).__name__} {self.sql()}>"

  # arithmetic
  def __add__(self, other):
    return BinOp("+", self, as_expr(other))

  def __radd__(self, other):
    return BinOp("+", as_expr(other), self)

  def __sub__(self, other):
    return BinOp("-", self, as_expr(other))

  def __rsub__(self, other):
    return BinOp("-", as_expr(other), self)

  def __mul__(self, other):
    return BinOp("*", self, as_expr(other))

  def __rmul__(self, other):
    return BinOp("*", as_expr(other), self)

  def __truediv__(self, other):
    return BinOp("/", self, as_expr(other))

  def __rtruediv__(self, other):
    return BinOp("/", as_expr(other), self)

  def __neg__(self):
    return UnaryOp("-", self)

  # comparisons
  def __lt__(self, other):
    return BinOp("<", self, as_expr(other))

  def __le__(self, other):
    return BinOp("<=", self, as_expr(other))

  def __gt__(self, other):
    return BinOp(">", self, as_expr(other))

  def __ge__(self, other):
    return BinOp(">=", self, as_expr(other))

  def __eq__(self, other):
    return BinOp("=", self, as_expr(other))

  def __ne__(self, other):
    return BinOp("<>", self, as_expr(other))

  # boolean
  def __and__(self, other):
    return BinOp("AND", self, as_expr(other))

  def __rand__(self, other):
    return BinOp("AND", as_expr(other), self)

  def __or__(self, other):
    return BinOp("OR", self, as_expr(other))

  def __ror__(self, other):
    return BinOp("OR", as_expr(other), self)

  def __invert__(self):
    return UnaryOp("NOT ", self)

  # helpers
  def is_null(self) -> "Expr":
    return NullCheck(self, negate=False)

  def not_null(self) -> "Expr":
    return NullCheck(self, negate=True)

  def between(self, low, high) -> "Expr":
    return (self >= low) & (self <= high)

  def isin(self, values: Iterable[Any]) -> "Expr":
    return InList(self, tuple(as_expr(v) for v in values))

  def cast(self, type_name: str) -> "Expr":
    return Cast(self, type_name)


@dataclass(frozen=True, eq=False, repr=False)
class Col(Expr):
  name: str

  def sql(self) -> str:
    return quote_ident(self.name)

  def columns(self) -> set[str]:
    return {self.name}


@dataclass(frozen=True, eq=False, repr=False)
class Lit(Expr):
  value: Any

  def sql(self) -> str:
    return sql_literal(self.value)


@dataclass(frozen=True, eq=False, repr=False)
class UnaryOp(Expr):
  op: str
  operand: Expr

  def sql(self) -> str:
    return f"({self.op}{self.operand.sql()})"

  def children(self):
    return (self.operand, )


@dataclass(frozen=True, eq=False, repr=False)
class BinOp(Expr):
  op: str
  left: Expr
  right: Expr

  def sql(self) -> str:
    return f"({self.left.sql()} {self.op} {self.right.sql()})"

  def children(self):
    return (self.left, self.right)


@dataclass(frozen=True, eq=False, repr=False)
class NullCheck(Expr):
  operand: Expr
  negate: bool

  def sql(self) -> str:
    return f"({self.operand.sql()} IS {'NOT ' if self.negate else ''}NULL)"

  def children(self):
    return (self.operand, )


@dataclass(frozen=True, eq=False, repr=False)
class InList(Expr):
  operand: Expr
  values: tuple[Expr, ...]

  def sql(self) -> str:
    if not self.values:
      return "FALSE"
    return f"({self.operand.sql()} IN ({', '.join(v.sql() for v in self.values)}))"

  def children(self):
    return (self.operand, *self.values)


@dataclass(frozen=True, eq=False, repr=False)
class Cast(Expr):
  operand: Expr
  type_name: str

  def sql(self) -> str:
    return f"CAST({self.operand.sql()} AS {self.type_name})"

  def children(self):
    return (self.operand, )


@dataclass(frozen=True, eq=False, repr=False)
class Random(Expr):
  """Independent uniform value in [0, 1) per row."""

  volatile = True

  def sql(self) -> str:
    return "random()"


@dataclass(frozen=True, eq=False, repr=False)
class Agg(Expr):
  func: str
  operand: Expr | None = None

  def sql(self) -> str:
    arg = "*" if self.operand is None else self.operand.sql()
    return f"{self.func}({arg})"

  def children(self):
    return () if self.operand is None else (self.operand, )

  def is_aggregate(self) -> bool:
    return True


@dataclass(frozen=True, eq=False, repr=False)
class Sort:
  expr: Expr
  descending: bool = False

  def sql(self) -> str:
    return self.expr.sql() + (" DESC" if self.descending else "")


@dataclass(frozen=True)
class Drop:
  """Exclusion marker for Query.select."""
  name: str


def col(name: str) -> Col:
  return Col(name)


def lit(value: Any) -> Lit:
  return Lit(value)


def random_uniform() -> Random:
  return Random()


def drop(*names: str) -> list[Drop]:
  return [Drop(n) for n in names]


def desc(key: str | Expr) -> Sort:
  return Sort(Col(key) if isinstance(key, str) else key, descending=True)


def _operand(value: str | Expr) -> Expr:
  return Col(value) if isinstance(value, str) else value


def mean(value: str | Expr) -> Agg:
  return Agg("avg", _operand(value))


def sum_(value: str | Expr) -> Agg:
  return Agg("sum", _operand(value))


def min_(value: str | Expr) -> Agg:
  return Agg("min", _operand(value))


def max_(value: str | Expr) -> Agg:
  return Agg("max", _operand(value))


def count(value: str | Expr) -> Agg:
  """non-null values of `value`"""
  return Agg("count", _operand(value))


def n() -> Agg:
  """rows in the group"""
  return Agg("count")
