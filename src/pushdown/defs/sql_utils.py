# src/pushdown/defs/sql_utils.py
import textwrap
from pathlib import Path
from jinja2 import Environment, PackageLoader, select_autoescape

# Load templates from pushdown.defs.sql
sqlj2_env = Environment(
  loader=PackageLoader("pushdown.defs", "sql"),
  autoescape=select_autoescape([])  # no autoescape for .sql.j2
)


def render_sql(template_name: str, **params) -> str:
  return sqlj2_env.get_template(template_name).render(**params)


def write_sql(sql: str, out_path: str | Path) -> Path:
  out_path = Path(out_path)
  out_path.parent.mkdir(parents=True, exist_ok=True)
  out_path.write_text(sql.rstrip() + "\n", encoding="utf-8")
  return out_path


def subquery(sql: str, alias: str) -> str:
  """wrap a statement so it can sit in a FROM clause"""
  return f"(\n{textwrap.indent(sql, '  ')}\n) AS {alias}"
