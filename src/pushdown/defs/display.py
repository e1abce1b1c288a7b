import pandas as pd

PREVIEW_ROWS = 10


def format_table(headers, rows):
  """Return a pretty-printed table as string."""
  str_rows = [[str(c) for c in row] for row in rows]
  widths = [len(h) for h in headers]

  for row in str_rows:
    for i, col in enumerate(row):
      widths[i] = max(widths[i], len(col))

  def fmt_row(row):
    return " | ".join(col.ljust(widths[i]) for i, col in enumerate(row))

  sep = "-+-".join("-" * w for w in widths)
  lines = [fmt_row(headers), sep]
  for row in str_rows:
    lines.append(fmt_row(row))
  return "\n".join(lines)


def preview(frame: pd.DataFrame, rows: int = PREVIEW_ROWS) -> str:
  """First `rows` rows plus the total row count."""
  headers = [str(c) for c in frame.columns]
  if not headers:
    return "(no columns)"
  body = format_table(headers, frame.head(rows).itertuples(index=False))
  more = f", showing first {rows}" if len(frame) > rows else ""
  return f"{body}\n({len(frame):,} rows{more})"
