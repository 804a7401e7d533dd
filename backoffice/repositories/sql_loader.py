from __future__ import annotations

from functools import lru_cache
from pathlib import Path

SQL_DIR = Path(__file__).with_name("sql")


@lru_cache(maxsize=None)
def load_sql(name: str) -> str:
    """Return the statement stored in backoffice/repositories/sql/<name>.sql."""
    path = SQL_DIR / name
    if path.suffix != ".sql":
        path = path.with_name(f"{path.name}.sql")
    return path.read_text(encoding="utf-8").strip()
