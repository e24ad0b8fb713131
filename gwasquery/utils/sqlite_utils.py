"""Helpers for the sqlite files backing the side indexes and tag tables."""

import os
import sqlite3
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Iterable, Iterator, List, Sequence, TypeVar

from ..core.errors import BuildError, ConfigurationError

__all__ = [
    "SQLITE_MAX_PARAMS",
    "connect_readonly",
    "require_tables",
    "read_meta",
    "atomic_database",
    "chunked",
]

# Conservative bound on "?" placeholders per statement across sqlite builds
SQLITE_MAX_PARAMS = 900

T = TypeVar("T")


def connect_readonly(path: Path) -> sqlite3.Connection:
    """Open an existing database read-only; each caller owns its connection."""
    return sqlite3.connect(f"file:{Path(path).resolve()}?mode=ro", uri=True)


def require_tables(path: Path, tables: Sequence[str]) -> None:
    """Validate that ``path`` is a database holding ``tables``.

    Raises:
        ConfigurationError: file missing, unreadable, or schema incomplete
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Index file not found: {path}")
    try:
        with closing(connect_readonly(path)) as conn:
            rows = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            ).fetchall()
    except sqlite3.DatabaseError as e:
        raise ConfigurationError(f"{path} is not a readable index: {e}")
    found = {r[0] for r in rows}
    missing = [t for t in tables if t not in found]
    if missing:
        raise ConfigurationError(
            f"{path} is missing table(s) {', '.join(missing)}; rebuild the index"
        )


def read_meta(path: Path, table: str, key: str) -> str:
    with closing(connect_readonly(path)) as conn:
        row = conn.execute(f"SELECT value FROM {table} WHERE key = ?", (key,)).fetchone()
    if row is None:
        raise ConfigurationError(f"{path} has no '{key}' entry in {table}")
    return str(row[0])


@contextmanager
def atomic_database(path: Path) -> Iterator[sqlite3.Connection]:
    """Build a database next to ``path`` and move it into place on success.

    Any exception removes the partial file, so a failed build never leaves
    an index behind that looks complete.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".partial")
    if tmp.exists():
        tmp.unlink()
    conn = sqlite3.connect(str(tmp))
    try:
        yield conn
        conn.commit()
    except BaseException:
        conn.close()
        tmp.unlink(missing_ok=True)
        raise
    conn.close()
    try:
        os.replace(tmp, path)
    except OSError as e:
        tmp.unlink(missing_ok=True)
        raise BuildError(f"Could not move index into place at {path}: {e}")


def chunked(items: Iterable[T], size: int = SQLITE_MAX_PARAMS) -> Iterator[List[T]]:
    batch: List[T] = []
    for item in items:
        batch.append(item)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch
