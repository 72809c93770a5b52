from __future__ import annotations

import logging
import re
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel

from settings import get_settings

logger = logging.getLogger("book_catalog.catalog")

BOOK_COLUMNS = ["title", "author", "genre", "year"]
REQUIRED_COLUMNS = {"title": "Title", "author": "Author"}

# Signed 64-bit range of an SQLite INTEGER.
SQLITE_INTEGER_MIN = -(2**63)
SQLITE_INTEGER_MAX = 2**63 - 1
YEAR_PATTERN = re.compile(r"^[+-]?[0-9]+$")


@dataclass
class Book:
    title: Optional[str] = None
    author: Optional[str] = None
    genre: Optional[str] = None
    # Holds the submitted text when an unpersisted book fails year validation.
    year: Union[int, str, None] = None
    id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_persisted(self) -> bool:
        return self.id is not None and self.created_at is not None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Book":
        return cls(
            id=row["id"],
            title=row["title"],
            author=row["author"],
            genre=row["genre"],
            year=row["year"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class FieldError:
    field: str
    message: str


@dataclass
class Saved:
    book: Book


@dataclass
class ValidationFailed:
    book: Book
    errors: List[FieldError] = field(default_factory=list)


SaveOutcome = Union[Saved, ValidationFailed]


class BookForm(BaseModel):
    """The only book fields a request body may set."""

    title: Optional[str] = None
    author: Optional[str] = None
    genre: Optional[str] = None
    year: Optional[str] = None

    def fields(self) -> Dict[str, Optional[str]]:
        return self.model_dump()


# --------------------------------------------------------------------------- #
# Validation
# --------------------------------------------------------------------------- #
def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def fits_sqlite_integer(value: int) -> bool:
    return SQLITE_INTEGER_MIN <= value <= SQLITE_INTEGER_MAX


def _parse_year(value: Any) -> Tuple[Optional[int], bool]:
    """Return (year, ok). Blank values are a valid missing year."""
    if value is None or isinstance(value, bool):
        return None, value is None
    if isinstance(value, int):
        return (value, True) if fits_sqlite_integer(value) else (None, False)
    text = str(value).strip()
    if not text:
        return None, True
    if not YEAR_PATTERN.match(text):
        return None, False
    year = int(text)
    if not fits_sqlite_integer(year):
        return None, False
    return year, True


def validate_book(fields: Dict[str, Any]) -> Tuple[Dict[str, Any], List[FieldError]]:
    """Normalise submitted fields and collect per-field errors."""
    errors: List[FieldError] = []
    cleaned: Dict[str, Any] = {}

    for column, label in REQUIRED_COLUMNS.items():
        cleaned[column] = _clean_text(fields.get(column))
        if cleaned[column] is None:
            errors.append(FieldError(column, f'Please provide a value for "{label}"'))

    cleaned["genre"] = _clean_text(fields.get("genre"))

    year, ok = _parse_year(fields.get("year"))
    if not ok:
        errors.append(FieldError("year", '"Year" must be a whole number'))
    cleaned["year"] = year

    return cleaned, errors


def _py_lower(value: Any) -> Optional[str]:
    return str(value).lower() if value is not None else None


def _search_clause(term: str) -> Tuple[str, Tuple[str, ...]]:
    escaped = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    search_like = f"%{escaped}%"
    where = """
        WHERE py_lower(title) LIKE ? ESCAPE '\\'
           OR py_lower(author) LIKE ? ESCAPE '\\'
           OR py_lower(COALESCE(genre, '')) LIKE ? ESCAPE '\\'
           OR COALESCE(CAST(year AS TEXT), '') LIKE ? ESCAPE '\\'
    """
    return where, (search_like, search_like, search_like, search_like)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CatalogStore:
    """SQLite-backed store for the book catalog."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path or get_settings().db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        # SQLite's own lower() only folds ASCII letters.
        self._conn.create_function("py_lower", 1, _py_lower, deterministic=True)
        self._ensure_schema()
        logger.info("Connection to the database successful: %s", self.db_path)

    # --------------------------------------------------------------------- #
    # Schema
    # --------------------------------------------------------------------- #
    def _ensure_schema(self) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS books (
                    id INTEGER PRIMARY KEY,
                    title TEXT NOT NULL,
                    author TEXT NOT NULL,
                    genre TEXT,
                    year INTEGER,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )
            self._conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_books_title
                ON books(title COLLATE NOCASE);
                """
            )
            self._conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_books_author
                ON books(author COLLATE NOCASE);
                """
            )
            self._conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_books_created_at
                ON books(created_at);
                """
            )

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # --------------------------------------------------------------------- #
    # Reads
    # --------------------------------------------------------------------- #
    def count(self) -> int:
        with self._lock:
            return int(self._conn.execute("SELECT COUNT(*) FROM books;").fetchone()[0])

    def list_books(self, limit: int, offset: int = 0) -> List[Book]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT * FROM books
                ORDER BY created_at DESC, id DESC
                LIMIT ? OFFSET ?;
                """,
                (limit, max(0, offset)),
            ).fetchall()
        return [Book.from_row(row) for row in rows]

    def count_matches(self, term: str) -> int:
        where, params = _search_clause(term)
        with self._lock:
            return int(self._conn.execute(f"SELECT COUNT(*) FROM books {where};", params).fetchone()[0])

    def search_books(self, term: str, limit: int, offset: int = 0) -> Tuple[List[Book], int]:
        """Return one page of books containing ``term`` and the total match count."""
        where, params = _search_clause(term)
        with self._lock:
            total = self._conn.execute(f"SELECT COUNT(*) FROM books {where};", params).fetchone()[0]
            rows = self._conn.execute(
                f"""
                SELECT * FROM books
                {where}
                ORDER BY created_at DESC, id DESC
                LIMIT ? OFFSET ?;
                """,
                (*params, limit, max(0, offset)),
            ).fetchall()
        return [Book.from_row(row) for row in rows], int(total)

    def get_book(self, book_id: int) -> Optional[Book]:
        if not fits_sqlite_integer(book_id):
            return None
        with self._lock:
            row = self._conn.execute("SELECT * FROM books WHERE id = ?;", (book_id,)).fetchone()
        return Book.from_row(row) if row else None

    # --------------------------------------------------------------------- #
    # Mutations
    # --------------------------------------------------------------------- #
    def build_book(self, fields: Dict[str, Any], book_id: Optional[int] = None) -> Book:
        """Construct an unpersisted book from submitted fields for form redisplay."""
        year, ok = _parse_year(fields.get("year"))
        return Book(
            id=book_id,
            title=fields.get("title"),
            author=fields.get("author"),
            genre=fields.get("genre"),
            year=year if ok else fields.get("year"),
        )

    def create_book(self, fields: Dict[str, Any]) -> SaveOutcome:
        cleaned, errors = validate_book(fields)
        if errors:
            return ValidationFailed(self.build_book(fields), errors)

        timestamp = _now()
        columns = BOOK_COLUMNS + ["created_at", "updated_at"]
        values = [cleaned[column] for column in BOOK_COLUMNS] + [timestamp, timestamp]
        placeholders = ", ".join("?" for _ in columns)
        with self._lock, self._conn:
            cursor = self._conn.execute(
                f"""
                INSERT INTO books ({", ".join(columns)})
                VALUES ({placeholders});
                """,
                values,
            )
            book_id = int(cursor.lastrowid)
        logger.debug("Created book %s", book_id)
        return Saved(Book(id=book_id, created_at=timestamp, updated_at=timestamp, **cleaned))

    def update_book(self, book_id: int, fields: Dict[str, Any]) -> Optional[SaveOutcome]:
        """Apply fields to an existing book. Returns None when the book does not exist."""
        existing = self.get_book(book_id)
        if existing is None:
            return None

        cleaned, errors = validate_book(fields)
        if errors:
            return ValidationFailed(self.build_book(fields, book_id=book_id), errors)

        timestamp = _now()
        assignments = ", ".join(f"{column} = ?" for column in BOOK_COLUMNS)
        with self._lock, self._conn:
            self._conn.execute(
                f"UPDATE books SET {assignments}, updated_at = ? WHERE id = ?;",
                [cleaned[column] for column in BOOK_COLUMNS] + [timestamp, book_id],
            )
        logger.debug("Updated book %s", book_id)
        return Saved(
            Book(id=book_id, created_at=existing.created_at, updated_at=timestamp, **cleaned)
        )

    def delete_book(self, book_id: int) -> bool:
        if not fits_sqlite_integer(book_id):
            return False
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM books WHERE id = ?;", (book_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.debug("Deleted book %s", book_id)
        return deleted

    def all_books(self) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM books ORDER BY created_at DESC, id DESC;"
            ).fetchall()
        return [dict(row) for row in rows]


# ------------------------------------------------------------------------------
# Convenience factory
# ------------------------------------------------------------------------------
def get_store(db_path: Optional[Path] = None) -> CatalogStore:
    return CatalogStore(db_path=db_path)
