"""
vocabulary/sqlite_store.py — SQLite-backed vocabulary

Tables:
  - dictionary_terms      : spoken → mapped pairs with a category and active flag
  - dictionary_categories : the fixed category list (expense, income, parties, ...)

On first init() with an empty table the default accounting vocabulary is
seeded, unless seed_defaults=False.

Usage:
    store = SQLiteVocabularyStore("./data/dictionary.db")
    await store.init()
    prompt = await store.get_context_prompt(limit=50)
    await store.add_term("zomato", "Zomato Ltd", "cat_parties")
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Optional

import aiosqlite

from voxledger.exceptions import VocabularyNotInitializedError
from voxledger.observability.logger import get_logger
from voxledger.vocabulary.store import (
    DEFAULT_CATEGORIES,
    DEFAULT_TERMS,
    DictionaryCategory,
    DictionaryTerm,
    build_context_prompt,
    new_term_id,
    normalize_spoken,
)

log = get_logger(__name__)

# ── Schema DDL ────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS dictionary_terms (
    id          TEXT PRIMARY KEY,
    spoken      TEXT NOT NULL,      -- lower-cased, trimmed
    mapped      TEXT NOT NULL,
    category    TEXT NOT NULL,
    isActive    INTEGER DEFAULT 1,
    createdAt   REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS dictionary_categories (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL,
    description TEXT
);

CREATE INDEX IF NOT EXISTS idx_terms_spoken ON dictionary_terms(spoken);
CREATE INDEX IF NOT EXISTS idx_terms_category ON dictionary_terms(category);
"""


def _row_to_term(row: aiosqlite.Row) -> DictionaryTerm:
    return DictionaryTerm(
        id=row["id"],
        spoken=row["spoken"],
        mapped=row["mapped"],
        category=row["category"],
        is_active=bool(row["isActive"]),
        created_at=row["createdAt"],
    )


class SQLiteVocabularyStore:
    """Async SQLite vocabulary. Reads need no locking; aiosqlite serialises writes."""

    def __init__(self, db_path: str | Path = "./data/dictionary.db", seed_defaults: bool = True):
        self.db_path = str(db_path)
        self.seed_defaults = seed_defaults
        self._db: Optional[aiosqlite.Connection] = None

    async def init(self) -> None:
        """Create the database file and tables, then seed defaults if empty."""
        if self._db is not None:
            return
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(_SCHEMA)
        await self._db.executemany(
            "INSERT OR IGNORE INTO dictionary_categories (id, name, description) VALUES (?, ?, ?)",
            [(c.id, c.name, c.description) for c in DEFAULT_CATEGORIES],
        )
        await self._db.commit()

        seeded = 0
        if self.seed_defaults:
            async with self._db.execute("SELECT COUNT(*) FROM dictionary_terms") as cur:
                (count,) = await cur.fetchone()
            if count == 0:
                seeded = await self._seed()

        log.info("vocabulary.initialized", db_path=self.db_path, seeded=seeded)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    def _require_db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise VocabularyNotInitializedError(
                "SQLiteVocabularyStore is not initialised (or has been closed). "
                "Call `await store.init()` before use."
            )
        return self._db

    async def _seed(self) -> int:
        db = self._require_db()
        now = time.time()
        rows = [
            (new_term_id(), normalize_spoken(spoken), mapped, category, 1, now)
            for spoken, mapped, category in DEFAULT_TERMS
        ]
        await db.executemany(
            """INSERT INTO dictionary_terms
               (id, spoken, mapped, category, isActive, createdAt)
               VALUES (?, ?, ?, ?, ?, ?)""",
            rows,
        )
        await db.commit()
        return len(rows)

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def get_all_terms(self) -> list[DictionaryTerm]:
        db = self._require_db()
        async with db.execute(
            "SELECT * FROM dictionary_terms ORDER BY category, spoken"
        ) as cur:
            rows = await cur.fetchall()
        return [_row_to_term(r) for r in rows]

    async def get_active_terms(self) -> list[DictionaryTerm]:
        db = self._require_db()
        async with db.execute(
            "SELECT * FROM dictionary_terms WHERE isActive = 1 ORDER BY category, spoken"
        ) as cur:
            rows = await cur.fetchall()
        return [_row_to_term(r) for r in rows]

    async def get_term_map(self) -> dict[str, str]:
        mapping: dict[str, str] = {}
        for term in await self.get_active_terms():
            mapping.setdefault(term.spoken, term.mapped)
        return mapping

    async def get_context_prompt(self, limit: int = 50) -> str:
        return build_context_prompt(await self.get_active_terms(), limit)

    async def search_terms(self, query: str, limit: int = 20) -> list[DictionaryTerm]:
        db = self._require_db()
        pattern = f"%{query.strip().lower()}%"
        async with db.execute(
            """SELECT * FROM dictionary_terms
               WHERE spoken LIKE ? OR LOWER(mapped) LIKE ?
               ORDER BY category, spoken
               LIMIT ?""",
            (pattern, pattern, limit),
        ) as cur:
            rows = await cur.fetchall()
        return [_row_to_term(r) for r in rows]

    async def get_categories(self) -> list[DictionaryCategory]:
        db = self._require_db()
        async with db.execute(
            "SELECT id, name, description FROM dictionary_categories ORDER BY id"
        ) as cur:
            rows = await cur.fetchall()
        return [DictionaryCategory(r["id"], r["name"], r["description"] or "") for r in rows]

    # ── Writes ────────────────────────────────────────────────────────────────

    async def add_term(self, spoken: str, mapped: str, category: str) -> DictionaryTerm:
        db = self._require_db()
        term = DictionaryTerm(
            id=new_term_id(),
            spoken=normalize_spoken(spoken),
            mapped=mapped.strip(),
            category=category,
        )
        await db.execute(
            """INSERT INTO dictionary_terms
               (id, spoken, mapped, category, isActive, createdAt)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (term.id, term.spoken, term.mapped, term.category, 1, term.created_at),
        )
        await db.commit()
        log.debug("vocabulary.term_added", term_id=term.id, spoken=term.spoken)
        return term

    async def remove_term(self, term_id: str) -> bool:
        db = self._require_db()
        cur = await db.execute("DELETE FROM dictionary_terms WHERE id = ?", (term_id,))
        await db.commit()
        removed = cur.rowcount > 0
        await cur.close()
        if removed:
            log.debug("vocabulary.term_removed", term_id=term_id)
        return removed

    async def set_active(self, term_id: str, active: bool) -> bool:
        db = self._require_db()
        cur = await db.execute(
            "UPDATE dictionary_terms SET isActive = ? WHERE id = ?",
            (1 if active else 0, term_id),
        )
        await db.commit()
        changed = cur.rowcount > 0
        await cur.close()
        return changed
