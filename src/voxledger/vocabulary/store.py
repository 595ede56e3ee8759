"""
vocabulary/store.py — Spoken-term vocabulary interface

The vocabulary maps what people say ("gstr three b", "e bit da") to the
canonical form the ledger uses ("GSTR-3B", "EBITDA"). It feeds two stages:

  - Transcriber: the first N active spoken forms become the recognizer's
    context prompt, biasing decoding toward accounting words.
  - CommandInterpreter: active terms back-fill CATEGORY and PARTY slots
    when the phrasing alone doesn't name them.

VocabularyStore is a Protocol so the pipeline can run against the SQLite
store in production and InMemoryVocabularyStore in tests.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class DictionaryTerm:
    id: str
    spoken: str
    mapped: str
    category: str
    is_active: bool = True
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class DictionaryCategory:
    id: str
    name: str
    description: str


def normalize_spoken(spoken: str) -> str:
    return spoken.strip().lower()


def new_term_id() -> str:
    return f"term_{uuid.uuid4().hex[:12]}"


# ── Default seed data ─────────────────────────────────────────────────────────

DEFAULT_CATEGORIES: tuple[DictionaryCategory, ...] = (
    DictionaryCategory("cat_expense", "Expense Categories", "Common expense categories"),
    DictionaryCategory("cat_income", "Income Categories", "Common income categories"),
    DictionaryCategory("cat_parties", "Parties", "Customer and vendor names"),
    DictionaryCategory("cat_products", "Products", "Product and service names"),
    DictionaryCategory("cat_accounting", "Accounting Terms", "Accounting terminology"),
    DictionaryCategory("cat_gst", "GST Terms", "GST and tax terminology"),
)

# (spoken, mapped, category)
DEFAULT_TERMS: tuple[tuple[str, str, str], ...] = (
    # Expense
    ("groceries", "Groceries", "cat_expense"),
    ("office supplies", "Office Supplies", "cat_expense"),
    ("travel expenses", "Travel", "cat_expense"),
    ("fuel", "Fuel", "cat_expense"),
    ("internet bill", "Internet", "cat_expense"),
    ("electricity bill", "Electricity", "cat_expense"),
    ("water bill", "Water", "cat_expense"),
    ("rent", "Rent", "cat_expense"),
    ("salary", "Salary", "cat_expense"),
    ("maintenance", "Maintenance", "cat_expense"),
    # Income
    ("sales", "Sales Revenue", "cat_income"),
    ("consulting", "Consulting Income", "cat_income"),
    ("interest", "Interest Income", "cat_income"),
    # Parties
    ("mcdonalds", "McDonalds India", "cat_parties"),
    ("starbucks", "Starbucks India", "cat_parties"),
    ("amazon", "Amazon India", "cat_parties"),
    ("flipkart", "Flipkart India", "cat_parties"),
    # Accounting
    ("e bit da", "EBITDA", "cat_accounting"),
    ("p and l", "P&L", "cat_accounting"),
    ("balance sheet", "Balance Sheet", "cat_accounting"),
    ("cash flow", "Cash Flow", "cat_accounting"),
    ("depreciation", "Depreciation", "cat_accounting"),
    ("amortization", "Amortization", "cat_accounting"),
    ("revenue", "Revenue", "cat_accounting"),
    ("liabilities", "Liabilities", "cat_accounting"),
    ("assets", "Assets", "cat_accounting"),
    # GST
    ("gst", "GST", "cat_gst"),
    ("gstr one", "GSTR-1", "cat_gst"),
    ("gstr three b", "GSTR-3B", "cat_gst"),
    ("input tax credit", "ITC", "cat_gst"),
    ("tds", "TDS", "cat_gst"),
    ("tax deduction", "TDS", "cat_gst"),
)


def build_context_prompt(terms: list[DictionaryTerm], limit: int) -> str:
    """Comma-join the first `limit` active spoken forms."""
    active = [t.spoken for t in terms if t.is_active]
    return ", ".join(active[:limit])


# ── Interface ─────────────────────────────────────────────────────────────────

@runtime_checkable
class VocabularyStore(Protocol):
    async def init(self) -> None: ...

    async def close(self) -> None: ...

    async def get_all_terms(self) -> list[DictionaryTerm]:
        """Every term, active or not, ordered by category then spoken form."""
        ...

    async def get_active_terms(self) -> list[DictionaryTerm]: ...

    async def get_term_map(self) -> dict[str, str]:
        """spoken → mapped for active terms. The first term for a spoken form wins."""
        ...

    async def get_context_prompt(self, limit: int = 50) -> str: ...

    async def add_term(self, spoken: str, mapped: str, category: str) -> DictionaryTerm: ...

    async def remove_term(self, term_id: str) -> bool: ...

    async def set_active(self, term_id: str, active: bool) -> bool: ...

    async def search_terms(self, query: str, limit: int = 20) -> list[DictionaryTerm]: ...

    async def get_categories(self) -> list[DictionaryCategory]: ...


# ── In-memory implementation ──────────────────────────────────────────────────

class InMemoryVocabularyStore:
    """
    Dict-backed store with the same ordering rules as the SQLite store.

    Handy for tests and for `voxledger parse` runs that shouldn't touch disk.
    """

    def __init__(self, seed_defaults: bool = True) -> None:
        self._seed_defaults = seed_defaults
        self._terms: dict[str, DictionaryTerm] = {}
        self._ready = False

    async def init(self) -> None:
        if self._ready:
            return
        if self._seed_defaults:
            for spoken, mapped, category in DEFAULT_TERMS:
                await self.add_term(spoken, mapped, category)
        self._ready = True

    async def close(self) -> None:
        self._ready = False

    def _ordered(self) -> list[DictionaryTerm]:
        return sorted(self._terms.values(), key=lambda t: (t.category, t.spoken))

    async def get_all_terms(self) -> list[DictionaryTerm]:
        return self._ordered()

    async def get_active_terms(self) -> list[DictionaryTerm]:
        return [t for t in self._ordered() if t.is_active]

    async def get_term_map(self) -> dict[str, str]:
        mapping: dict[str, str] = {}
        for t in await self.get_active_terms():
            mapping.setdefault(t.spoken, t.mapped)
        return mapping

    async def get_context_prompt(self, limit: int = 50) -> str:
        return build_context_prompt(await self.get_active_terms(), limit)

    async def add_term(self, spoken: str, mapped: str, category: str) -> DictionaryTerm:
        term = DictionaryTerm(
            id=new_term_id(),
            spoken=normalize_spoken(spoken),
            mapped=mapped.strip(),
            category=category,
        )
        self._terms[term.id] = term
        return term

    async def remove_term(self, term_id: str) -> bool:
        return self._terms.pop(term_id, None) is not None

    async def set_active(self, term_id: str, active: bool) -> bool:
        term = self._terms.get(term_id)
        if term is None:
            return False
        self._terms[term_id] = replace(term, is_active=active)
        return True

    async def search_terms(self, query: str, limit: int = 20) -> list[DictionaryTerm]:
        q = query.strip().lower()
        hits = [
            t for t in self._ordered()
            if q in t.spoken or q in t.mapped.lower()
        ]
        return hits[:limit]

    async def get_categories(self) -> list[DictionaryCategory]:
        return sorted(DEFAULT_CATEGORIES, key=lambda c: c.id)

    def get(self, term_id: str) -> Optional[DictionaryTerm]:
        return self._terms.get(term_id)
