"""
vocabulary/ — Spoken-term dictionary

Public API:
    from voxledger.vocabulary import SQLiteVocabularyStore, InMemoryVocabularyStore
"""

from voxledger.vocabulary.sqlite_store import SQLiteVocabularyStore
from voxledger.vocabulary.store import (
    DEFAULT_CATEGORIES,
    DEFAULT_TERMS,
    DictionaryCategory,
    DictionaryTerm,
    InMemoryVocabularyStore,
    VocabularyStore,
)

__all__ = [
    "VocabularyStore",
    "SQLiteVocabularyStore",
    "InMemoryVocabularyStore",
    "DictionaryTerm",
    "DictionaryCategory",
    "DEFAULT_CATEGORIES",
    "DEFAULT_TERMS",
]
