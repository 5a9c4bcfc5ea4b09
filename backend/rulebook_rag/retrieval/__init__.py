"""Retrieval orchestration components."""

from .vector_index import VectorIndex
from .keywords import extract_keywords
from .scorers import LexicalScorer, Scorer, VectorScorer, build_scorer
from .selector import ProximityDuplicate, ShingleDuplicate, build_duplicate_predicate, select
from .history import RetrievalHistory
from .search import QueryService

__all__ = [
    "VectorIndex",
    "extract_keywords",
    "Scorer",
    "LexicalScorer",
    "VectorScorer",
    "build_scorer",
    "ProximityDuplicate",
    "ShingleDuplicate",
    "build_duplicate_predicate",
    "select",
    "RetrievalHistory",
    "QueryService",
]
