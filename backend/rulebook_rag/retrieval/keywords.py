"""Turn a natural-language question into full-text keywords."""

from __future__ import annotations

from rulebook_rag.utils.text import NON_ALNUM_RE

MIN_KEYWORD_LENGTH = 3

# Question words (what, when, where, which, who, why, how) are deliberately
# absent: they rarely occur in rulebook text and act as implicit filters.
STOP_WORDS = frozenset(
    {
        # articles and determiners
        "the", "and", "any", "all", "each", "every", "some", "this", "that",
        "these", "those", "such", "its", "other", "another",
        # pronouns
        "you", "your", "yours", "yourself", "she", "her", "hers", "him", "his",
        "they", "them", "their", "theirs", "our", "ours", "mine", "myself",
        "itself", "themselves",
        # auxiliary and modal verbs
        "are", "was", "were", "been", "being", "has", "have", "had", "having",
        "does", "did", "doing", "done", "can", "could", "will", "would",
        "shall", "should", "may", "might", "must", "get", "gets", "got",
        # prepositions and conjunctions
        "for", "from", "with", "into", "onto", "about", "than", "then", "but",
        "nor", "yet", "also", "just", "only", "very", "too", "not", "out",
        "off", "over", "under", "again", "there", "here",
        # conversational filler
        "please", "tell", "explain", "know", "want", "need", "like", "really",
        "actually", "exactly", "happens", "happen", "mean", "means", "okay",
        "hey", "thanks",
    }
)


def extract_keywords(question: str) -> list[str]:
    """Lowercased, de-duplicated content words in question order."""
    cleaned = NON_ALNUM_RE.sub(" ", question.lower())
    keywords: list[str] = []
    seen: set[str] = set()
    for token in cleaned.split():
        if len(token) < MIN_KEYWORD_LENGTH or token in STOP_WORDS or token in seen:
            continue
        seen.add(token)
        keywords.append(token)
    return keywords


__all__ = ["extract_keywords", "STOP_WORDS", "MIN_KEYWORD_LENGTH"]
