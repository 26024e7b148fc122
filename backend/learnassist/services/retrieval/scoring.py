"""
Relevance scorers for the content index.

A scorer maps (query, chunk text) to a relevance in [0, 1]. The index
collaborator can be given any scorer; the keyword scorer is the default.
"""
import re
from typing import Callable, List

RelevanceScorer = Callable[[str, str], float]

STOP_WORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "for", "from",
    "has", "he", "in", "is", "it", "its", "of", "on", "that", "the",
    "to", "was", "will", "with", "what", "when", "where", "who", "why",
    "how", "can", "could", "should", "would", "may", "might", "must",
})

_NON_WORD = re.compile(r"[^\w\s]")
_WORD = re.compile(r"\w+")


def extract_keywords(text: str) -> List[str]:
    """Lowercased words longer than two characters, stop words removed, order kept, deduplicated."""
    cleaned = _NON_WORD.sub(" ", (text or "").lower())
    seen = set()
    keywords = []
    for word in cleaned.split():
        if len(word) <= 2 or word in STOP_WORDS or word in seen:
            continue
        seen.add(word)
        keywords.append(word)
    return keywords


def keyword_relevance(query: str, text: str) -> float:
    """
    Fraction of the query's keywords that occur in the text.

    A keyword matches as a word prefix, so "recursion" matches "recursion's"
    and "function" matches "functions".
    """
    keywords = extract_keywords(query)
    if not keywords or not text:
        return 0.0
    words = _WORD.findall(text.lower())
    matched = sum(1 for keyword in keywords if any(word.startswith(keyword) for word in words))
    return matched / len(keywords)
