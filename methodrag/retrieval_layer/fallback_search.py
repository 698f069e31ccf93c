import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from methodrag.models import CatalogEntry, Methodology

STOPWORDS = {
    "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "how", "i",
    "in", "into", "is", "it", "me", "my", "of", "on", "or", "our", "that", "the",
    "this", "to", "we", "what", "which", "with", "want", "need", "using", "use",
}

# Per-field weight of a keyword hit; the best field hit counts for each term
FIELD_WEIGHTS = {
    "name": 3.0,
    "tags": 2.0,
    "category": 2.0,
    "description": 1.0,
}
MAX_FIELD_WEIGHT = max(FIELD_WEIGHTS.values())

@dataclass
class FallbackMatch:
    entry: CatalogEntry
    score: float
    matched_fields: List[str] = field(default_factory=list)
    matched_terms: List[str] = field(default_factory=list)

def tokenize(text: str) -> List[str]:
    """Lowercase keyword terms of a query, stopwords removed, order kept."""
    terms = []
    for term in re.findall(r"[a-z0-9]+", text.lower()):
        if len(term) < 2 or term in STOPWORDS or term in terms:
            continue
        terms.append(term)
    return terms

def _searchable_fields(methodology: Methodology) -> Dict[str, str]:
    return {
        "name": methodology.name.lower(),
        "tags": " ".join(methodology.tags).lower(),
        "category": methodology.category.lower().replace("-", " "),
        "description": methodology.description.lower(),
    }

def _term_in(term: str, text: str) -> bool:
    if term in text:
        return True
    # plural query terms still hit singular text ("interviews" -> "interview")
    return len(term) > 3 and term.endswith("s") and term[:-1] in text

def keyword_overlap(entry: CatalogEntry, terms: List[str]) -> FallbackMatch:
    fields = _searchable_fields(entry.methodology)
    total = 0.0
    matched_fields: List[str] = []
    matched_terms: List[str] = []
    for term in terms:
        best = 0.0
        for field_name, text in fields.items():
            if _term_in(term, text):
                best = max(best, FIELD_WEIGHTS[field_name])
                if field_name not in matched_fields:
                    matched_fields.append(field_name)
        if best > 0:
            matched_terms.append(term)
        total += best
    score = total / (MAX_FIELD_WEIGHT * len(terms)) if terms else 0.0
    return FallbackMatch(entry=entry, score=score, matched_fields=matched_fields,
                         matched_terms=matched_terms)

def fallback_search(
    entries: Iterable[CatalogEntry],
    intent: str,
    top_k: Optional[int] = None
) -> List[FallbackMatch]:
    """
    Rank catalog entries by keyword overlap with the query intent.

    Always available: it only reads the given catalog snapshot. Entries with
    no overlap are left out. Ties go to the more cited methodology, then to
    the lexicographically smaller id.

    Args:
        entries: Catalog snapshot
        intent: Free-text query intent
        top_k: Optional maximum number of matches

    Returns:
        Matches in ranking order
    """
    terms = tokenize(intent or "")
    if not terms:
        return []

    matches = []
    for entry in entries:
        match = keyword_overlap(entry, terms)
        if match.score <= 0:
            continue
        matches.append(match)

    matches.sort(key=lambda m: (-m.score, -m.entry.methodology.metadata.citations, m.entry.id))
    return matches[:top_k] if top_k else matches
