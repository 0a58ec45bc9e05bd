"""
Ordered matching strategies used to find existing Dolibarr records.

Each strategy table is a list of (name, predicate) pairs evaluated in order.
A predicate receives the normalized search term and one candidate record and
returns True on a match. The first strategy that matches ANY candidate wins;
there is no ranking across strategies.

The similarity thresholds below were chosen empirically. They are tunable
constants, not semantically meaningful values, and are kept as-is so that
matching behaves the same as existing deployments.
"""

import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from dolibarr_ocr.utils.similarity import similarity

logger = logging.getLogger(__name__)

SUPPLIER_HIGH_SIMILARITY = 0.9
SUPPLIER_MEDIUM_SIMILARITY = 0.8
PRODUCT_REF_SIMILARITY = 0.9
PRODUCT_DESCRIPTION_SIMILARITY = 0.85

LEGAL_SUFFIX_PATTERN = re.compile(
    r"\s+(s\.?l\.?|s\.?a\.?|ltd\.?|inc\.?|corp\.?|gmbh|b\.?v\.?)$",
    re.IGNORECASE,
)

STOP_WORDS = frozenset([
    "el", "la", "los", "las", "de", "del", "y", "o", "con", "sin", "para",
    "por", "en", "a", "un", "una", "es", "son",
    "the", "and", "or", "of", "in", "to", "for", "with",
])

Record = Dict[str, Any]
Predicate = Callable[[str, Record], bool]
Strategy = Tuple[str, Predicate]


def normalize(value: Optional[str]) -> str:
    """Lowercase and trim, treating None as empty."""
    return (value or "").strip().lower()


def _without_whitespace(value: str) -> str:
    return re.sub(r"\s+", "", value)


def _without_separators(value: str) -> str:
    return re.sub(r"[\s\-_]", "", value)


def strip_legal_suffix(name: str) -> str:
    """Remove a trailing company form such as 'S.L.' or 'GmbH'."""
    return LEGAL_SUFFIX_PATTERN.sub("", name)


def extract_keywords(text: str) -> List[str]:
    """
    Extract up to five significant words from a product description.

    Words of two characters or fewer and Spanish/English stop words are
    dropped.
    """
    words = [word.strip().lower() for word in text.split()]
    return [w for w in words if len(w) > 2 and w not in STOP_WORDS][:5]


# =============================================================================
# SUPPLIER STRATEGIES (candidate field: name)
# =============================================================================

def _supplier_suffix_match(search: str, supplier: Record) -> bool:
    cleaned_search = strip_legal_suffix(search)
    cleaned_supplier = strip_legal_suffix(normalize(supplier.get("name")))
    if not cleaned_search or not cleaned_supplier:
        return False
    return (
        cleaned_supplier == cleaned_search
        or cleaned_search in cleaned_supplier
        or cleaned_supplier in cleaned_search
    )


SUPPLIER_STRATEGIES: List[Strategy] = [
    ("exact match",
     lambda search, s: normalize(s.get("name")) == search),
    ("exact match ignoring whitespace",
     lambda search, s: _without_whitespace(normalize(s.get("name"))) == _without_whitespace(search)),
    ("supplier name contains search",
     lambda search, s: search in normalize(s.get("name"))),
    ("search contains supplier name",
     lambda search, s: normalize(s.get("name")) in search),
    ("high similarity",
     lambda search, s: similarity(search, normalize(s.get("name"))) > SUPPLIER_HIGH_SIMILARITY),
    ("medium similarity",
     lambda search, s: similarity(search, normalize(s.get("name"))) > SUPPLIER_MEDIUM_SIMILARITY),
    ("match without legal suffix", _supplier_suffix_match),
]


# =============================================================================
# PRODUCT REFERENCE STRATEGIES (candidate field: ref)
# =============================================================================

PRODUCT_REF_STRATEGIES: List[Strategy] = [
    ("exact ref",
     lambda search, p: normalize(p.get("ref")) == search),
    ("exact ref without separators",
     lambda search, p: _without_separators(normalize(p.get("ref"))) == _without_separators(search)),
    ("ref contains search",
     lambda search, p: search in normalize(p.get("ref"))),
    ("search contains ref",
     lambda search, p: normalize(p.get("ref")) in search),
    ("very high ref similarity",
     lambda search, p: similarity(search, normalize(p.get("ref"))) > PRODUCT_REF_SIMILARITY),
]


# =============================================================================
# PRODUCT DESCRIPTION STRATEGIES (candidate fields: label, description)
# =============================================================================

def _label_contained_in_search(search: str, product: Record) -> bool:
    label = normalize(product.get("label"))
    return bool(label) and label in search


def _keyword_match(search: str, product: Record) -> bool:
    keywords = extract_keywords(search)
    if not keywords:
        return False
    product_text = f"{product.get('label') or ''} {product.get('description') or ''}".lower()
    return all(keyword in product_text for keyword in keywords)


def _field_similarity(field: str) -> Predicate:
    def matcher(search: str, product: Record) -> bool:
        value = normalize(product.get(field))
        if not value:
            return False
        return similarity(search, value) > PRODUCT_DESCRIPTION_SIMILARITY
    return matcher


def _field_contains_search(field: str) -> Predicate:
    def matcher(search: str, product: Record) -> bool:
        value = product.get(field)
        return bool(value) and search in value.lower()
    return matcher


PRODUCT_DESCRIPTION_STRATEGIES: List[Strategy] = [
    ("exact label",
     lambda search, p: bool(p.get("label")) and normalize(p.get("label")) == search),
    ("exact description",
     lambda search, p: bool(p.get("description")) and normalize(p.get("description")) == search),
    ("exact label ignoring whitespace",
     lambda search, p: bool(p.get("label"))
     and _without_whitespace(normalize(p.get("label"))) == _without_whitespace(search)),
    ("exact description ignoring whitespace",
     lambda search, p: bool(p.get("description"))
     and _without_whitespace(normalize(p.get("description"))) == _without_whitespace(search)),
    ("label contains search", _field_contains_search("label")),
    ("description contains search", _field_contains_search("description")),
    ("search contains label", _label_contained_in_search),
    ("high label similarity", _field_similarity("label")),
    ("high description similarity", _field_similarity("description")),
    ("keywords", _keyword_match),
]


def find_first_match(
    search: str,
    candidates: Iterable[Record],
    strategies: List[Strategy],
    required_field: Optional[str] = None,
) -> Optional[Tuple[Record, str]]:
    """
    Run a strategy table over the candidates, first match wins.

    Args:
        search: Normalized (lowercased, trimmed) search term
        candidates: Dolibarr records to test
        strategies: Ordered (name, predicate) table
        required_field: Skip candidates where this field is empty

    Returns:
        (matching record, strategy name), or None when no strategy matches
    """
    if not search:
        return None

    pool = [
        c for c in candidates
        if required_field is None or normalize(c.get(required_field))
    ]

    for strategy_name, predicate in strategies:
        for candidate in pool:
            if predicate(search, candidate):
                logger.debug(f"Matched '{search}' with strategy '{strategy_name}'")
                return candidate, strategy_name
        logger.debug(f"No candidates matched '{search}' with strategy '{strategy_name}'")

    return None
