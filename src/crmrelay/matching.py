import re
from typing import Iterable

from crmrelay.models import SearchResult

COMPANY_SUFFIXES = (
    "incorporated", "inc", "llc", "ltd", "limited", "corporation", "corp",
    "company", "co", "labs", "lab", "technologies", "technology", "tech",
    "solutions", "services", "group", "holdings", "partners", "ventures",
    "capital", "gmbh", "ag", "sa", "pty", "plc",
)

_SUFFIX_RE = re.compile(
    r"[\s,]+(?:" + "|".join(re.escape(s) for s in COMPANY_SUFFIXES) + r")\.?$",
    re.IGNORECASE,
)

RELEVANCE_THRESHOLD = 0.8


def strip_company_suffixes(name: str) -> str:
    """Lowercase and drop trailing legal/common suffixes ("Acme Labs Inc." -> "acme")."""
    result = name.lower().strip()
    while True:
        stripped = _SUFFIX_RE.sub("", result).strip()
        if stripped == result or not stripped:
            return result
        result = stripped


def _words(text: str) -> list[str]:
    return [w for w in re.split(r"[\s\-_/,]+", text.lower()) if w]


def sequential_match(a: str, b: str) -> float:
    """Share of ``a`` matched character-by-character from the start of ``b``."""
    a, b = a.lower(), b.lower()
    if not a:
        return 0.0
    count = 0
    for x, y in zip(a, b):
        if x != y:
            break
        count += 1
    return count / len(a)


def best_word_match(query: str, name: str) -> tuple[float, str]:
    """Best sequential match of the whole query against any single word of ``name``."""
    query = query.lower().strip()
    best, best_word = 0.0, ""
    for word in _words(name):
        if word == query:
            return 1.0, word
        score = sequential_match(query, word)
        if score > best:
            best, best_word = score, word
    return best, best_word


def word_match_score(query: str, name: str) -> float:
    """Average over query words of their best prefix match against ``name`` words."""
    query_words = _words(query)
    name_words = _words(name)
    if not query_words or not name_words:
        return 0.0
    total = 0.0
    for qw in query_words:
        total += max(sequential_match(qw, nw) for nw in name_words)
    return total / len(query_words)


def word_similarity(a: str, b: str) -> float:
    """Share of words in common (containment counts) relative to the longer name."""
    words_a, words_b = _words(a), _words(b)
    if not words_a or not words_b:
        return 0.0
    matching = sum(
        1 for wa in words_a if any(wa == wb or wa in wb or wb in wa for wb in words_b)
    )
    return matching / max(len(words_a), len(words_b))


def relevance_score(query: str, result: SearchResult) -> float:
    """Score a search hit against the query; 0 means irrelevant.

    Substring hits on name or secondary label score 0.9 (1.0 for an exact
    name match); otherwise the word-level score against the suffix-stripped
    query counts when it reaches RELEVANCE_THRESHOLD.
    """
    lowered = query.lower().strip()
    stripped = strip_company_suffixes(lowered)
    if not stripped:
        return 0.0
    name = result.name.lower()
    extra = (result.extra or "").lower()

    if name == lowered or strip_company_suffixes(name) == stripped:
        return 1.0
    for needle in {lowered, stripped}:
        if needle and (needle in name or (extra and needle in extra)):
            return 0.9

    score = word_match_score(stripped, result.name)
    return score if score >= RELEVANCE_THRESHOLD else 0.0


def filter_relevant(query: str, results: Iterable[SearchResult]) -> list[SearchResult]:
    """Keep relevant hits, best first, deduplicated by id (stable for ties)."""
    seen = set()
    scored = []
    for index, result in enumerate(results):
        if result.id in seen:
            continue
        score = relevance_score(query, result)
        if score <= 0:
            continue
        seen.add(result.id)
        scored.append((-score, index, result))
    scored.sort(key=lambda item: (item[0], item[1]))
    return [result for _, _, result in scored]


def match_confidence(query: str, results: list[SearchResult], domain: str = "") -> tuple[str, str]:
    """Grade the top hit as high, medium, low or none, with a reason."""
    if not results:
        return "none", "No results found"

    top = results[0]
    query_lower = query.lower().strip()
    result_lower = top.name.lower().strip()
    query_stripped = strip_company_suffixes(query_lower)
    result_stripped = strip_company_suffixes(result_lower)
    ambiguous = len(results) > 3

    def cap(level: str) -> str:
        return "medium" if ambiguous and level == "high" else level

    if result_lower == query_lower:
        return "high", "Exact name match"

    if query_stripped == result_stripped and len(query_stripped) > 2:
        if len(query_lower) > len(query_stripped):
            return "high", "Exact match (ignoring suffixes)"
        return cap("high"), "Exact match (ignoring suffixes)"

    if domain and top.extra:
        if domain.lower() == top.extra.lower():
            return "high", "Exact domain match"
        if domain.lower() in top.extra.lower() or top.extra.lower() in domain.lower():
            return "medium", "Partial domain match"

    long_enough = len(query_stripped) >= 3
    seq = sequential_match(query_stripped, result_stripped)
    if seq >= 0.9 and long_enough:
        return cap("high"), f"Sequential match ({round(seq * 100)}% of input)"

    word_score, word = best_word_match(query_stripped, result_stripped)
    if word_score >= 0.9 and long_enough:
        return cap("high"), f'Word match "{word}" ({round(word_score * 100)}%)'
    if word_score >= 0.7 and long_enough:
        return "medium", f'Partial word match "{word}" ({round(word_score * 100)}%)'

    if long_enough and query_stripped in result_stripped:
        return "medium", "Name contained in result"
    if len(result_stripped) >= 3 and result_stripped in query_stripped:
        return "medium", "Result name contained in input"

    similarity = word_similarity(query_stripped, result_stripped)
    if similarity >= 0.8:
        return cap("high"), f"Word match ({round(similarity * 100)}%)"
    if similarity >= 0.5:
        return "medium", f"Partial word match ({round(similarity * 100)}%)"

    if len(results) > 1:
        return "low", f"Ambiguous: {len(results)} results, no clear match"
    return "low", "Weak match - first result taken"
