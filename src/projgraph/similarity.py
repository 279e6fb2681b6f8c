"""String similarity for observation deduplication and fuzzy search.

Pure functions, no I/O and no shared state:
- Normalization and tokenization
- Jaccard similarity on token sets
- Substring containment
- Levenshtein distance (two rolling rows)
- Tiered fuzzy match score for search ranking
"""

from __future__ import annotations

import re

from .constants import (
    DEDUPLICATION_THRESHOLD,
    FUZZY_JACCARD_CUTOFF,
    FUZZY_JACCARD_WEIGHT,
    FUZZY_LEVENSHTEIN_CUTOFF,
    FUZZY_LEVENSHTEIN_MAX_QUERY,
    FUZZY_LEVENSHTEIN_WEIGHT,
    FUZZY_SUBSTRING_BASE,
    FUZZY_TIER_SPAN,
    FUZZY_WORD_BASE,
    OBSERVATION_SIMILARITY_THRESHOLD,
)

_WHITESPACE = re.compile(r"\s+")
_TOKEN_SEPARATORS = re.compile(r"[\s,.;:!?()\[\]{}'\"]+")


def normalize(text: str) -> str:
    """Lowercase, trim and collapse whitespace runs to a single space."""
    return _WHITESPACE.sub(" ", text.lower().strip())


def tokenize(text: str) -> set[str]:
    """Split normalized text on punctuation/whitespace, dropping 1-char tokens."""
    return {word for word in _TOKEN_SEPARATORS.split(normalize(text)) if len(word) > 1}


def jaccard_similarity(a: str, b: str) -> float:
    """Token-set Jaccard similarity.

    1.0 when both strings have no tokens, 0.0 when only one is empty.
    """
    tokens_a = tokenize(a)
    tokens_b = tokenize(b)

    if not tokens_a and not tokens_b:
        return 1.0
    if not tokens_a or not tokens_b:
        return 0.0

    intersection = len(tokens_a & tokens_b)
    union = len(tokens_a | tokens_b)
    return intersection / union


def contains_similar(a: str, b: str) -> bool:
    """True if either normalized string contains the other.

    Catches "version 2.4.1" vs "current version is 2.4.1".
    """
    norm_a = normalize(a)
    norm_b = normalize(b)
    return norm_a in norm_b or norm_b in norm_a


def is_similar_observation(
    a: str,
    b: str,
    threshold: float = OBSERVATION_SIMILARITY_THRESHOLD,
) -> bool:
    """Check if two observations say (roughly) the same thing.

    Args:
        a: First observation
        b: Second observation
        threshold: Jaccard threshold used when neither contains the other

    Returns:
        True on normalized equality, containment, or Jaccard >= threshold
    """
    if normalize(a) == normalize(b):
        return True
    if contains_similar(a, b):
        return True
    return jaccard_similarity(a, b) >= threshold


def deduplicate_observations(
    observations: list[str],
    threshold: float = DEDUPLICATION_THRESHOLD,
) -> list[str]:
    """Collapse similar observations, keeping the longer of each pair.

    Scans greedily in input order. A survivor keeps the slot of the first
    observation in its group, so first-seen order is preserved.
    """
    result: list[str] = []

    for obs in observations:
        similar_index = next(
            (i for i, existing in enumerate(result)
             if is_similar_observation(existing, obs, threshold)),
            None,
        )
        if similar_index is None:
            result.append(obs)
        elif len(obs) > len(result[similar_index]):
            result[similar_index] = obs

    return result


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance with O(min(m, n)) memory."""
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    prev = list(range(len(b) + 1))
    curr = [0] * (len(b) + 1)

    for i, char_a in enumerate(a, start=1):
        curr[0] = i
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            curr[j] = min(
                prev[j] + 1,         # deletion
                curr[j - 1] + 1,     # insertion
                prev[j - 1] + cost,  # substitution
            )
        prev, curr = curr, prev

    return prev[len(b)]


def levenshtein_similarity(a: str, b: str) -> float:
    """Edit distance scaled to 0-1 (1.0 for two empty strings)."""
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / max_len


def fuzzy_match_score(query: str, target: str) -> float:
    """Score how well ``query`` matches ``target`` (0-1, higher is better).

    Tiers, first match wins:
    1. normalized substring: 0.8-1.0, shorter targets score higher
    2. every query word inside (or containing) a target word: 0.6-0.8
    3. Jaccard > 0.3: jaccard * 0.6
    4. queries up to 20 chars with Levenshtein similarity >= 0.5: sim * 0.5
    """
    norm_query = normalize(query)
    norm_target = normalize(target)

    if not norm_query:
        return 0.0

    if norm_query in norm_target:
        return FUZZY_SUBSTRING_BASE + FUZZY_TIER_SPAN * len(norm_query) / len(norm_target)

    query_words = tokenize(query)
    target_words = tokenize(target)
    matched = sum(
        1 for qw in query_words
        if any(qw in tw or tw in qw for tw in target_words)
    )
    if query_words and matched == len(query_words):
        # capped at 0.8, still below any substring score
        ratio = min(matched / len(target_words), 1.0)
        return FUZZY_WORD_BASE + FUZZY_TIER_SPAN * ratio

    jaccard = jaccard_similarity(query, target)
    if jaccard > FUZZY_JACCARD_CUTOFF:
        return jaccard * FUZZY_JACCARD_WEIGHT

    if len(norm_query) <= FUZZY_LEVENSHTEIN_MAX_QUERY:
        similarity = levenshtein_similarity(norm_query, norm_target)
        if similarity >= FUZZY_LEVENSHTEIN_CUTOFF:
            return similarity * FUZZY_LEVENSHTEIN_WEIGHT

    return 0.0
