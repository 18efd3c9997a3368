"""Text normalization, fuzzy matching and highlighting helpers."""
import re
from typing import Any, Iterable, List, Sequence, Tuple


_PUNCTUATION_RE = re.compile(r"[^\w\s]")

DEFAULT_MARKER: Tuple[str, str] = ("<mark>", "</mark>")


def tokenize(text: Any) -> List[str]:
    """Tokenize text into normalized words.

    Lowercases, strips everything that is not a word character or whitespace,
    and splits on whitespace runs.

    Args:
        text: Text to tokenize. Anything that is not a non-empty string
            yields no tokens.

    Returns:
        List of lowercase words, in order, duplicates kept
    """
    if not text or not isinstance(text, str):
        return []
    return _PUNCTUATION_RE.sub("", text.lower()).split()


def levenshtein_distance(s1: str, s2: str) -> int:
    """Classic edit distance with unit cost insert, delete and substitute."""
    if s1 == s2:
        return 0
    if not s1:
        return len(s2)
    if not s2:
        return len(s1)

    rows = len(s2) + 1
    cols = len(s1) + 1
    track = [[0] * cols for _ in range(rows)]

    for i in range(cols):
        track[0][i] = i
    for j in range(rows):
        track[j][0] = j

    for j in range(1, rows):
        for i in range(1, cols):
            indicator = 0 if s1[i - 1] == s2[j - 1] else 1
            track[j][i] = min(
                track[j][i - 1] + 1,  # deletion
                track[j - 1][i] + 1,  # insertion
                track[j - 1][i - 1] + indicator,  # substitution
            )

    return track[rows - 1][cols - 1]


def term_matches(
    term: str,
    tokens: Sequence[str],
    fuzzy: bool = False,
    threshold: int = 2,
) -> bool:
    """Check whether a query term matches any token.

    An exact hit always short-circuits. With fuzzy enabled, a token within
    ``threshold`` edits also counts.
    """
    if term in tokens:
        return True
    if fuzzy:
        for token in tokens:
            if levenshtein_distance(term, token) <= threshold:
                return True
    return False


def highlight_matches(
    text: Any,
    terms: Iterable[str],
    marker: Tuple[str, str] = DEFAULT_MARKER,
) -> Any:
    """Wrap every case-insensitive occurrence of any term in a marker.

    Operates on raw text; escaping for display is the caller's job.

    Args:
        text: Text in which to highlight terms
        terms: Terms to highlight (regex metacharacters are escaped)
        marker: Opening and closing marker strings

    Returns:
        Text with terms wrapped, or the input unchanged when there is
        nothing to do
    """
    if not text or not isinstance(text, str):
        return text

    escaped = [re.escape(term) for term in terms if term]
    if not escaped:
        return text

    # Longest first so overlapping terms prefer the widest match
    escaped.sort(key=len, reverse=True)
    pattern = re.compile("(" + "|".join(escaped) + ")", re.IGNORECASE)
    opening, closing = marker
    return pattern.sub(lambda m: f"{opening}{m.group(1)}{closing}", text)
