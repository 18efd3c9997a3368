"""Search engine module for prompts."""
import copy
import json
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence, Set

from promptverse.config import SearchConfig
from promptverse.filters import apply_filters, prompt_timestamp
from promptverse.matching import term_matches, tokenize


SEARCHABLE_FIELDS = ("title", "description", "content", "tags")


@dataclass
class SearchOptions:
    """Options for a single search call."""
    filters: Dict[str, Any] = field(default_factory=dict)
    fuzzy: bool = False
    use_cache: bool = True
    limit: Optional[int] = None  # Applied after ranking, not part of the cache key


@dataclass
class SearchResponse:
    """Ranked prompts plus the normalized terms to highlight."""
    results: List[Dict[str, Any]]
    highlight_terms: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {"results": self.results, "highlightTerms": self.highlight_terms}


class SearchEngine(Protocol):
    """Protocol for search engines to allow extensibility."""

    def search(
        self,
        prompts: Sequence[Dict[str, Any]],
        query: str,
        options: Optional[SearchOptions] = None,
    ) -> SearchResponse:
        """Search prompts based on query.

        Args:
            prompts: Prompts to search
            query: Raw search query string
            options: Filters, fuzzy flag and cache flag

        Returns:
            SearchResponse with prompts sorted by relevance
        """
        ...


def _field_tokens(prompt: Dict[str, Any]) -> Dict[str, List[str]]:
    tags = prompt.get("tags")
    if isinstance(tags, (list, tuple)):
        tags_text = " ".join(str(tag) for tag in tags)
    else:
        tags_text = ""

    return {
        "title": tokenize(prompt.get("title")),
        "description": tokenize(prompt.get("description")),
        "content": tokenize(prompt.get("content")),
        "tags": tokenize(tags_text),
    }


def score_prompt(
    prompt: Dict[str, Any],
    query_tokens: Sequence[str],
    fuzzy: bool = False,
    config: Optional[SearchConfig] = None,
) -> float:
    """Score a prompt against tokenized query terms.

    Every field a term matches adds that field's weight, so one term can
    count several times. Each distinct matched term adds the coverage bonus,
    and the whole query appearing verbatim in title, description or content
    adds the first applicable phrase bonus.

    Args:
        prompt: Prompt dict with optional 'title', 'description', 'content', 'tags'
        query_tokens: Normalized query tokens
        fuzzy: Allow matches within the configured edit distance
        config: Weights and thresholds (defaults to SearchConfig())

    Returns:
        Non-negative relevance score
    """
    config = config or SearchConfig()
    field_tokens = _field_tokens(prompt)

    score = 0.0
    matched_terms: Set[str] = set()

    for term in query_tokens:
        for field_name in SEARCHABLE_FIELDS:
            tokens = field_tokens[field_name]
            if tokens and term_matches(term, tokens, fuzzy, config.fuzzy_threshold):
                score += config.field_weights.get(field_name, 0)
                matched_terms.add(term)

    score += len(matched_terms) * config.coverage_bonus

    phrase = " ".join(query_tokens)
    if phrase:
        for field_name, bonus in config.phrase_bonuses.items():
            text = prompt.get(field_name)
            if isinstance(text, str) and phrase in text.lower():
                score += bonus
                break

    return score


class SearchCache:
    """Bounded memo of search responses, evicting the oldest insert first.

    Reads do not refresh an entry's position. Values are stored and handed
    out as deep copies so callers can never mutate a cached response.
    """

    def __init__(self, max_size: int = 100):
        self.max_size = max_size
        self._entries: Dict[str, SearchResponse] = {}

    def get(self, key: str) -> Optional[SearchResponse]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        return copy.deepcopy(entry)

    def put(self, key: str, response: SearchResponse) -> None:
        if self.max_size <= 0:
            return
        if key in self._entries:
            del self._entries[key]
        while len(self._entries) >= self.max_size:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
        self._entries[key] = copy.deepcopy(response)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def keys(self) -> List[str]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries = {}


def _json_default(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def build_cache_key(query: str, filters: Dict[str, Any], fuzzy: bool) -> Optional[str]:
    """Serialize (query, filters, fuzzy) into a cache key.

    Returns:
        Key string, or None when the filters cannot be serialized
    """
    try:
        filters_json = json.dumps(filters, sort_keys=True, default=_json_default)
    except (TypeError, ValueError):
        return None
    return f"{query}|{filters_json}|fuzzy:{str(bool(fuzzy)).lower()}"


class PromptSearchEngine:
    """Weighted keyword search with filters, fuzzy matching and caching.

    Each engine owns its own cache, so independent instances never share
    results. ``init()`` and ``dispose()`` bracket its lifetime.
    """

    def __init__(self, config: Optional[SearchConfig] = None, analytics: Optional[Any] = None):
        self.config = config or SearchConfig()
        self.analytics = analytics
        self._cache: Optional[SearchCache] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init(self) -> None:
        """Create a fresh cache and mark the engine active."""
        self._cache = SearchCache(self.config.cache_max_size)

    def dispose(self) -> None:
        """Drop cached results and deactivate the engine."""
        if self._cache is not None:
            self._cache.clear()
        self._cache = None

    @property
    def is_active(self) -> bool:
        return self._cache is not None

    @property
    def cache(self) -> SearchCache:
        if self._cache is None:
            self.init()
        return self._cache

    def clear_cache(self) -> None:
        """Clear every cached search response."""
        self.cache.clear()
        print("[Search] Search cache cleared.", file=sys.stderr)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(
        self,
        prompts: Sequence[Dict[str, Any]],
        query: Optional[str],
        options: Optional[SearchOptions] = None,
        **kwargs: Any,
    ) -> SearchResponse:
        """Search, filter and rank prompts.

        Args:
            prompts: Complete list of prompt dicts to search within
            query: Raw search query; blank means filter only, newest first
            options: SearchOptions; keyword args (filters, fuzzy, use_cache,
                limit) are accepted instead

        Returns:
            SearchResponse with ranked prompts and highlight terms
        """
        if options is None:
            options = SearchOptions(**kwargs)
        filters = options.filters or {}

        normalized_query = (query or "").strip()
        query_tokens = tokenize(normalized_query)

        cache_key = None
        if options.use_cache:
            cache_key = build_cache_key(normalized_query, filters, options.fuzzy)

        if cache_key is not None:
            cached = self.cache.get(cache_key)
            if cached is not None:
                self._log_search(normalized_query, filters, len(cached.results), True)
                return self._limit(cached, options.limit)

        candidates = apply_filters(prompts, filters)

        if query_tokens:
            scored = []
            for prompt in candidates:
                score = score_prompt(prompt, query_tokens, options.fuzzy, self.config)
                if score >= self.config.score_threshold:
                    scored.append((score, prompt))
            scored.sort(key=lambda pair: pair[0], reverse=True)
            ranked = [prompt for _, prompt in scored]
        else:
            ranked = sorted(candidates, key=_recency_key, reverse=True)

        response = SearchResponse(
            results=[dict(prompt) for prompt in ranked],
            highlight_terms=list(query_tokens),
        )

        if cache_key is not None:
            self.cache.put(cache_key, response)

        self._log_search(normalized_query, filters, len(response.results), False)

        return self._limit(response, options.limit)

    @staticmethod
    def _limit(response: SearchResponse, limit: Optional[int]) -> SearchResponse:
        if limit is None or limit < 0:
            return response
        return SearchResponse(response.results[:limit], response.highlight_terms)

    def _log_search(self, query: str, filters: Dict[str, Any], result_count: int, from_cache: bool) -> None:
        if self.analytics is None:
            return
        try:
            self.analytics.record(query, filters, result_count, from_cache)
        except Exception as e:
            print(f"[Search] Analytics hook failed: {e}", file=sys.stderr)


def _recency_key(prompt: Dict[str, Any]):
    stamp = prompt_timestamp(prompt)
    # Undated prompts sort after every dated one
    return (stamp is not None, stamp.timestamp() if stamp else 0.0)
