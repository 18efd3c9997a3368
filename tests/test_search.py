"""Tests for search module."""
from unittest.mock import MagicMock

import pytest

from promptverse.config import SearchConfig
from promptverse.search import (
    PromptSearchEngine,
    SearchCache,
    SearchOptions,
    SearchResponse,
    build_cache_key,
    score_prompt,
)


@pytest.fixture
def engine():
    e = PromptSearchEngine()
    e.init()
    yield e
    e.dispose()


def ids(response):
    return [p["id"] for p in response.results]


class TestScorePrompt:
    def test_weights_every_matching_field(self, sample_prompts):
        react = sample_prompts[0]
        # title + content + tags, one coverage bonus, title phrase bonus
        assert score_prompt(react, ["react"]) == 10 + 3 + 7 + 5 + 20

    def test_coverage_counts_distinct_terms(self, sample_prompts):
        react = sample_prompts[0]
        # react: 10 + 3 + 7, dropdown: 3, coverage 2 * 5, no phrase
        assert score_prompt(react, ["react", "dropdown"]) == 33

    def test_phrase_bonus_prefers_title(self):
        prompt = {"title": "dropdown menu", "description": "dropdown menu", "content": "dropdown menu"}
        without_phrase = score_prompt(prompt, ["menu", "dropdown"])
        with_phrase = score_prompt(prompt, ["dropdown", "menu"])
        assert with_phrase - without_phrase == 20

    def test_phrase_bonus_falls_through_to_content(self):
        prompt = {"title": "Other", "description": "Other", "content": "a dropdown menu here"}
        # content matches: 3 + 3, coverage 10, phrase in content 10
        assert score_prompt(prompt, ["dropdown", "menu"]) == 26

    def test_no_match_scores_zero(self, sample_prompts):
        assert score_prompt(sample_prompts[1], ["react", "dropdown"]) == 0

    def test_missing_and_malformed_fields(self):
        prompt = {"id": "x", "title": None, "tags": "react", "content": 42}
        assert score_prompt(prompt, ["react"]) == 0

    def test_fuzzy_rescues_typo(self, sample_prompts):
        react = sample_prompts[0]
        assert score_prompt(react, ["reactt"], fuzzy=False) == 0
        assert score_prompt(react, ["reactt"], fuzzy=True) > 0

    def test_custom_weights(self):
        config = SearchConfig(field_weights={"title": 1, "description": 0, "content": 0, "tags": 0},
                              coverage_bonus=0, phrase_bonuses={})
        assert score_prompt({"title": "alpha beta"}, ["alpha", "beta"], config=config) == 2


class TestSearchRanking:
    def test_react_dropdown_scenario(self, engine, sample_prompts):
        response = engine.search(sample_prompts, "react dropdown")
        assert ids(response) == ["p1"]
        assert response.highlight_terms == ["react", "dropdown"]

    def test_ranked_by_score(self, engine, sample_prompts):
        response = engine.search(sample_prompts, "character")
        assert ids(response) == ["p4", "p5", "p3"]

    def test_fuzzy_scenario(self, engine, sample_prompts):
        assert engine.search(sample_prompts, "reactt").results == []
        fuzzy = engine.search(sample_prompts, "reactt", fuzzy=True)
        assert ids(fuzzy)[0] == "p1"

    def test_ties_keep_input_order(self, engine):
        prompts = [{"id": str(i), "title": "same words"} for i in range(5)]
        assert ids(engine.search(prompts, "words")) == ["0", "1", "2", "3", "4"]

    def test_query_is_normalized(self, engine, sample_prompts):
        response = engine.search(sample_prompts, "  REACT!!  ")
        assert ids(response) == ["p1"]
        assert response.highlight_terms == ["react"]

    def test_threshold_is_configurable(self, sample_prompts):
        strict = PromptSearchEngine(SearchConfig(score_threshold=30))
        assert ids(strict.search(sample_prompts, "character")) == ["p4"]

    def test_results_carry_no_score(self, engine, sample_prompts):
        for prompt in engine.search(sample_prompts, "character").results:
            assert set(prompt) <= set(sample_prompts[0]) | {"updated_at", "created_at"}

    def test_limit(self, engine, sample_prompts):
        assert ids(engine.search(sample_prompts, "character", limit=2)) == ["p4", "p5"]


class TestFilterOnlyMode:
    def test_empty_query_sorts_by_recency(self, engine, sample_prompts):
        response = engine.search(sample_prompts, "", filters={"category": "cat1"})
        assert ids(response) == ["p5", "p4", "p3"]
        assert response.highlight_terms == []

    def test_none_query(self, engine, sample_prompts):
        response = engine.search(sample_prompts, None)
        assert ids(response) == ["p5", "p4", "p2", "p1", "p3"]

    def test_undated_sorted_last(self, engine, sample_prompts):
        sample_prompts.insert(0, {"id": "undated", "title": "x"})
        assert ids(engine.search(sample_prompts, ""))[-1] == "undated"

    def test_filters_apply_with_query(self, engine, sample_prompts):
        response = engine.search(sample_prompts, "character", filters={"tags": ["dialogue"]})
        assert ids(response) == ["p5", "p3"]

    def test_options_object(self, engine, sample_prompts):
        options = SearchOptions(filters={"category": "cat4"}, use_cache=False)
        assert ids(engine.search(sample_prompts, "", options)) == ["p2"]

    def test_to_dict(self, engine, sample_prompts):
        data = engine.search(sample_prompts, "react").to_dict()
        assert set(data) == {"results", "highlightTerms"}


class TestSearchCaching:
    def test_second_call_served_from_cache(self, sample_prompts):
        analytics = MagicMock()
        engine = PromptSearchEngine(analytics=analytics)

        first = engine.search(sample_prompts, "character")
        second = engine.search(sample_prompts, "character")

        assert second.results == first.results
        flags = [call.args[3] for call in analytics.record.call_args_list]
        assert flags == [False, True]

    def test_cache_is_transparent(self, engine, sample_prompts):
        engine.search(sample_prompts, "dialogue", filters={"category": "cat1"})
        cached = engine.search(sample_prompts, "dialogue", filters={"category": "cat1"})
        fresh = engine.search(sample_prompts, "dialogue", filters={"category": "cat1"}, use_cache=False)
        assert cached.results == fresh.results
        assert cached.highlight_terms == fresh.highlight_terms

    def test_caller_mutation_not_visible_through_cache(self, engine, sample_prompts):
        first = engine.search(sample_prompts, "react")
        first.results[0]["title"] = "tampered"
        first.results.clear()
        first.highlight_terms.append("junk")

        again = engine.search(sample_prompts, "react")
        assert ids(again) == ["p1"]
        assert again.results[0]["title"] == "React Component Creator"
        assert again.highlight_terms == ["react"]

    def test_use_cache_false_skips_store(self, engine, sample_prompts):
        engine.search(sample_prompts, "react", use_cache=False)
        assert len(engine.cache) == 0

    def test_fuzzy_flag_is_part_of_key(self, engine, sample_prompts):
        engine.search(sample_prompts, "reactt")
        assert ids(engine.search(sample_prompts, "reactt", fuzzy=True))[0] == "p1"
        assert len(engine.cache) == 2

    def test_unserializable_filters_skip_cache(self, engine, sample_prompts):
        response = engine.search(sample_prompts, "react", filters={"category": "cat3", "extra": object()})
        assert ids(response) == ["p1"]
        assert len(engine.cache) == 0

    def test_limit_not_part_of_key(self, engine, sample_prompts):
        engine.search(sample_prompts, "character", limit=1)
        assert len(engine.search(sample_prompts, "character").results) == 3
        assert len(engine.cache) == 1

    def test_clear_cache(self, engine, sample_prompts):
        engine.search(sample_prompts, "react")
        engine.clear_cache()
        assert len(engine.cache) == 0

    def test_engines_do_not_share_cache(self, sample_prompts):
        a = PromptSearchEngine()
        b = PromptSearchEngine()
        a.search(sample_prompts, "react")
        assert len(a.cache) == 1
        assert len(b.cache) == 0

    def test_dispose_and_reinit(self, sample_prompts):
        engine = PromptSearchEngine()
        engine.init()
        engine.search(sample_prompts, "react")
        engine.dispose()
        assert not engine.is_active

        engine.search(sample_prompts, "react")
        assert engine.is_active
        assert len(engine.cache) == 1

    def test_engine_respects_cache_size(self, sample_prompts):
        engine = PromptSearchEngine(SearchConfig(cache_max_size=2))
        for query in ("react", "character", "dialogue"):
            engine.search(sample_prompts, query)
        assert len(engine.cache) == 2


class TestAnalyticsHook:
    def test_records_query_and_count(self, sample_prompts):
        analytics = MagicMock()
        engine = PromptSearchEngine(analytics=analytics)
        engine.search(sample_prompts, " react ", filters={"category": "cat3"})
        analytics.record.assert_called_once_with("react", {"category": "cat3"}, 1, False)

    def test_failing_analytics_never_breaks_search(self, sample_prompts):
        analytics = MagicMock()
        analytics.record.side_effect = RuntimeError("sink down")
        engine = PromptSearchEngine(analytics=analytics)
        assert ids(engine.search(sample_prompts, "react")) == ["p1"]


class TestSearchCache:
    def test_bound_and_fifo_eviction(self):
        cache = SearchCache(max_size=100)
        for i in range(150):
            cache.put(f"key-{i}", SearchResponse([{"id": i}], []))

        assert len(cache) == 100
        for i in range(50):
            assert cache.get(f"key-{i}") is None
        for i in range(50, 150):
            assert cache.get(f"key-{i}").results == [{"id": i}]

    def test_reads_do_not_promote(self):
        cache = SearchCache(max_size=2)
        cache.put("a", SearchResponse([], []))
        cache.put("b", SearchResponse([], []))
        cache.get("a")
        cache.put("c", SearchResponse([], []))
        assert "a" not in cache
        assert cache.keys() == ["b", "c"]

    def test_get_returns_copy(self):
        cache = SearchCache()
        cache.put("k", SearchResponse([{"id": "1"}], ["x"]))
        cache.get("k").results[0]["id"] = "changed"
        assert cache.get("k").results == [{"id": "1"}]

    def test_zero_capacity_stores_nothing(self):
        cache = SearchCache(max_size=0)
        cache.put("k", SearchResponse([], []))
        assert len(cache) == 0

    def test_clear(self):
        cache = SearchCache()
        cache.put("k", SearchResponse([], []))
        cache.clear()
        assert cache.get("k") is None


class TestCacheKey:
    def test_filter_order_does_not_matter(self):
        a = build_cache_key("q", {"category": "c", "tags": ["x"]}, False)
        b = build_cache_key("q", {"tags": ["x"], "category": "c"}, False)
        assert a == b

    def test_sets_serialize_sorted(self):
        assert build_cache_key("q", {"tags": {"b", "a"}}, True) == build_cache_key("q", {"tags": ["a", "b"]}, True)

    def test_unserializable_returns_none(self):
        assert build_cache_key("q", {"x": object()}, False) is None
