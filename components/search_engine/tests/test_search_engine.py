"""Tests for the ranking pipeline."""

from unittest.mock import Mock

import pytest

from components.search_engine import (
    apply_lexical_boost,
    cap_per_file,
    parse_file_filter,
    path_matches_filter,
    perform_search,
)
from components.vector_store.vector_store import VectorEntry, VectorStore
from shared.config import SearchConfig
from shared.errors import ModelError


def make_entry(file_path, chunk_index=0, embedding=None, text="", context=""):
    return VectorEntry(
        file_path=file_path,
        chunk_index=chunk_index,
        embedding=embedding or [1.0, 0.0],
        text=text or f"chunk {chunk_index} of {file_path}",
        context=context,
        start_line=1,
        end_line=2,
    )


@pytest.fixture
def vector_store(tmp_path):
    store = VectorStore(tmp_path / "vectors.sqlite3")
    yield store
    store.close()


@pytest.fixture
def query_model():
    model = Mock()
    model.embed_queries.return_value = [[1.0, 0.0]]
    return model


class TestParseFileFilter:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("rust file:notes.md", ("notes.md", "rust")),
            ('file:"notes.md" rust', ("notes.md", "rust")),
            ("rust   file:notes.md,  async", ("notes.md", "rust async")),
            ("file:a.md rust file:b.md.", ("b.md", "rust")),
            ("rust file:", (None, "rust file:")),
            ("plain query", (None, "plain query")),
        ],
    )
    def test_parse(self, raw, expected):
        assert parse_file_filter(raw) == expected

    def test_filter_only_query_leaves_empty_text(self):
        assert parse_file_filter("file:todo.md") == ("todo.md", "")


def test_path_matches_filter_is_case_insensitive():
    assert path_matches_filter("Projects/Rust-CLI.md", "rust-cli")
    assert path_matches_filter("projects/rust-cli.md", "PROJECTS/")
    assert not path_matches_filter("projects/rust-cli.md", "python")


class TestLexicalBoost:
    def test_bonuses_add_up_per_field(self):
        config = SearchConfig()
        entry = make_entry("garden/soil.md", context="Garden > Soil", text="About soil.")
        (_, score), = apply_lexical_boost([(entry, 0.5)], "soil", config)
        assert score == pytest.approx(0.5 + 0.05 + 0.10 + 0.15)

    def test_text_only_match(self):
        entry = make_entry("a.md", context="Intro", text="The compost heap.")
        (_, score), = apply_lexical_boost([(entry, 0.4)], "Compost", SearchConfig())
        assert score == pytest.approx(0.55)

    def test_score_is_clamped_to_one(self):
        entry = make_entry("soil.md", context="soil", text="soil")
        (_, score), = apply_lexical_boost([(entry, 0.95)], "soil", SearchConfig())
        assert score == 1.0


def test_cap_per_file_keeps_best_five():
    results = [(make_entry("big.md", i), i / 10) for i in range(8)]
    results.append((make_entry("small.md", 0), 0.05))

    capped = cap_per_file(results, 5)

    big_scores = sorted(score for entry, score in capped if entry.file_path == "big.md")
    assert big_scores == pytest.approx([0.3, 0.4, 0.5, 0.6, 0.7])
    assert sum(1 for entry, _ in capped if entry.file_path == "small.md") == 1


class TestPerformSearch:
    def test_empty_query_returns_nothing_without_embedding(self, vector_store, query_model):
        vector_store.insert(make_entry("a.md"))
        assert perform_search("   ", query_model, vector_store) == []
        assert perform_search("file:a.md", query_model, vector_store) == []
        query_model.embed_queries.assert_not_called()

    def test_results_are_sorted_and_limited(self, vector_store, query_model):
        for i in range(10):
            vector_store.insert(make_entry(f"note{i}.md", embedding=[1.0, i / 10]))

        results = perform_search(
            "anything", query_model, vector_store, config=SearchConfig(max_results=3)
        )

        assert [entry.file_path for entry, _ in results] == ["note0.md", "note1.md", "note2.md"]
        scores = [score for _, score in results]
        assert scores == sorted(scores, reverse=True)
        query_model.embed_queries.assert_called_once_with(["anything"])

    def test_per_file_cap_is_applied(self, vector_store, query_model):
        vector_store.insert_many(make_entry("big.md", i) for i in range(8))
        vector_store.insert(make_entry("other.md", embedding=[0.5, 0.5]))

        results = perform_search("query", query_model, vector_store)

        assert sum(1 for entry, _ in results if entry.file_path == "big.md") == 5
        assert any(entry.file_path == "other.md" for entry, _ in results)

    def test_file_filter_limits_results(self, vector_store, query_model):
        vector_store.insert(make_entry("projects/rust.md"))
        vector_store.insert(make_entry("garden.md", embedding=[1.0, 0.01]))

        results = perform_search("tools file:RUST", query_model, vector_store)

        assert [entry.file_path for entry, _ in results] == ["projects/rust.md"]
        query_model.embed_queries.assert_called_once_with(["tools"])

    def test_lexical_boost_reorders_results(self, vector_store, query_model):
        vector_store.insert(make_entry("plain.md", embedding=[1.0, 0.2], text="Nothing here."))
        vector_store.insert(
            make_entry("boosted.md", embedding=[1.0, 0.3], text="All about compost.")
        )

        results = perform_search("compost", query_model, vector_store)

        assert results[0][0].file_path == "boosted.md"
        assert results[0][1] > results[1][1]

    def test_scope_restricts_candidates(self, vector_store, query_model):
        vector_store.insert(make_entry("a.md"))
        vector_store.insert(make_entry("b.md", embedding=[0.0, 1.0]))

        scoped = perform_search("query", query_model, vector_store, scope=["b.md"])
        unscoped = perform_search("query", query_model, vector_store, scope=[])

        assert [entry.file_path for entry, _ in scoped] == ["b.md"]
        assert {entry.file_path for entry, _ in unscoped} == {"a.md", "b.md"}

    def test_empty_embedding_raises_model_error(self, vector_store, query_model):
        query_model.embed_queries.return_value = []
        with pytest.raises(ModelError):
            perform_search("query", query_model, vector_store)

    def test_search_with_fake_model(self, vector_store, fake_embedding_model):
        texts = {
            "garden.md": "tomatoes compost soil watering",
            "code.md": "python functions classes modules",
        }
        for path, text in texts.items():
            (embedding,) = fake_embedding_model.embed_passages([text])
            vector_store.insert(make_entry(path, embedding=embedding, text=text))

        results = perform_search("compost soil", fake_embedding_model, vector_store)

        assert results[0][0].file_path == "garden.md"
