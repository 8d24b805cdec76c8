"""Tests for VaultService main functionality."""

from unittest.mock import patch

import pytest

# Use an absolute import to ensure patch targets are correct.
from components.vault_service.main import VaultService
from components.vector_store.vector_store import VectorStore
from shared.config import Config, EmbeddingModelConfig, PathsConfig
from shared.errors import ConfigError, ModelError, StoreLockedError
from shared.state_tracker import StateStore


@pytest.fixture
def service(test_config, fake_embedding_model):
    """Create a VaultService instance backed by the fake model."""
    return VaultService(test_config, embedding_model=fake_embedding_model)


def stored_files(config):
    with VectorStore(config.get_vector_db_path(), read_only=True) as store:
        return {key.rsplit(":", 1)[0] for key in store.db.keys("vectors")}


class TestIndexDirectory:
    def test_first_pass_indexes_every_note(self, service, test_config, notes_dir):
        report = service.index_directory(notes_dir)

        assert report.processed == 3
        assert report.skipped == 0
        assert report.failed == 0
        assert report.model_reset is False
        assert report.chunks_indexed > 3
        assert stored_files(test_config) == {
            "gardening.md",
            "projects/rust-cli.md",
            "todo.txt",
        }

    def test_second_pass_skips_unchanged_files(self, service, notes_dir, fake_embedding_model):
        service.index_directory(notes_dir)
        calls = len(fake_embedding_model.calls)

        report = service.index_directory(notes_dir)

        assert (report.processed, report.skipped) == (0, 3)
        assert len(fake_embedding_model.calls) == calls

    def test_force_reindexes_everything(self, service, notes_dir):
        service.index_directory(notes_dir)
        report = service.index_directory(notes_dir, force=True)
        assert (report.processed, report.skipped) == (3, 0)

    def test_modified_file_is_reindexed(self, service, notes_dir):
        service.index_directory(notes_dir)
        (notes_dir / "todo.txt").write_text("Call the plumber about the sink.\n")

        report = service.index_directory(notes_dir)

        assert (report.processed, report.skipped) == (1, 2)

    def test_failures_are_counted_and_retried(self, service, notes_dir):
        (notes_dir / "broken.md").write_text("# Broken\n\nEXPLODE here.\n")

        report = service.index_directory(notes_dir)
        assert report.failed == 1
        assert report.failed_files == ["broken.md"]
        assert report.processed == 3

        retry = service.index_directory(notes_dir)
        assert retry.failed == 1
        assert retry.skipped == 3

    def test_model_change_rebuilds_from_scratch(
        self, test_config, notes_dir, fake_embedding_model
    ):
        VaultService(test_config, embedding_model=fake_embedding_model).index_directory(
            notes_dir
        )
        (notes_dir / "todo.txt").unlink()

        changed = test_config.model_copy(
            update={"embedding_model": EmbeddingModelConfig(model_name="other-model")}
        )
        report = VaultService(changed, embedding_model=fake_embedding_model).index_directory(
            notes_dir
        )

        assert report.model_reset is True
        assert report.processed == 2
        assert report.skipped == 0
        # Nothing from the old model survives, not even the file that is gone.
        assert stored_files(test_config) == {"gardening.md", "projects/rust-cli.md"}
        with StateStore(test_config.get_state_db_path(), read_only=True) as state:
            assert state.count() == 2
            assert state.get_state("todo.txt") is None
            assert state.get_model_marker() == "sentence_transformers:other-model"

    def test_deleted_note_is_dropped_on_next_pass(self, service, test_config, notes_dir):
        service.index_directory(notes_dir)
        (notes_dir / "todo.txt").unlink()

        report = service.index_directory(notes_dir)

        assert report.removed == 1
        assert (report.processed, report.skipped) == (0, 2)
        assert stored_files(test_config) == {"gardening.md", "projects/rust-cli.md"}
        with StateStore(test_config.get_state_db_path(), read_only=True) as state:
            assert state.get_state("todo.txt") is None
        results = service.search("compost garden beds spring")
        assert "todo.txt" not in {entry.file_path for entry, _ in results}

    def test_newly_ignored_note_is_dropped(self, service, test_config, notes_dir):
        service.index_directory(notes_dir)
        (notes_dir / ".gitignore").write_text("build/\nprojects/\n", encoding="utf-8")

        report = service.index_directory(notes_dir)

        assert report.removed == 1
        assert stored_files(test_config) == {"gardening.md", "todo.txt"}

    def test_not_initialized(self, tmp_path, notes_dir, fake_embedding_model):
        config = Config(paths=PathsConfig(base_dir=str(tmp_path / "missing")))
        service = VaultService(config, embedding_model=fake_embedding_model)

        with pytest.raises(ConfigError, match="not initialized"):
            service.index_directory(notes_dir)

    def test_missing_directory(self, service, tmp_path):
        with pytest.raises(ConfigError):
            service.index_directory(tmp_path / "nowhere")

    def test_concurrent_writer_is_rejected(self, service, test_config, notes_dir):
        with StateStore(test_config.get_state_db_path()):
            with pytest.raises(StoreLockedError):
                service.index_directory(notes_dir)


class TestSearch:
    def test_search_finds_relevant_note(self, service, notes_dir):
        service.index_directory(notes_dir)

        results = service.search("compost soil moisture")

        assert results
        assert results[0][0].file_path == "gardening.md"
        assert results[0][0].context == "Gardening > Soil"

    def test_search_with_scope(self, service, notes_dir):
        service.index_directory(notes_dir)

        results = service.search("compost soil moisture", scope=["projects/rust-cli.md"])

        assert {entry.file_path for entry, _ in results} == {"projects/rust-cli.md"}

    def test_search_while_writer_holds_lock(self, service, test_config, notes_dir):
        service.index_directory(notes_dir)
        with VectorStore(test_config.get_vector_db_path()):
            assert service.search("tomatoes") != []

    def test_search_before_indexing(self, service):
        with pytest.raises(ConfigError):
            service.search("anything")


class TestStatus:
    def test_status_after_indexing(self, service, test_config, notes_dir):
        service.index_directory(notes_dir)

        status = service.status()

        assert status["initialized"] is True
        assert status["files"] == 3
        assert status["chunks"] >= 3
        assert status["configured_model"] == "sentence_transformers:BAAI/bge-small-en-v1.5"
        assert status["indexed_model"] == status["configured_model"]

    def test_status_of_empty_index(self, service):
        status = service.status()
        assert status["files"] == 0
        assert status["indexed_model"] is None

    def test_status_not_initialized(self, tmp_path):
        config = Config(paths=PathsConfig(base_dir=str(tmp_path / "missing")))
        assert VaultService(config).status()["initialized"] is False


def test_model_is_created_lazily_once(test_config, fake_embedding_model):
    service = VaultService(test_config)
    with patch(
        "components.vault_service.main.create_embedding_model",
        return_value=fake_embedding_model,
    ) as factory:
        assert service.get_embedding_model() is fake_embedding_model
        assert service.get_embedding_model() is fake_embedding_model

    factory.assert_called_once_with(
        test_config.embedding_model, test_config.get_models_dir()
    )


def test_watch_runs_initial_pass_then_watcher(service, notes_dir):
    with patch("components.vault_service.main.VaultWatcher") as watcher_cls:
        service.watch(notes_dir)

    watcher_cls.assert_called_once_with(
        service.config, notes_dir, embedding_model_factory=service.get_embedding_model
    )
    watcher_cls.return_value.watch.assert_called_once()
    assert service.status()["files"] == 3


class TestModelSetupErrors:
    def test_unknown_provider_is_a_config_error(self, test_config):
        test_config.embedding_model = EmbeddingModelConfig(provider="bogus")
        service = VaultService(test_config)

        with pytest.raises(ConfigError, match="Unsupported embedding provider"):
            service.get_embedding_model()

    def test_missing_backend_is_a_model_error(self, test_config, notes_dir):
        service = VaultService(test_config)
        with patch(
            "components.vault_service.main.create_embedding_model",
            side_effect=ImportError("sentence-transformers is required"),
        ):
            with pytest.raises(ModelError, match="sentence-transformers is required"):
                service.index_directory(notes_dir)
