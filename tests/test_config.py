from __future__ import annotations

from unittest.mock import patch

import pytest

from autodeck.config import AutodeckConfig


def test_config_defaults_without_file(tmp_path):
    config = AutodeckConfig.load(tmp_path)

    assert config.root == tmp_path.resolve()
    assert config.generation.model == "claude-sonnet-4-6"
    assert config.generation.provider == "anthropic"
    assert config.pipeline.max_revisions == 5
    assert config.pipeline.single_batch_limit == 15
    assert config.pipeline.batch_size == 12
    assert config.pipeline.preflight_token_limit == 180_000


def test_config_load_sections(tmp_path):
    (tmp_path / "autodeck.yml").write_text(
        """
generation:
  model: gpt-4o
  provider: openai
  planner_temperature: 0.3
pipeline:
  max_revisions: 2
  batch_size: 8
store:
  db_path: ./data/deck.db
        """.strip()
    )

    config = AutodeckConfig.load(tmp_path)

    assert config.generation.model == "gpt-4o"
    assert config.generation.planner_temperature == 0.3
    assert config.generation.planner_max_tokens == 16384
    assert config.pipeline.max_revisions == 2
    assert config.pipeline.batch_size == 8
    assert config.pipeline.single_batch_limit == 15
    assert config.store.resolved_path == (tmp_path / "data" / "deck.db").resolve()


def test_config_rejects_bad_batch_size(tmp_path):
    (tmp_path / "autodeck.yml").write_text("pipeline:\n  batch_size: 0\n")

    with pytest.raises(ValueError, match="batch_size"):
        AutodeckConfig.load(tmp_path)


def test_store_path_defaults_to_state_dir(tmp_path):
    with patch("autodeck.config.get_autodeck_dir", return_value=tmp_path):
        config = AutodeckConfig.load(tmp_path)
        assert config.store.resolved_path == tmp_path / "autodeck.db"


def test_empty_config_file(tmp_path):
    (tmp_path / "autodeck.yml").write_text("")

    config = AutodeckConfig.load(tmp_path)

    assert config.pipeline.max_output_tokens == 64000
