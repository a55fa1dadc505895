"""Tests for configuration loading and validation."""

from fractions import Fraction

import pytest
from pydantic import ValidationError

from sparks_chat.config import AppConfig, SparksConfig, load_config


class TestLoadConfig:
    def test_defaults_from_empty_file(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("")

        config = load_config(config_file, tmp_path / "missing.env")

        assert config.tools.max_rounds == 10
        assert config.sparks.daily_claim.verified == 10000
        assert config.sparks.daily_claim.non_verified == 5000
        assert config.history.default_limit == 10
        assert config.anthropic is None

    def test_env_interpolation(self, tmp_path, monkeypatch):
        monkeypatch.delenv("SPARKS_TEST_KEY", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("SPARKS_TEST_KEY=sk-test-123\n")
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "data_dir: /srv/sparks\n"
            "anthropic:\n"
            "  api_key: ${SPARKS_TEST_KEY}\n"
            "storage:\n"
            "  db_path: ${data_dir}/chat.db\n"
        )

        config = load_config(config_file, env_file)

        assert config.anthropic.api_key == "sk-test-123"
        assert config.storage.db_path == "/srv/sparks/chat.db"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml", tmp_path / ".env")

    def test_decimal_multipliers_are_exact(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "sparks:\n"
            "  model_multipliers:\n"
            "    small: 1\n"
            "    medium: 1.1\n"
        )

        config = load_config(config_file, tmp_path / ".env")

        assert config.sparks.multipliers() == {"small": Fraction(1), "medium": Fraction(11, 10)}


class TestSparksConfig:
    def test_multiplier_below_one(self):
        with pytest.raises(ValidationError):
            SparksConfig(model_multipliers={"cheap": "0.5"})

    def test_multiplier_not_a_number(self):
        with pytest.raises(ValidationError):
            SparksConfig(model_multipliers={"odd": "fast"})

    def test_unknown_timezone(self):
        with pytest.raises(ValidationError):
            SparksConfig(timezone="Mars/Olympus_Mons")

    def test_tool_rounds_must_be_positive(self):
        with pytest.raises(ValidationError):
            AppConfig(tools={"max_rounds": 0})
