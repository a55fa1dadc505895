"""Tests for the command line entry point."""

import json

import pytest

from sparks_chat.__main__ import main


@pytest.fixture(autouse=True)
def _keep_logging(monkeypatch):
    # leave the global structlog configuration alone for the rest of the suite
    monkeypatch.setattr("sparks_chat.__main__.setup_logging", lambda *args, **kwargs: None)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        f"data_dir: {tmp_path}\n"
        "storage:\n"
        "  db_path: ${data_dir}/cli.db\n"
        "sparks:\n"
        "  model_multipliers:\n"
        "    test-model: 2\n"
    )
    return path


def test_config_check(config_file, tmp_path, capsys):
    main(["-c", str(config_file), "-e", str(tmp_path / ".env"), "config-check"])

    out = capsys.readouterr().out
    assert "Configuration valid" in out
    assert "test-model: x2" in out


def test_estimate(config_file, tmp_path, capsys):
    main([
        "-c", str(config_file), "-e", str(tmp_path / ".env"),
        "estimate", "-m", "test-model", "--input-tokens", "10", "--output-tokens", "5",
    ])

    output = json.loads(capsys.readouterr().out)
    assert output == {"estimatedCost": 30, "modelId": "test-model", "inputTokens": 10, "outputTokens": 5}


def test_estimate_unknown_model(config_file, tmp_path):
    with pytest.raises(SystemExit) as exc_info:
        main(["-c", str(config_file), "-e", str(tmp_path / ".env"), "estimate", "-m", "nope", "--input-tokens", "1"])

    assert exc_info.value.code == 1


def test_missing_config(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc_info:
        main(["-c", str(tmp_path / "nope.yaml"), "config-check"])

    assert exc_info.value.code == 1
    assert "config.example.yaml" in capsys.readouterr().out
