"""Tests for the strict config validation script."""

import json

from scripts.validate_config import CONFIG_PATH, main, semantic_errors, validate_scoring_config


def write(tmp_path, payload):
    path = tmp_path / "scoring.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_bundled_config_passes():
    assert validate_scoring_config(CONFIG_PATH)


def test_schema_violation_fails(tmp_path, capsys):
    path = write(tmp_path, {"weights": {"judge": "heavy"}, "extra": 1})
    assert main([str(path)]) == 1
    err = capsys.readouterr().err
    assert "weights/judge" in err
    assert "Configuration validation failed." in err


def test_semantic_rules():
    problems = semantic_errors(
        {
            "weights": {"judge": 0, "public": 0},
            "access": {"allowed_email_domain": "@example.edu"},
            "publisher": {"webhooks": ["ftp://hooks.local"]},
        }
    )
    assert len(problems) == 3


def test_invalid_json(tmp_path):
    path = tmp_path / "scoring.json"
    path.write_text("{", encoding="utf-8")
    assert not validate_scoring_config(path)


def test_valid_document(tmp_path, capsys):
    path = write(tmp_path, {"weights": {"judge": 2, "public": 1}})
    assert main([str(path)]) == 0
    assert "passed" in capsys.readouterr().out
