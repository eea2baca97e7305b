"""
Configuration validation script.

Checks a scoring config document (shared/config/scoring.json by default)
strictly: schema violations and semantic problems are errors here, even
though the engine itself only warns and falls back to defaults.

Design rules:
- No side effects on import
- No runtime startup
- Validation only (no mutation)
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from jsonschema import Draft7Validator


# ------------------------------------------------------------
# Paths
# ------------------------------------------------------------

ROOT = Path(__file__).resolve().parents[1]
CONFIG_PATH = ROOT / "shared" / "config" / "scoring.json"
SCHEMA_PATH = ROOT / "shared" / "config" / "scoring.schema.json"


# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------

def _load_json(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ValueError(f"{path.name}: cannot read ({e})") from e
    except json.JSONDecodeError as e:
        raise ValueError(f"{path.name}: invalid JSON ({e})") from e

    if not isinstance(data, dict):
        raise ValueError(f"{path.name}: root JSON value must be an object")
    return data


def _error(msg: str):
    print(f"[CONFIG ERROR] {msg}", file=sys.stderr)


# ------------------------------------------------------------
# Validators
# ------------------------------------------------------------

def schema_errors(data: Dict[str, Any], schema_path: Path = SCHEMA_PATH) -> List[str]:
    schema = json.loads(schema_path.read_text(encoding="utf-8"))
    validator = Draft7Validator(schema)
    errors = []
    for err in sorted(validator.iter_errors(data), key=lambda e: list(e.path)):
        loc = "/".join(str(p) for p in err.path) or "<root>"
        errors.append(f"{loc}: {err.message}")
    return errors


def semantic_errors(data: Dict[str, Any]) -> List[str]:
    """Rules the schema cannot express."""
    errors = []

    weights = data.get("weights") or {}
    judge = weights.get("judge", 0.5)
    public = weights.get("public", 0.5)
    if isinstance(judge, (int, float)) and isinstance(public, (int, float)):
        if judge + public <= 0:
            errors.append("weights: judge and public cannot both be zero")

    domain = (data.get("access") or {}).get("allowed_email_domain")
    if isinstance(domain, str) and "@" in domain:
        errors.append("access/allowed_email_domain: give the domain without '@'")

    webhooks = (data.get("publisher") or {}).get("webhooks") or []
    for url in webhooks:
        if isinstance(url, str) and not url.startswith(("http://", "https://")):
            errors.append(f"publisher/webhooks: {url!r} is not an http(s) URL")

    return errors


def validate_scoring_config(path: Path = CONFIG_PATH) -> bool:
    try:
        data = _load_json(path)
    except ValueError as e:
        _error(str(e))
        return False

    problems = schema_errors(data) + semantic_errors(data)
    for problem in problems:
        _error(f"{path.name}: {problem}")
    return not problems


# ------------------------------------------------------------
# Entry point
# ------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    path = Path(args[0]) if args else CONFIG_PATH

    if not validate_scoring_config(path):
        print("Configuration validation failed.", file=sys.stderr)
        return 1

    print("Configuration validation passed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
