"""
Scoring engine configuration.

Settings are read from a JSON document (shared/config/scoring.json, or the
path named by SCORING_CONFIG_PATH) and validated against
shared/config/scoring.schema.json. Invalid or missing values are logged as
warnings and replaced by defaults so the engine can always boot.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from jsonschema import Draft7Validator

from shared.logging.logger import get_logger

log = get_logger("shared.config.scoring")

_CONFIG_PATH = Path(__file__).parent / "scoring.json"
_SCHEMA_PATH = Path(__file__).parent / "scoring.schema.json"

ENV_CONFIG_PATH = "SCORING_CONFIG_PATH"
ENV_DB_PATH = "SCORING_DB_PATH"
ENV_API_HOST = "SCORING_API_HOST"
ENV_API_PORT = "SCORING_API_PORT"


@dataclass
class WeightsConfig:
    judge: float = 0.5
    public: float = 0.5
    require_both_sources: bool = False
    round_digits: int = 2

    def normalized(self) -> tuple[float, float]:
        total = self.judge + self.public
        if total <= 0:
            return 0.5, 0.5
        return self.judge / total, self.public / total


@dataclass
class StorageConfig:
    db_path: str = "data/scoring.db"
    timeout_seconds: float = 5.0


@dataclass
class PublisherConfig:
    delivery_retries: int = 1
    recompute_retries: int = 2
    retry_backoff_seconds: float = 0.05
    recovery_delay_seconds: float = 0.5
    state_dir: Optional[str] = None
    webhooks: List[str] = field(default_factory=list)


@dataclass
class AccessConfig:
    allowed_email_domain: Optional[str] = None


@dataclass
class ApiConfig:
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8220
    allow_origins: List[str] = field(default_factory=lambda: ["*"])


@dataclass
class ScoringConfig:
    weights: WeightsConfig = field(default_factory=WeightsConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    publisher: PublisherConfig = field(default_factory=PublisherConfig)
    access: AccessConfig = field(default_factory=AccessConfig)
    api: ApiConfig = field(default_factory=ApiConfig)


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------

def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        log.warning(f"scoring.json not found at {path}; using defaults")
        return {}

    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, ValueError) as e:
        log.warning(f"Failed to load scoring.json ({e}); using defaults")
        return {}


def _validate(payload: Dict[str, Any], schema_path: Path = _SCHEMA_PATH) -> None:
    if not schema_path.exists():
        log.warning(f"Scoring schema not found at {schema_path}; skipping validation")
        return

    try:
        schema = json.loads(schema_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        log.warning(f"Failed to load scoring schema ({e}); skipping validation")
        return

    validator = Draft7Validator(schema)
    errors = sorted(validator.iter_errors(payload), key=lambda e: list(e.path))
    for err in errors:
        loc = "/".join(str(p) for p in err.path)
        log.warning(f"scoring config validation warning at '{loc}': {err.message}")


def _coerce_float(value: Any, default: float, name: str) -> float:
    if isinstance(value, bool):
        log.warning(f"{name} must be numeric; using {default}")
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        log.warning(f"{name} must be numeric; using {default}")
        return default


def _coerce_int(value: Any, default: int, name: str) -> int:
    if isinstance(value, bool):
        log.warning(f"{name} must be an integer; using {default}")
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        log.warning(f"{name} must be an integer; using {default}")
        return default


def _positive_or_default(value: float, default: float, name: str) -> float:
    if value <= 0:
        log.warning(f"{name} must be positive; using {default}")
        return default
    return value


def _load_weights(raw: Optional[Dict[str, Any]]) -> WeightsConfig:
    if not isinstance(raw, dict):
        return WeightsConfig()

    judge = _coerce_float(raw.get("judge", WeightsConfig.judge), WeightsConfig.judge, "weights.judge")
    public = _coerce_float(raw.get("public", WeightsConfig.public), WeightsConfig.public, "weights.public")
    if judge < 0 or public < 0 or judge + public <= 0:
        log.warning("weights must be non-negative and not both zero; using 0.5/0.5")
        judge, public = WeightsConfig.judge, WeightsConfig.public

    require_both = raw.get("require_both_sources", WeightsConfig.require_both_sources)
    if not isinstance(require_both, bool):
        log.warning("weights.require_both_sources must be boolean; defaulting to false")
        require_both = WeightsConfig.require_both_sources

    digits = _coerce_int(
        raw.get("round_digits", WeightsConfig.round_digits),
        WeightsConfig.round_digits,
        "weights.round_digits",
    )
    return WeightsConfig(
        judge=judge,
        public=public,
        require_both_sources=require_both,
        round_digits=max(0, digits),
    )


def _load_storage(raw: Optional[Dict[str, Any]]) -> StorageConfig:
    cfg = StorageConfig()
    if isinstance(raw, dict):
        cfg.db_path = str(raw.get("db_path", cfg.db_path))
        cfg.timeout_seconds = _coerce_float(
            raw.get("timeout_seconds", cfg.timeout_seconds),
            StorageConfig.timeout_seconds,
            "storage.timeout_seconds",
        )

    env_db = os.getenv(ENV_DB_PATH)
    if env_db:
        cfg.db_path = env_db
    return cfg


def _load_publisher(raw: Optional[Dict[str, Any]]) -> PublisherConfig:
    if not isinstance(raw, dict):
        return PublisherConfig()

    webhooks_raw = raw.get("webhooks") or []
    webhooks = [str(url) for url in webhooks_raw if isinstance(url, str) and url]
    state_dir = raw.get("state_dir")

    return PublisherConfig(
        delivery_retries=max(0, _coerce_int(
            raw.get("delivery_retries", PublisherConfig.delivery_retries),
            PublisherConfig.delivery_retries,
            "publisher.delivery_retries",
        )),
        recompute_retries=max(0, _coerce_int(
            raw.get("recompute_retries", PublisherConfig.recompute_retries),
            PublisherConfig.recompute_retries,
            "publisher.recompute_retries",
        )),
        retry_backoff_seconds=max(0.0, _coerce_float(
            raw.get("retry_backoff_seconds", PublisherConfig.retry_backoff_seconds),
            PublisherConfig.retry_backoff_seconds,
            "publisher.retry_backoff_seconds",
        )),
        recovery_delay_seconds=_positive_or_default(
            _coerce_float(
                raw.get("recovery_delay_seconds", PublisherConfig.recovery_delay_seconds),
                PublisherConfig.recovery_delay_seconds,
                "publisher.recovery_delay_seconds",
            ),
            PublisherConfig.recovery_delay_seconds,
            "publisher.recovery_delay_seconds",
        ),
        state_dir=str(state_dir) if state_dir else None,
        webhooks=webhooks,
    )


def _load_access(raw: Optional[Dict[str, Any]]) -> AccessConfig:
    if not isinstance(raw, dict):
        return AccessConfig()
    domain = raw.get("allowed_email_domain")
    if domain is not None and not isinstance(domain, str):
        log.warning("access.allowed_email_domain must be a string; ignoring")
        domain = None
    return AccessConfig(allowed_email_domain=domain or None)


def _load_api(raw: Optional[Dict[str, Any]]) -> ApiConfig:
    cfg = ApiConfig()
    if isinstance(raw, dict):
        enabled = raw.get("enabled", cfg.enabled)
        cfg.enabled = enabled if isinstance(enabled, bool) else cfg.enabled
        cfg.host = str(raw.get("host", cfg.host))
        cfg.port = _coerce_int(raw.get("port", cfg.port), ApiConfig.port, "api.port")
        origins = raw.get("allow_origins")
        if isinstance(origins, list):
            cfg.allow_origins = [str(o) for o in origins]

    env_host = os.getenv(ENV_API_HOST)
    if env_host:
        cfg.host = env_host
    env_port = os.getenv(ENV_API_PORT)
    if env_port:
        cfg.port = _coerce_int(env_port, cfg.port, ENV_API_PORT)
    return cfg


def load_scoring_config(raw: Optional[Dict[str, Any]] = None) -> ScoringConfig:
    if raw is None:
        env_path = os.getenv(ENV_CONFIG_PATH)
        raw = _load_json(Path(env_path) if env_path else _CONFIG_PATH)
    if not isinstance(raw, dict):
        raw = {}

    _validate(raw)

    return ScoringConfig(
        weights=_load_weights(raw.get("weights")),
        storage=_load_storage(raw.get("storage")),
        publisher=_load_publisher(raw.get("publisher")),
        access=_load_access(raw.get("access")),
        api=_load_api(raw.get("api")),
    )
