"""
Ranking state files.

One JSON document per poll (<poll_id>.json) plus an index.json listing
every poll's latest version, all written atomically so a static results
page can poll the directory without ever reading a half-written file.
Documents can be mirrored into a second root (web root, bucket mount).
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from shared.logging.logger import get_logger

log = get_logger("shared.ranking_state")

INDEX_FILE = "index.json"
ENV_PUBLISH_ROOT = "SCORING_STATE_PUBLISH_ROOT"


def _safe_name(poll_id: str) -> str:
    return poll_id.replace("/", "_").replace("\\", "_")


class RankingStateStore:
    DEFAULT_BASE_DIR = Path("shared/state/rankings")

    def __init__(
        self,
        base_dir: Path | str | None = None,
        publish_root: Path | str | None = None,
    ):
        self._base_dir = Path(base_dir) if base_dir else self.DEFAULT_BASE_DIR
        self._base_dir.mkdir(parents=True, exist_ok=True)

        root = publish_root or os.getenv(ENV_PUBLISH_ROOT)
        self._publish_root = Path(root) if root else None
        if self._publish_root:
            self._publish_root.mkdir(parents=True, exist_ok=True)
            log.info(f"Ranking state publish root: {self._publish_root}")

        self._index_lock = threading.Lock()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    @property
    def publish_root(self) -> Optional[Path]:
        return self._publish_root

    @staticmethod
    def file_name(poll_id: str) -> str:
        return f"{_safe_name(poll_id)}.json"

    # ------------------------------------------------------------------
    # Atomic writer
    # ------------------------------------------------------------------

    def _write_atomic(self, path: Path, payload: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", dir=path.parent, suffix=".tmp", delete=False, encoding="utf-8"
        ) as tmp:
            json.dump(payload, tmp, indent=2)
            tmp.flush()
            os.fsync(tmp.fileno())
        Path(tmp.name).replace(path)

    def _write(self, name: str, payload: Any) -> None:
        """Primary write raises OSError; mirror failures are only logged."""
        self._write_atomic(self._base_dir / name, payload)
        if not self._publish_root:
            return
        try:
            self._write_atomic(self._publish_root / name, payload)
        except OSError as e:
            log.warning(f"Failed to mirror {name} to publish root: {e}")

    def _read(self, name: str) -> Optional[Any]:
        source = self._base_dir / name
        if not source.exists():
            return None
        try:
            return json.loads(source.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.error(f"Failed to load state file {source}: {e}")
            return None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def write_snapshot(self, poll_id: str, document: Dict[str, Any]) -> bool:
        """
        Store a snapshot document and record its version in the index.
        Returns False when the primary write failed.
        """
        try:
            self._write(self.file_name(poll_id), document)
            with self._index_lock:
                index = self.index()
                index[poll_id] = {
                    "file": self.file_name(poll_id),
                    "version": document.get("version"),
                    "generated_at": document.get("generated_at"),
                }
                self._write(INDEX_FILE, index)
        except OSError as e:
            log.error(f"[{poll_id}] Failed to write ranking state: {e}")
            return False
        return True

    def read_snapshot(self, poll_id: str) -> Optional[Dict[str, Any]]:
        return self._read(self.file_name(poll_id))

    def index(self) -> Dict[str, Any]:
        data = self._read(INDEX_FILE)
        return data if isinstance(data, dict) else {}


__all__ = ["RankingStateStore", "INDEX_FILE"]
