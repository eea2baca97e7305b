"""HTTP API server for poll results and contribution submission."""

from __future__ import annotations

import json
import re
import threading
from datetime import datetime
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from runtime.version import as_dict
from scoring.access import IdentityDirectory
from scoring.errors import (
    AuthorizationError,
    DuplicateContributionConflict,
    PollStateError,
    ScoringError,
    StorageError,
)
from scoring.models import Identity, parse_iso
from scoring.service import ScoringService
from shared.config.scoring import ApiConfig
from shared.logging.logger import get_logger

log = get_logger("services.results_api", runtime="api")

MAX_BODY_BYTES = 64 * 1024

_POLL_ROUTE = re.compile(r"^/api/polls/(?P<poll_id>[^/]+)/(?P<action>[a-z]+)$")

_ERROR_STATUS = {
    AuthorizationError: HTTPStatus.FORBIDDEN,
    PollStateError: HTTPStatus.CONFLICT,
    DuplicateContributionConflict: HTTPStatus.CONFLICT,
    StorageError: HTTPStatus.SERVICE_UNAVAILABLE,
}


def status_for(error: ScoringError) -> HTTPStatus:
    for error_type, status in _ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return HTTPStatus.BAD_REQUEST


class ResultsApiServer:
    def __init__(
        self,
        service: ScoringService,
        identities: IdentityDirectory,
        config: Optional[ApiConfig] = None,
    ) -> None:
        self._service = service
        self._identities = identities
        self._config = config or ApiConfig()
        self._thread: Optional[threading.Thread] = None
        self._server: Optional[ThreadingHTTPServer] = None

    @property
    def address(self) -> Optional[Tuple[str, int]]:
        if not self._server:
            return None
        host, port = self._server.server_address[:2]
        return str(host), int(port)

    def start(self) -> None:
        if not self._config.enabled:
            log.info("Results API server disabled via config")
            return
        if self._thread and self._thread.is_alive():
            return

        handler = self._build_handler()
        self._server = ThreadingHTTPServer(
            (self._config.host, int(self._config.port)),
            handler,
        )
        self._server.daemon_threads = True
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        log.info("Results API server running on %s:%s", *self.address)

    def stop(self) -> None:
        if not self._server:
            return
        self._server.shutdown()
        self._server.server_close()
        self._server = None
        log.info("Results API server stopped")

    def _build_handler(self):
        config = self._config
        service = self._service
        identities = self._identities

        class Handler(BaseHTTPRequestHandler):
            def _send_json(self, status: int, payload: Dict[str, Any]) -> None:
                body = json.dumps(payload).encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self._apply_cors()
                self.end_headers()
                self.wfile.write(body)

            def _send_error_document(self, error: ScoringError) -> None:
                self._send_json(status_for(error), error.to_document())

            def _apply_cors(self) -> None:
                origins = config.allow_origins
                if not origins:
                    return
                origin = self.headers.get("Origin")
                if "*" in origins:
                    self.send_header("Access-Control-Allow-Origin", "*")
                elif origin and origin in origins:
                    self.send_header("Access-Control-Allow-Origin", origin)
                self.send_header(
                    "Access-Control-Allow-Headers",
                    "Content-Type, X-Contributor-Id, X-Contributor-Email, X-Contributor-Name",
                )
                self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")

            def do_OPTIONS(self) -> None:  # noqa: N802 - stdlib signature
                self.send_response(HTTPStatus.NO_CONTENT)
                self._apply_cors()
                self.end_headers()

            def do_GET(self) -> None:  # noqa: N802 - stdlib signature
                parsed = urlparse(self.path)
                if parsed.path == "/health":
                    return self._send_json(HTTPStatus.OK, {"ok": True, **as_dict()})

                match = _POLL_ROUTE.match(parsed.path)
                if not match:
                    return self._send_json(HTTPStatus.NOT_FOUND, {"error": "unknown endpoint"})

                try:
                    return self._handle_poll_get(
                        match.group("poll_id"),
                        match.group("action"),
                        parse_qs(parsed.query),
                    )
                except ScoringError as e:
                    return self._send_error_document(e)

            def do_POST(self) -> None:  # noqa: N802 - stdlib signature
                # Drain the body before any early response.
                payload = self._read_json_body()

                parsed = urlparse(self.path)
                match = _POLL_ROUTE.match(parsed.path)
                if not match or match.group("action") != "contributions":
                    return self._send_json(HTTPStatus.NOT_FOUND, {"error": "unknown endpoint"})

                try:
                    return self._handle_contributions(match.group("poll_id"), payload)
                except ScoringError as e:
                    return self._send_error_document(e)

            # --------------------------------------------------

            def _read_json_body(self) -> Optional[Dict[str, Any]]:
                try:
                    length = int(self.headers.get("Content-Length") or 0)
                except ValueError:
                    self.close_connection = True
                    return None
                if length <= 0:
                    return None
                if length > MAX_BODY_BYTES:
                    # Body left unread; the connection cannot be reused.
                    self.close_connection = True
                    return None
                raw = self.rfile.read(length)
                try:
                    payload = json.loads(raw.decode("utf-8"))
                except (json.JSONDecodeError, UnicodeDecodeError):
                    return None
                return payload if isinstance(payload, dict) else None

            def _caller(self) -> Optional[str]:
                contributor_id = (self.headers.get("X-Contributor-Id") or "").strip()
                if not contributor_id:
                    return None
                identities.register(
                    Identity(
                        contributor_id=contributor_id,
                        display_name=self.headers.get("X-Contributor-Name") or "",
                        email=self.headers.get("X-Contributor-Email") or None,
                    )
                )
                return contributor_id

            def _handle_poll_get(self, poll_id: str, action: str, query: Dict[str, Any]) -> None:
                if action == "state":
                    now: Optional[datetime] = None
                    raw_now = (query.get("now") or [None])[0]
                    if raw_now:
                        try:
                            now = parse_iso(raw_now)
                        except ValueError:
                            return self._send_json(
                                HTTPStatus.BAD_REQUEST,
                                {"error": "now must be an ISO-8601 timestamp"},
                            )
                    state = service.get_poll_state(poll_id, now)
                    return self._send_json(
                        HTTPStatus.OK,
                        {"poll_id": poll_id, "state": state.value},
                    )

                if action == "aggregates":
                    snapshot = service.get_snapshot(poll_id)
                    return self._send_json(HTTPStatus.OK, snapshot.to_document(service.digits))

                if action == "completion":
                    contributor_id = self._caller()
                    if not contributor_id:
                        return self._send_json(
                            HTTPStatus.UNAUTHORIZED,
                            {"error": "X-Contributor-Id header is required"},
                        )
                    return self._send_json(
                        HTTPStatus.OK,
                        {
                            "poll_id": poll_id,
                            "contributor_id": contributor_id,
                            "completed": service.has_completed(poll_id, contributor_id),
                        },
                    )

                return self._send_json(HTTPStatus.NOT_FOUND, {"error": "unknown endpoint"})

            def _handle_contributions(self, poll_id: str, payload: Optional[Dict[str, Any]]) -> None:
                contributor_id = self._caller()
                if not contributor_id:
                    return self._send_json(
                        HTTPStatus.UNAUTHORIZED,
                        {"error": "X-Contributor-Id header is required"},
                    )

                values = (payload or {}).get("values")
                role = (payload or {}).get("role")
                if not isinstance(values, dict) or not values or not isinstance(role, str):
                    return self._send_json(
                        HTTPStatus.BAD_REQUEST,
                        {"error": "body must be {\"role\": str, \"values\": {candidate_id: score}}"},
                    )

                report = service.submit_batch(poll_id, contributor_id, role, values)
                return self._send_json(HTTPStatus.OK, report.to_document())

            def log_message(self, format: str, *args: Any) -> None:
                log.info("%s - %s", self.address_string(), format % args)

        return Handler


__all__ = ["ResultsApiServer", "status_for"]
