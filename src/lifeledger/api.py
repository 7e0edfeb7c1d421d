"""JSON-over-HTTP surface for the ledger."""

import json
import logging
import re
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import unquote, urlsplit

from .errors import (
    AlreadyVerified,
    AlreadyVerifier,
    CannotRemoveAdmin,
    InvalidInput,
    LedgerError,
    NotAVerifier,
    NotFound,
    SelfVerificationForbidden,
    Unauthorized,
)
from .ledger import Ledger

logger = logging.getLogger(__name__)

IDENTITY_HEADER = "X-Ledger-Identity"

_STATUS_BY_ERROR: dict[type, int] = {
    InvalidInput: 400,
    Unauthorized: 403,
    NotFound: 404,
    AlreadyVerified: 409,
    SelfVerificationForbidden: 409,
    AlreadyVerifier: 409,
    NotAVerifier: 409,
    CannotRemoveAdmin: 409,
}

_EVENT_ROUTE = re.compile(r"^/events/(?P<id>[^/]+)$")
_VERIFY_ROUTE = re.compile(r"^/events/(?P<id>[^/]+)/verify$")
_TIMELINE_ROUTE = re.compile(r"^/timeline/(?P<identity>[^/]+)$")
_VERIFIER_ROUTE = re.compile(r"^/verifiers/(?P<identity>[^/]+)$")
_EVENT_ID = re.compile(r"[0-9]+")


class HttpError(Exception):
    """Transport-level failure that is not a ledger error."""

    def __init__(self, status: int, code: str, message: str):
        super().__init__(message)
        self.status = status
        self.code = code
        self.message = message


def _parse_event_id(raw: str) -> int:
    if not _EVENT_ID.fullmatch(raw):
        raise NotFound(f"Event {raw} does not exist")
    return int(raw)


class LedgerAPIHandler(BaseHTTPRequestHandler):
    server: "LedgerHTTPServer"

    def do_GET(self):
        self._dispatch("GET")

    def do_POST(self):
        self._dispatch("POST")

    def do_DELETE(self):
        self._dispatch("DELETE")

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug(f"{self.address_string()} {format % args}")

    def _dispatch(self, method: str) -> None:
        path = urlsplit(self.path).path.rstrip("/") or "/"
        try:
            status, body = self._route(method, path)
        except LedgerError as e:
            status, body = _STATUS_BY_ERROR.get(type(e), 400), {"error": e.code, "message": e.message}
        except HttpError as e:
            status, body = e.status, {"error": e.code, "message": e.message}
        except Exception as e:
            logger.exception(f"Unhandled error on {method} {path}")
            status, body = 500, {"error": "internal_error", "message": str(e)}
        self._send_json(status, body)

    def _route(self, method: str, path: str) -> tuple[int, dict]:
        ledger = self.server.ledger

        if method == "GET":
            if path == "/total":
                return 200, {"total": ledger.get_total_events()}
            match = _EVENT_ROUTE.match(path)
            if match:
                event = ledger.get_event(_parse_event_id(unquote(match["id"])))
                return 200, event.model_dump(mode="json")
            match = _TIMELINE_ROUTE.match(path)
            if match:
                identity = unquote(match["identity"])
                return 200, {"identity": identity, "event_ids": ledger.get_timeline(identity)}
            match = _VERIFIER_ROUTE.match(path)
            if match:
                identity = unquote(match["identity"])
                return 200, {"identity": identity, "is_verifier": ledger.is_verifier(identity)}

        elif method == "POST":
            if path == "/events":
                payload = self._read_json()
                event_id = ledger.record_event(
                    self._caller(),
                    payload.get("event_type", ""),
                    payload.get("description", ""),
                    payload.get("document_ref", ""),
                )
                return 201, {"id": event_id}
            match = _VERIFY_ROUTE.match(path)
            if match:
                caller = self._caller()
                event = ledger.verify_event(caller, _parse_event_id(unquote(match["id"])))
                return 200, event.model_dump(mode="json")
            if path == "/verifiers":
                caller = self._caller()
                identity = self._read_json().get("identity")
                ledger.add_verifier(caller, identity)
                return 201, {"identity": identity, "is_verifier": True}

        elif method == "DELETE":
            match = _VERIFIER_ROUTE.match(path)
            if match:
                identity = unquote(match["identity"])
                ledger.remove_verifier(self._caller(), identity)
                return 200, {"identity": identity, "is_verifier": False}

        raise HttpError(404, "no_route", f"No route for {method} {path}")

    def _caller(self) -> str:
        caller = self.headers.get(IDENTITY_HEADER)
        if not caller:
            raise HttpError(401, "unauthenticated", f"Missing {IDENTITY_HEADER} header")
        return caller

    def _read_json(self) -> dict:
        try:
            length = int(self.headers.get("Content-Length") or 0)
        except ValueError:
            raise HttpError(400, "invalid_request", "Content-Length must be an integer")
        raw = self.rfile.read(length) if length > 0 else b""
        if not raw:
            return {}
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise HttpError(400, "invalid_json", f"Request body is not valid JSON: {e}")
        if not isinstance(data, dict):
            raise HttpError(400, "invalid_json", "Request body must be a JSON object")
        return data

    def _send_json(self, status: int, body: dict) -> None:
        encoded = json.dumps(body).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(encoded)))
        self.end_headers()
        self.wfile.write(encoded)


class LedgerHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address: tuple[str, int], ledger: Ledger):
        super().__init__(address, LedgerAPIHandler)
        self.ledger = ledger


def make_server(ledger: Ledger, host: str = "127.0.0.1", port: int = 8080) -> LedgerHTTPServer:
    """Bind an HTTP server for ledger; port 0 picks a free port."""
    return LedgerHTTPServer((host, port), ledger)


def serve(ledger: Ledger, host: str = "127.0.0.1", port: int = 8080) -> None:
    """Serve the API until interrupted."""
    server = make_server(ledger, host, port)
    bound_host, bound_port = server.server_address[:2]
    logger.info(f"Life ledger API running on http://{bound_host}:{bound_port}")
    try:
        server.serve_forever()
    finally:
        server.server_close()
