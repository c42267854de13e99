"""
ReqDash Web Relay
=================
Flask application exposing the relay to browser clients.

Routes:
  POST   /fetch            relay a request descriptor
  DELETE /fetch/<id>       cancel an in-flight relay call (``X-Request-Id``)
  POST   /parse            parse command text server-side
  GET    /requests         list saved requests
  POST   /requests         save a request
  GET    /requests/<id>    load a saved request
  DELETE /requests/<id>    delete a saved request
  GET    /health           liveness probe
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

from flask import Flask, current_app, jsonify, request
from flask_cors import CORS

from reqdash import __version__
from reqdash.config import ReqDashConfig, load_config
from reqdash.core.models import RequestDescriptor
from reqdash.core.parser import parse_command
from reqdash.core.relay import CancelToken, RelayEngine
from reqdash.store import JsonFileRequestStore, RequestStore

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"
ERROR_KIND_HEADER = "X-Relay-Error"


# ── In-Flight Registry ───────────────────────────────────────────────────────

class InFlightRegistry:
    """Cancel tokens of relay calls that are still running, keyed by caller id."""

    def __init__(self):
        self._lock = threading.Lock()
        self._tokens: Dict[str, CancelToken] = {}

    def register(self, request_id: str) -> CancelToken:
        token = CancelToken()
        with self._lock:
            previous = self._tokens.get(request_id)
            self._tokens[request_id] = token
        if previous is not None:
            logger.warning(f"Request id {request_id} reused while in flight; cancelling the older call")
            previous.cancel()
        return token

    def release(self, request_id: str, token: CancelToken) -> None:
        with self._lock:
            if self._tokens.get(request_id) is token:
                del self._tokens[request_id]

    def cancel(self, request_id: str) -> bool:
        with self._lock:
            token = self._tokens.pop(request_id, None)
        if token is None:
            return False
        token.cancel()
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)


# ── Route Helpers ────────────────────────────────────────────────────────────

def _engine() -> RelayEngine:
    return current_app.extensions["reqdash"]["engine"]


def _store() -> RequestStore:
    return current_app.extensions["reqdash"]["store"]


def _inflight() -> InFlightRegistry:
    return current_app.extensions["reqdash"]["inflight"]


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# ── App Factory ──────────────────────────────────────────────────────────────

def create_app(
    config: Optional[ReqDashConfig] = None,
    store: Optional[RequestStore] = None,
    engine: Optional[RelayEngine] = None,
) -> Flask:
    """Build the Flask application.

    Args:
        config: Effective configuration (loaded from disk when omitted).
        store: Saved-request repository (JSON files under the data dir by default).
        engine: Relay engine (built from ``config.relay`` by default).
    """
    config = config or load_config()

    app = Flask(__name__)
    app.json.sort_keys = False
    app.extensions["reqdash"] = {
        "config": config,
        "engine": engine or RelayEngine(config.relay),
        "store": store or JsonFileRequestStore(config.storage.path),
        "inflight": InFlightRegistry(),
    }

    if config.server.cors_enabled:
        CORS(
            app,
            origins=config.server.cors_origins or ["*"],
            methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            allow_headers="*",
            expose_headers=[ERROR_KIND_HEADER, REQUEST_ID_HEADER],
            send_wildcard="*" in (config.server.cors_origins or ["*"]),
        )
        logger.info(f"CORS enabled for origins: {', '.join(config.server.cors_origins or ['*'])}")

    _register_routes(app)
    return app


def _register_routes(app: Flask) -> None:

    # ── Relay ────────────────────────────────────────────────────────────

    @app.route("/fetch", methods=["POST"])
    def fetch():
        """Relay a request descriptor to its origin."""
        descriptor = _json_body()
        request_id = request.headers.get(REQUEST_ID_HEADER, "").strip()

        registry = _inflight()
        token = registry.register(request_id) if request_id else None
        try:
            result = _engine().relay(descriptor, cancel=token)
        finally:
            if token is not None:
                registry.release(request_id, token)

        resp = jsonify(result.payload)
        resp.status_code = result.status_code
        if result.error_kind is not None:
            resp.headers[ERROR_KIND_HEADER] = result.error_kind.value
        return resp

    @app.route("/fetch/<request_id>", methods=["DELETE"])
    def fetch_cancel(request_id: str):
        """Cancel an in-flight relay call."""
        if _inflight().cancel(request_id):
            logger.info(f"Cancelled relay call {request_id}")
            return jsonify({"cancelled": True})
        return jsonify({"error": f"No in-flight request {request_id}"}), 404

    # ── Parser ───────────────────────────────────────────────────────────

    @app.route("/parse", methods=["POST"])
    def parse_route():
        """Parse command text into a descriptor."""
        command = _json_body().get("command", "")
        if not isinstance(command, str) or not command.strip():
            return jsonify({"error": "Command is required"}), 400
        return jsonify(parse_command(command).to_dict())

    # ── Saved Requests ───────────────────────────────────────────────────

    @app.route("/requests", methods=["GET"])
    def requests_list():
        return jsonify([s.to_dict() for s in _store().list()])

    @app.route("/requests", methods=["POST"])
    def requests_create():
        data = _json_body()
        raw_request = data.get("request")
        if not isinstance(raw_request, dict):
            return jsonify({"error": "Request is required"}), 400
        try:
            descriptor = RequestDescriptor.from_dict(raw_request)
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
        saved = _store().create(str(data.get("name") or ""), descriptor)
        return jsonify(saved.to_dict()), 201

    @app.route("/requests/<request_id>", methods=["GET"])
    def requests_get(request_id: str):
        saved = _store().get(request_id)
        if saved:
            return jsonify(saved.to_dict())
        return jsonify({"error": "Saved request not found"}), 404

    @app.route("/requests/<request_id>", methods=["DELETE"])
    def requests_delete(request_id: str):
        if _store().delete(request_id):
            return jsonify({"ok": True})
        return jsonify({"error": "Saved request not found"}), 404

    # ── Health ───────────────────────────────────────────────────────────

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "version": __version__})


# ── Launch ───────────────────────────────────────────────────────────────────

def run_server(config: ReqDashConfig, host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Serve the relay with Flask's threaded development server."""
    host = host or config.server.host
    port = port or config.server.port
    app = create_app(config)

    log = logging.getLogger("werkzeug")
    log.setLevel(logging.WARNING)

    logger.info(f"ReqDash relay listening on http://{host}:{port}")
    app.run(host=host, port=port, debug=False, threaded=True, use_reloader=False)
