"""
ReqDash Proxy Relay
===================
Executes a :class:`RequestDescriptor` against an arbitrary origin and
returns a normalized :class:`ResponseDescriptor`.

Every invocation is independent: a fresh ``requests.Session`` is opened for
the outbound call and closed afterwards. The call is bounded by the
configured connect/read timeouts plus an overall deadline, and can be
aborted from another thread through a :class:`CancelToken`.

Outcomes at the relay boundary:
  • 200 – the remote answered (its own status travels inside the payload)
  • 400 – the descriptor has no URL
  • 500 – the outbound call or its decoding failed
"""

from __future__ import annotations

import codecs
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import requests

from reqdash.config import RelayConfig
from reqdash.core.models import Headers, RequestDescriptor, ResponseDescriptor, loads_json

logger = logging.getLogger(__name__)

URL_REQUIRED = "URL is required"
GENERIC_ERROR = "Internal server error"
CANCELLED = "Request cancelled"

_CHUNK_SIZE = 64 * 1024
_CHARSET_RE = re.compile(r"charset=[\"']?([\w.:-]+)", re.IGNORECASE)

TimeoutSpec = Union[float, Tuple[float, float], None]


# ── Enums / Errors ───────────────────────────────────────────────────────────


class RelayErrorKind(str, Enum):
    """Machine-readable reason for a failed relay call."""
    VALIDATION = "validation"
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    CANCELLED = "cancelled"
    DECODE = "decode"
    TOO_LARGE = "too_large"
    UPSTREAM = "upstream"


class RelayCancelled(Exception):
    """Raised inside the relay when its CancelToken fires."""


class ResponseTooLarge(Exception):
    """Raised when a response body exceeds ``max_body_bytes``."""


# ── Cancellation ─────────────────────────────────────────────────────────────


class CancelToken:
    """Thread-safe cancellation flag with close-on-cancel callbacks."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()

        for cb in callbacks:
            try:
                cb()
            except Exception as e:
                logger.debug(f"Cancel callback error: {e}")

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """Register a callback; runs immediately if already cancelled."""
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RelayCancelled(CANCELLED)


# ── Result ───────────────────────────────────────────────────────────────────


@dataclass
class RelayResult:
    """What the relay hands back to its caller.

    ``status_code`` is the relay's own boundary code; ``payload`` is the JSON
    body sent to the caller.
    """
    status_code: int
    payload: Dict[str, Any]
    error_kind: Optional[RelayErrorKind] = None
    response: Optional[ResponseDescriptor] = None
    duration_ms: float = 0.0
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status_code == 200

    @property
    def error(self) -> Optional[str]:
        return self.payload.get("error") if not self.ok else None

    @classmethod
    def success(cls, response: ResponseDescriptor, duration_ms: float = 0.0) -> "RelayResult":
        return cls(
            status_code=200,
            payload=response.to_dict(),
            response=response,
            duration_ms=duration_ms,
        )

    @classmethod
    def failure(
        cls,
        status_code: int,
        message: str,
        kind: RelayErrorKind,
        duration_ms: float = 0.0,
    ) -> "RelayResult":
        return cls(
            status_code=status_code,
            payload={"error": message or GENERIC_ERROR},
            error_kind=kind,
            duration_ms=duration_ms,
        )


# ── Helpers ──────────────────────────────────────────────────────────────────


def _outbound_headers(headers: Headers) -> Dict[str, str]:
    """Collapse repeated request headers into one field each."""
    merged: Dict[str, str] = {}
    names: Dict[str, str] = {}
    for name, value in headers.items():
        key = name.lower()
        if key in names:
            sep = "; " if key == "cookie" else ", "
            merged[names[key]] = f"{merged[names[key]]}{sep}{value}"
        else:
            names[key] = name
            merged[name] = value
    return merged


def _response_headers(resp: requests.Response) -> Headers:
    """Response headers with repeated names kept apart, names lower-cased."""
    raw_headers = getattr(resp.raw, "headers", None)
    if raw_headers is not None and hasattr(raw_headers, "iteritems"):
        pairs = raw_headers.iteritems()
    else:
        pairs = resp.headers.items()
    return Headers((k.lower(), v) for k, v in pairs)


def _charset(content_type: str) -> str:
    match = _CHARSET_RE.search(content_type or "")
    if match:
        try:
            return codecs.lookup(match.group(1)).name
        except LookupError:
            logger.debug(f"Unknown charset {match.group(1)!r}, using utf-8")
    return "utf-8"


def decode_body(content_type: str, raw: bytes) -> Any:
    """Decode a response body: JSON for ``application/json``, text otherwise."""
    charset = _charset(content_type)
    if "application/json" in (content_type or "").lower():
        if not raw.strip():
            return None
        return loads_json(raw.decode(charset))
    return raw.decode(charset, errors="replace")


def _timeout_tuple(timeout: TimeoutSpec, config: RelayConfig) -> Tuple[float, float]:
    if timeout is None:
        return (config.connect_timeout, config.read_timeout)
    if isinstance(timeout, tuple):
        return timeout
    return (float(timeout), float(timeout))


# ── Relay Engine ─────────────────────────────────────────────────────────────


class RelayEngine:
    """
    Stateless executor for request descriptors.

    Safe to share between threads: nothing is kept across invocations.
    """

    def __init__(self, config: Optional[RelayConfig] = None):
        self.config = config or RelayConfig()

    def relay(
        self,
        descriptor: Union[RequestDescriptor, Mapping[str, Any], None],
        cancel: Optional[CancelToken] = None,
        timeout: TimeoutSpec = None,
    ) -> RelayResult:
        """Execute ``descriptor`` and normalize the outcome.

        Args:
            descriptor: Request to send; a plain mapping in wire shape is accepted.
            cancel: Optional token that aborts the outbound call.
            timeout: Seconds (or a ``(connect, read)`` pair) overriding config.

        Returns:
            RelayResult carrying the boundary status and JSON payload.
        """
        if descriptor is None:
            descriptor = RequestDescriptor()
        elif not isinstance(descriptor, RequestDescriptor):
            try:
                descriptor = RequestDescriptor.from_dict(descriptor)
            except (TypeError, ValueError, AttributeError) as e:
                logger.error(f"Relay rejected malformed descriptor: {e}")
                return RelayResult.failure(500, str(e), RelayErrorKind.VALIDATION)

        logger.info(
            f"Relay request: {descriptor.method} {descriptor.url or '<no url>'} "
            f"headers={descriptor.headers.to_dict()} data={descriptor.data!r}"
        )

        if not descriptor.url:
            logger.warning("Relay rejected request: URL is required")
            return RelayResult.failure(400, URL_REQUIRED, RelayErrorKind.VALIDATION)

        start = time.monotonic()
        try:
            response = self._execute(descriptor, cancel, timeout, start)
        except Exception as e:
            duration = (time.monotonic() - start) * 1000
            kind = self._classify(e, cancel)
            message = CANCELLED if kind is RelayErrorKind.CANCELLED else str(e)
            logger.error(f"Relay error ({kind.value}) for {descriptor.url}: {message or GENERIC_ERROR}")
            return RelayResult.failure(500, message, kind, duration)

        duration = (time.monotonic() - start) * 1000
        logger.info(
            f"Relay response: {response.status} {response.status_text} "
            f"from {descriptor.url} ({duration:.0f}ms)"
        )
        return RelayResult.success(response, duration)

    # ── Outbound Call ────────────────────────────────────────────────────

    def _execute(
        self,
        descriptor: RequestDescriptor,
        cancel: Optional[CancelToken],
        timeout: TimeoutSpec,
        start: float,
    ) -> ResponseDescriptor:
        body = descriptor.body_text()
        deadline = start + self.config.total_timeout if self.config.total_timeout else None

        with requests.Session() as session:
            if cancel:
                cancel.raise_if_cancelled()
                cancel.on_cancel(session.close)

            resp = self._send(
                session,
                cancel,
                method=descriptor.method,
                url=descriptor.url,
                headers=_outbound_headers(descriptor.headers),
                data=body.encode("utf-8") if body is not None else None,
                timeout=_timeout_tuple(timeout, self.config),
                allow_redirects=self.config.follow_redirects,
                verify=self.config.verify_tls,
                stream=True,
            )
            try:
                if cancel:
                    cancel.on_cancel(resp.close)
                raw = self._read_body(resp, cancel, deadline)
                content_type = resp.headers.get("content-type", "")
                return ResponseDescriptor(
                    status=resp.status_code,
                    status_text=resp.reason or "",
                    headers=_response_headers(resp),
                    data=decode_body(content_type, raw),
                )
            finally:
                resp.close()

    @staticmethod
    def _send(
        session: requests.Session,
        cancel: Optional[CancelToken],
        **kwargs: Any,
    ) -> requests.Response:
        """Issue the request; with a token, give up as soon as it fires.

        The call runs on a worker thread so a cancel that arrives before the
        response headers does not wait on the origin. An abandoned worker
        ends at its read timeout and closes whatever response it gets.
        """
        if cancel is None:
            return session.request(**kwargs)

        done = threading.Event()
        outcome: Dict[str, Any] = {}

        def run() -> None:
            try:
                resp = session.request(**kwargs)
                outcome["response"] = resp
                if cancel.cancelled:
                    resp.close()
            except Exception as e:
                outcome["error"] = e
            finally:
                done.set()

        cancel.on_cancel(done.set)
        threading.Thread(target=run, daemon=True, name="reqdash-relay").start()
        done.wait()

        if cancel.cancelled:
            if "response" in outcome:
                outcome["response"].close()
            raise RelayCancelled(CANCELLED)
        if "error" in outcome:
            raise outcome["error"]
        return outcome["response"]

    def _read_body(
        self,
        resp: requests.Response,
        cancel: Optional[CancelToken],
        deadline: Optional[float],
    ) -> bytes:
        limit = self.config.max_body_bytes
        chunks: List[bytes] = []
        size = 0
        for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
            if cancel:
                cancel.raise_if_cancelled()
            if deadline is not None and time.monotonic() > deadline:
                raise requests.Timeout(
                    f"Relay deadline of {self.config.total_timeout:g}s exceeded"
                )
            size += len(chunk)
            if limit and size > limit:
                raise ResponseTooLarge(f"Response body exceeds {limit} bytes")
            chunks.append(chunk)
        if cancel:
            cancel.raise_if_cancelled()
        return b"".join(chunks)

    @staticmethod
    def _classify(exc: Exception, cancel: Optional[CancelToken]) -> RelayErrorKind:
        if isinstance(exc, RelayCancelled) or (cancel is not None and cancel.cancelled):
            return RelayErrorKind.CANCELLED
        if isinstance(exc, requests.Timeout):
            return RelayErrorKind.TIMEOUT
        if isinstance(exc, requests.ConnectionError):
            return RelayErrorKind.CONNECTION
        if isinstance(exc, ResponseTooLarge):
            return RelayErrorKind.TOO_LARGE
        if isinstance(exc, requests.RequestException):
            return RelayErrorKind.UPSTREAM
        if isinstance(exc, (ValueError, UnicodeError)):
            return RelayErrorKind.DECODE
        return RelayErrorKind.UPSTREAM


# ── Module-Level Singleton ───────────────────────────────────────────────────

_relay_engine: Optional[RelayEngine] = None


def get_relay_engine() -> RelayEngine:
    """Get or create the global relay engine singleton."""
    global _relay_engine
    if _relay_engine is None:
        _relay_engine = RelayEngine()
    return _relay_engine


def reset_relay_engine(config: Optional[RelayConfig] = None) -> None:
    """Reset the global relay engine (for testing or after a config change)."""
    global _relay_engine
    _relay_engine = RelayEngine(config) if config else None


def relay(
    descriptor: Union[RequestDescriptor, Mapping[str, Any], None],
    cancel: Optional[CancelToken] = None,
    timeout: TimeoutSpec = None,
) -> RelayResult:
    """Relay ``descriptor`` through the global engine."""
    return get_relay_engine().relay(descriptor, cancel=cancel, timeout=timeout)
