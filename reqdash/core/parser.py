"""
ReqDash Command Parser
======================
Turns a pasted ``curl`` command line into a :class:`RequestDescriptor`.

The text is split with a POSIX shell lexer and the resulting tokens are
walked by a small state machine over a table of known curl options.
Parsing never raises: anything that cannot be understood is skipped and
reported as a warning on the :class:`ParseResult`.

Method selection, in order of precedence:
  1. ``-X/--request``
  2. ``-I/--head``
  3. any payload flag present → ``POST``
  4. ``GET``
"""

from __future__ import annotations

import json
import logging
import re
import shlex
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple
from urllib.parse import quote

from reqdash.core.models import Headers, HttpMethod, RequestDescriptor, loads_json

logger = logging.getLogger(__name__)


# ── Option Table ─────────────────────────────────────────────────────────────

# Options that take a value and affect the descriptor: option -> action
_VALUE_OPTIONS: Dict[str, str] = {
    "-X": "method", "--request": "method",
    "-H": "header", "--header": "header",
    "-d": "data", "--data": "data", "--data-raw": "data_raw",
    "--data-binary": "data", "--data-ascii": "data",
    "--data-urlencode": "data_urlencode",
    "--json": "json",
    "-A": "user_agent", "--user-agent": "user_agent",
    "-e": "referer", "--referer": "referer",
    "-b": "cookie", "--cookie": "cookie",
    "--url": "url",
}

# Options that take a value we accept but do not model
_IGNORED_VALUE_OPTIONS = frozenset({
    "-o", "--output", "-m", "--max-time", "--connect-timeout",
    "-x", "--proxy", "-w", "--write-out", "--retry", "--retry-delay",
    "-c", "--cookie-jar", "--cacert", "--capath", "--cert", "--key",
    "-r", "--range", "--resolve", "--limit-rate", "--max-redirs",
    "-K", "--config", "--interface", "-D", "--dump-header",
})

# Options that take a value and describe something the descriptor cannot hold
_UNSUPPORTED_VALUE_OPTIONS = frozenset({
    "-u", "--user", "-F", "--form", "--form-string", "-T", "--upload-file",
    "-E", "--oauth2-bearer",
})

_SWITCHES = frozenset({
    "-s", "--silent", "-S", "--show-error", "-L", "--location",
    "-k", "--insecure", "-v", "--verbose", "-i", "--include",
    "--compressed", "-f", "--fail", "-g", "--globoff", "-N", "--no-buffer",
    "-#", "--progress-bar", "-0", "--http1.0", "--http1.1", "--http2",
    "--http2-prior-knowledge", "-4", "--ipv4", "-6", "--ipv6", "-n", "--netrc",
    "-q", "--disable", "-j", "--junk-session-cookies", "--location-trusted",
    "-O", "--remote-name", "-Z", "--parallel", "--tr-encoding", "--raw",
})

_SPECIAL_SWITCHES: Dict[str, str] = {
    "-I": "head", "--head": "head",
    "-G": "get", "--get": "get",
}

_PAYLOAD_ACTIONS = frozenset({"data", "data_raw", "data_urlencode", "json"})

_HEADER_OPTIONS: Dict[str, str] = {
    "user_agent": "User-Agent",
    "referer": "Referer",
    "cookie": "Cookie",
}


# ── Result ───────────────────────────────────────────────────────────────────


class ParseStatus(str, Enum):
    OK = "ok"
    PARTIAL = "partial"


@dataclass
class ParseResult:
    """Descriptor plus everything the parser had to skip to build it."""
    request: RequestDescriptor
    warnings: List[str] = field(default_factory=list)

    @property
    def status(self) -> ParseStatus:
        return ParseStatus.PARTIAL if self.warnings else ParseStatus.OK

    @property
    def ok(self) -> bool:
        return self.status is ParseStatus.OK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request": self.request.to_dict(),
            "status": self.status.value,
            "warnings": list(self.warnings),
        }


# ── Tokenizer ────────────────────────────────────────────────────────────────


_ANSI_C_ESCAPES: Dict[str, str] = {
    "n": "\n", "t": "\t", "r": "\r", "a": "\a", "b": "\b", "f": "\f",
    "v": "\v", "e": "\x1b", "E": "\x1b", "\\": "\\", "'": "'", '"': '"', "?": "?",
}
_ANSI_C_HEX = re.compile(r"x([0-9a-fA-F]{1,2})|u([0-9a-fA-F]{1,4})|([0-7]{1,3})")


def _read_ansi_c(text: str, start: int) -> Tuple[Optional[str], int]:
    """Decode a ``$'...'`` body starting after the opening quote.

    Returns the decoded value and the index past the closing quote, or
    ``(None, start)`` when the quote is never closed.
    """
    out: List[str] = []
    i = start
    while i < len(text):
        ch = text[i]
        if ch == "'":
            return "".join(out), i + 1
        if ch == "\\" and i + 1 < len(text):
            nxt = text[i + 1]
            if nxt in _ANSI_C_ESCAPES:
                out.append(_ANSI_C_ESCAPES[nxt])
                i += 2
                continue
            m = _ANSI_C_HEX.match(text, i + 1)
            if m:
                digits = m.group(1) or m.group(2)
                out.append(chr(int(digits, 16)) if digits else chr(int(m.group(3), 8)))
                i = m.end()
                continue
            out.append(text[i:i + 2])
            i += 2
            continue
        out.append(ch)
        i += 1
    return None, start


def _single_quote(value: str) -> str:
    return "'" + value.replace("'", "'\"'\"'") + "'"


def _expand_ansi_c(text: str) -> str:
    """Rewrite ``$'...'`` words as plain single-quoted words.

    Only ``$'`` outside of other quotes starts an ANSI-C string.
    """
    out: List[str] = []
    quote: Optional[str] = None
    i = 0
    while i < len(text):
        ch = text[i]
        if quote == "'":
            if ch == "'":
                quote = None
        elif ch == "\\" and i + 1 < len(text):
            out.append(text[i:i + 2])
            i += 2
            continue
        elif quote == '"':
            if ch == '"':
                quote = None
        elif ch in "'\"":
            quote = ch
        elif text.startswith("$'", i):
            value, end = _read_ansi_c(text, i + 2)
            if value is None:
                # Unterminated; leave the quote for the lexer to report
                out.append(text[i + 1:])
                break
            out.append(_single_quote(value))
            i = end
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def _normalize(text: str) -> str:
    # Line continuations and ANSI-C quoting from browser "copy as cURL"
    text = text.replace("\\\r\n", " ").replace("\\\n", " ")
    return _expand_ansi_c(text)


def _tokens(text: str, warnings: List[str]) -> Iterator[str]:
    """Yield shell words; stop quietly (with a warning) on a lexing error."""
    lexer = shlex.shlex(text, posix=True)
    lexer.whitespace_split = True
    lexer.commenters = ""
    while True:
        try:
            token = lexer.get_token()
        except ValueError as e:
            warnings.append(f"Could not tokenize the rest of the command: {e}")
            return
        if token is None:
            return
        yield token


def _split_short(token: str) -> List[Tuple[str, Optional[str]]]:
    """Expand a short-option cluster such as ``-sSL`` or ``-XPUT``.

    Returns ``(option, attached_value)`` pairs; the value is ``None`` when
    the option's value (if any) is the next token.
    """
    out: List[Tuple[str, Optional[str]]] = []
    chars = token[1:]
    for i, ch in enumerate(chars):
        opt = f"-{ch}"
        takes_value = (
            opt in _VALUE_OPTIONS
            or opt in _IGNORED_VALUE_OPTIONS
            or opt in _UNSUPPORTED_VALUE_OPTIONS
        )
        if takes_value:
            rest = chars[i + 1:]
            out.append((opt, rest or None))
            return out
        out.append((opt, None))
    return out


# ── State Machine ────────────────────────────────────────────────────────────


class _State(Enum):
    EXPECT_COMMAND = "expect_command"
    ARGUMENTS = "arguments"
    OPTION_VALUE = "option_value"


class _Builder:
    """Accumulates what the tokens describe."""

    def __init__(self, warnings: List[str]):
        self.warnings = warnings
        self.url = ""
        self.explicit_method: Optional[str] = None
        self.head = False
        self.get = False
        self.saw_payload = False
        self.json_flag = False
        self.headers = Headers()
        self.segments: List[str] = []

    # ── options ──────────────────────────────────────────────────────────

    def switch(self, option: str) -> None:
        if option in _SWITCHES:
            return
        special = _SPECIAL_SWITCHES.get(option)
        if special == "head":
            self.head = True
        elif special == "get":
            self.get = True
        else:
            self.warnings.append(f"Ignored unknown option {option}")

    def takes_value(self, option: str) -> bool:
        return (
            option in _VALUE_OPTIONS
            or option in _IGNORED_VALUE_OPTIONS
            or option in _UNSUPPORTED_VALUE_OPTIONS
        )

    def value(self, option: str, value: str) -> None:
        if option in _IGNORED_VALUE_OPTIONS:
            return
        if option in _UNSUPPORTED_VALUE_OPTIONS:
            self.warnings.append(f"Option {option} is not supported and was ignored")
            return

        action = _VALUE_OPTIONS[option]
        if action in _PAYLOAD_ACTIONS:
            self.saw_payload = True
        if action == "method":
            self.explicit_method = value.strip().upper() or None
        elif action == "header":
            self._header(value)
        elif action == "url":
            self.positional(value)
        elif action == "data_urlencode":
            self.segments.append(_urlencode_segment(value))
        elif action in ("data", "data_raw", "json"):
            if action == "data" and value.startswith("@"):
                self.warnings.append(
                    f"Payload from file {value[1:]!r} cannot be read; kept as text"
                )
            if action == "json":
                self.json_flag = True
            self.segments.append(value)
        else:
            self.headers.set(_HEADER_OPTIONS[action], value)

    def missing_value(self, option: str) -> None:
        if _VALUE_OPTIONS.get(option) in _PAYLOAD_ACTIONS:
            self.saw_payload = True
        self.warnings.append(f"Option {option} is missing its value")

    def _header(self, raw: str) -> None:
        key, sep, value = raw.partition(": ")
        if not sep:
            key, sep, value = raw.partition(":")
        if not sep:
            if raw.strip().endswith(";"):
                # curl's "Name;" form sends the header with an empty value
                self.headers.add(raw.strip()[:-1].strip(), "")
            else:
                self.warnings.append(f"Ignored malformed header {raw!r}")
            return
        key = key.strip()
        if not key:
            self.warnings.append(f"Ignored header with empty name {raw!r}")
            return
        self.headers.add(key, value.strip())

    # ── positionals ──────────────────────────────────────────────────────

    def positional(self, token: str) -> None:
        if token.lower().startswith(("http://", "https://")):
            if self.url:
                self.warnings.append(f"Ignored additional URL {token}")
            else:
                self.url = token
            return
        self.warnings.append(f"Ignored argument {token!r}")

    # ── result ───────────────────────────────────────────────────────────

    def build(self) -> RequestDescriptor:
        payload: Optional[str] = "&".join(self.segments) if self.segments else None
        url = self.url

        if self.get and payload is not None:
            if url:
                url = f"{url}{'&' if '?' in url else '?'}{payload}"
            payload = None

        if self.explicit_method:
            method = self.explicit_method
        elif self.head:
            method = HttpMethod.HEAD.value
        elif self.saw_payload and not self.get:
            method = HttpMethod.POST.value
        else:
            method = HttpMethod.GET.value

        if self.json_flag:
            if "Content-Type" not in self.headers:
                self.headers.add("Content-Type", "application/json")
            if "Accept" not in self.headers:
                self.headers.add("Accept", "application/json")

        if not url:
            self.warnings.append("No http:// or https:// URL found")

        return RequestDescriptor(
            url=url,
            method=method,
            headers=self.headers,
            data=_decode_payload(payload),
        )


def _urlencode_segment(value: str) -> str:
    name, sep, content = value.partition("=")
    if sep:
        return f"{name}={quote(content, safe='')}" if name else quote(content, safe="")
    return quote(value, safe="")


def _decode_payload(payload: Optional[str]) -> Any:
    if payload is None:
        return None
    try:
        return loads_json(payload)
    except ValueError:
        return payload


# ── Public API ───────────────────────────────────────────────────────────────


def parse_command(text: str) -> ParseResult:
    """Parse command text into a :class:`ParseResult`. Never raises."""
    warnings: List[str] = []
    builder = _Builder(warnings)

    if not text or not text.strip():
        warnings.append("Empty command")
        return ParseResult(request=RequestDescriptor(), warnings=warnings)

    state = _State.EXPECT_COMMAND
    pending: Optional[str] = None
    options_done = False

    for token in _tokens(_normalize(text), warnings):
        if state is _State.EXPECT_COMMAND:
            state = _State.ARGUMENTS
            if token.rsplit("/", 1)[-1] in ("curl", "curl.exe"):
                continue
            warnings.append(f"Expected a curl command, got {token!r}")

        if state is _State.OPTION_VALUE:
            builder.value(pending, token)
            pending = None
            state = _State.ARGUMENTS
            continue

        if options_done:
            builder.positional(token)
        elif token == "--":
            options_done = True
        elif token.startswith("--") and len(token) > 2:
            option, eq, attached = token.partition("=")
            if builder.takes_value(option):
                if eq:
                    builder.value(option, attached)
                else:
                    pending = option
                    state = _State.OPTION_VALUE
            else:
                builder.switch(token)
        elif token.startswith("-") and len(token) > 1:
            for option, attached in _split_short(token):
                if not builder.takes_value(option):
                    builder.switch(option)
                elif attached is not None:
                    builder.value(option, attached)
                else:
                    pending = option
                    state = _State.OPTION_VALUE
        else:
            builder.positional(token)

    if state is _State.OPTION_VALUE and pending:
        builder.missing_value(pending)

    request = builder.build()
    if warnings:
        logger.debug(f"Parsed command with {len(warnings)} warning(s): {warnings}")
    return ParseResult(request=request, warnings=warnings)


def parse(text: str) -> RequestDescriptor:
    """Parse command text into a descriptor, defaulting whatever is missing."""
    return parse_command(text).request


def to_command(request: RequestDescriptor) -> str:
    """Render a descriptor as a shell-quoted curl command line."""
    parts = ["curl"]
    inferred = HttpMethod.POST.value if request.data is not None else HttpMethod.GET.value
    if request.method == HttpMethod.HEAD.value and request.data is None:
        parts.append("-I")
    elif request.method != inferred:
        parts += ["-X", request.method]
    for k, v in request.headers.items():
        parts += ["-H", f"{k}: {v}"]
    if request.data is not None:
        if isinstance(request.data, str):
            body = request.data
        else:
            body = json.dumps(request.data, separators=(",", ":"))
        parts += ["--data-raw", body]
    if request.url:
        parts.append(request.url)
    return " ".join(shlex.quote(p) for p in parts)
