"""
ReqDash Core Module
"""

from reqdash.core.models import Headers, HttpMethod, RequestDescriptor, ResponseDescriptor
from reqdash.core.parser import ParseResult, ParseStatus, parse, parse_command, to_command
from reqdash.core.relay import CancelToken, RelayEngine, RelayErrorKind, RelayResult, relay

__all__ = [
    "Headers", "HttpMethod", "RequestDescriptor", "ResponseDescriptor",
    "ParseResult", "ParseStatus", "parse", "parse_command", "to_command",
    "CancelToken", "RelayEngine", "RelayErrorKind", "RelayResult", "relay",
]
