"""
ReqDash — cURL-to-request workbench
===================================

Pieces:
  • Parser  – turns a pasted ``curl`` command into a request descriptor
  • Relay   – executes a descriptor against any origin, normalizes the reply
  • Web     – Flask endpoint exposing the relay to browser clients

Cross-platform: Linux · macOS · Windows
"""

__version__ = "1.0.0"
__app_name__ = "ReqDash"
