"""
ReqDash Web Module
"""

from reqdash.web.app import create_app, run_server

__all__ = ["create_app", "run_server"]
