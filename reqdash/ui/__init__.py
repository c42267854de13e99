"""
ReqDash Terminal UI
===================
Rich terminal rendering for descriptors, relay results and saved requests.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from reqdash import __version__
from reqdash.core.models import RequestDescriptor, ResponseDescriptor

# ── Theme ────────────────────────────────────────────────────────────────────

REQDASH_THEME = Theme({
    "info": "cyan",
    "warning": "yellow",
    "error": "bold red",
    "success": "bold green",
    "title": "bold bright_green",
    "subtitle": "dim",
    "method": "bold magenta",
    "status.ok": "bold green",
    "status.redirect": "bold yellow",
    "status.error": "bold red",
    "dim": "dim white",
})

console = Console(theme=REQDASH_THEME)

BANNER_SMALL = (
    f"[bold bright_green]⚡ ReqDash[/] [dim]v{__version__}[/] "
    "[dim]|[/] [bold bright_cyan]cURL → request workbench[/]"
)


def show_banner() -> None:
    console.print(BANNER_SMALL)


# ── Messages ─────────────────────────────────────────────────────────────────

def print_info(text: str) -> None:
    console.print(f"[info]ℹ {text}[/]")


def print_success(text: str) -> None:
    console.print(f"[success]✅ {text}[/]")


def print_warning(text: str) -> None:
    console.print(f"[warning]⚠️  {text}[/]")


def print_error(text: str) -> None:
    console.print(f"[error]❌ {text}[/]")


def print_json(value: Any) -> None:
    """Pretty-print any JSON-serializable value."""
    text = json.dumps(value, indent=2, ensure_ascii=False, default=str)
    console.print(Syntax(text, "json", theme="monokai", line_numbers=False, word_wrap=True))


# ── Descriptors ──────────────────────────────────────────────────────────────

def _status_style(status: int) -> str:
    if status >= 400:
        return "status.error"
    if status >= 300:
        return "status.redirect"
    return "status.ok"


def show_request(req: RequestDescriptor, warnings: Optional[List[str]] = None) -> None:
    """Display a parsed request descriptor."""
    url = escape(req.url) if req.url else "[dim]<no url>[/]"
    console.print(f"\n[method]{escape(req.method)}[/] {url}")
    if len(req.headers):
        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column("Header", style="dim")
        table.add_column("Value")
        for k, v in req.headers.items():
            table.add_row(Text(k), Text(v))
        console.print(table)
    if req.data is not None:
        print_json(req.data)
    for w in warnings or []:
        print_warning(escape(w))


def show_response(resp: ResponseDescriptor, duration_ms: float = 0.0, show_headers: bool = True) -> None:
    """Display a normalized response descriptor."""
    style = _status_style(resp.status)
    timing = f" [dim]({duration_ms:.0f}ms)[/]" if duration_ms else ""
    console.print(f"\n[{style}]{resp.status} {escape(resp.status_text)}[/]{timing}")

    if show_headers and len(resp.headers):
        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column("Header", style="dim")
        table.add_column("Value")
        for k, v in resp.headers.items():
            table.add_row(Text(k), Text(v))
        console.print(table)

    if isinstance(resp.data, str):
        if resp.data:
            console.print(Panel(Text(resp.data), border_style="dim", expand=False))
    else:
        print_json(resp.data)


def show_saved_requests(items: List[Dict[str, Any]]) -> None:
    """Table of saved requests."""
    if not items:
        print_info("No saved requests")
        return
    table = Table(title="Saved Requests", show_lines=False)
    table.add_column("ID", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Method", style="method")
    table.add_column("URL")
    for item in items:
        req = item.get("request", {})
        table.add_row(*(Text(str(v)) for v in (
            item.get("id", ""), item.get("name", ""), req.get("method", ""), req.get("url", ""),
        )))
    console.print(table)


def show_config_status(config: Dict[str, Any]) -> None:
    """Display configuration status."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="dim")
    table.add_column("Value")
    for key, value in config.items():
        table.add_row(key, str(value))
    console.print(Panel(table, title="[title]Configuration[/]", border_style="green"))
