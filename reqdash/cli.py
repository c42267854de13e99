"""
ReqDash CLI
===========
Command-line entry points: parse a curl command, send it through the
relay, serve the web relay, and manage saved requests.
"""

from __future__ import annotations

import shlex
import sys
from typing import Tuple

import click
from rich.markup import escape
from dotenv import load_dotenv

from reqdash import __version__
from reqdash.config import CONFIG_FILE, load_config, setup_logging
from reqdash.core.parser import parse_command, to_command
from reqdash.core.relay import RelayEngine
from reqdash.store import JsonFileRequestStore
from reqdash.ui import (
    console,
    print_error,
    print_info,
    print_json,
    print_success,
    print_warning,
    show_banner,
    show_config_status,
    show_request,
    show_response,
    show_saved_requests,
)

load_dotenv()

# Everything after the first word belongs to the curl command
COMMAND_CONTEXT = {"ignore_unknown_options": True, "allow_interspersed_args": False}


def _command_text(command: Tuple[str, ...]) -> str:
    """Join CLI words back into command text; ``-`` reads stdin."""
    if command == ("-",):
        return sys.stdin.read()
    if len(command) == 1:
        return command[0]
    # Words arrived pre-split by the invoking shell; re-quote them
    return " ".join(shlex.quote(w) for w in command)


# ── Main CLI ─────────────────────────────────────────────────────────────────

@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Verbose (debug) logging")
@click.version_option(__version__, prog_name="reqdash")
@click.pass_context
def main(ctx, verbose):
    """ReqDash — turn curl commands into requests and relay them."""
    ctx.ensure_object(dict)
    config = load_config()
    if verbose:
        config.logging.level = "DEBUG"
    setup_logging(config.logging.level, config.logging.file)
    ctx.obj["config"] = config


@main.command(context_settings=COMMAND_CONTEXT)
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.option("--json", "as_json", is_flag=True, help="Print the raw parse result as JSON")
def parse(command, as_json):
    """Parse a curl COMMAND into a request descriptor."""
    result = parse_command(_command_text(command))
    if as_json:
        print_json(result.to_dict())
    else:
        show_request(result.request, result.warnings)
    if not result.request.url:
        sys.exit(1)


@main.command(context_settings=COMMAND_CONTEXT)
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.option("--timeout", "-t", type=float, default=None, help="Per-call timeout in seconds")
@click.option("--no-headers", is_flag=True, help="Hide response headers")
@click.pass_context
def send(ctx, command, timeout, no_headers):
    """Parse a curl COMMAND and execute it through the relay."""
    config = ctx.obj["config"]
    result = parse_command(_command_text(command))
    for w in result.warnings:
        print_warning(escape(w))

    engine = RelayEngine(config.relay)
    outcome = engine.relay(result.request, timeout=timeout)
    if not outcome.ok:
        print_error(f"{outcome.status_code}: {escape(outcome.error or '')}")
        sys.exit(1)
    show_response(outcome.response, outcome.duration_ms, show_headers=not no_headers)


@main.command()
@click.option("--host", default=None, help="Host to bind the relay server")
@click.option("--port", default=None, type=int, help="Port for the relay server")
@click.pass_context
def serve(ctx, host, port):
    """Run the web relay (POST /fetch)."""
    from reqdash.web.app import run_server

    config = ctx.obj["config"]
    show_banner()
    print_info(f"Relay on http://{host or config.server.host}:{port or config.server.port}/fetch")
    run_server(config, host=host, port=port)


@main.command()
@click.pass_context
def config(ctx):
    """Show the effective configuration."""
    cfg = ctx.obj["config"]
    show_config_status({
        "connect timeout": f"{cfg.relay.connect_timeout:g}s",
        "read timeout": f"{cfg.relay.read_timeout:g}s",
        "total timeout": f"{cfg.relay.total_timeout:g}s" if cfg.relay.total_timeout else "none",
        "verify TLS": cfg.relay.verify_tls,
        "server": f"{cfg.server.host}:{cfg.server.port}",
        "CORS": ", ".join(cfg.server.cors_origins) if cfg.server.cors_enabled else "disabled",
        "saved requests": cfg.storage.path,
        "log level": cfg.logging.level,
    })
    print_info(f"Config file: {CONFIG_FILE}")


# ── Saved Requests ───────────────────────────────────────────────────────────

@main.group()
@click.pass_context
def saved(ctx):
    """Manage saved requests."""
    ctx.obj["store"] = JsonFileRequestStore(ctx.obj["config"].storage.path)


@saved.command("list")
@click.pass_context
def saved_list(ctx):
    """List saved requests, newest first."""
    show_saved_requests([s.to_dict() for s in ctx.obj["store"].list()])


@saved.command("add", context_settings=COMMAND_CONTEXT)
@click.argument("name")
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_context
def saved_add(ctx, name, command):
    """Save a curl COMMAND under NAME."""
    result = parse_command(_command_text(command))
    for w in result.warnings:
        print_warning(escape(w))
    item = ctx.obj["store"].create(name, result.request)
    print_success(f"Saved as {item.id}")


@saved.command("show")
@click.argument("request_id")
@click.option("--curl", "as_curl", is_flag=True, help="Print as a curl command")
@click.pass_context
def saved_show(ctx, request_id, as_curl):
    """Show a saved request."""
    item = ctx.obj["store"].get(request_id)
    if not item:
        print_error(f"Saved request not found: {request_id}")
        sys.exit(1)
    if as_curl:
        console.print(to_command(item.request), markup=False, highlight=False, soft_wrap=True)
    else:
        console.print(f"[title]{escape(item.name)}[/] [dim]({item.id})[/]")
        show_request(item.request)


@saved.command("delete")
@click.argument("request_id")
@click.pass_context
def saved_delete(ctx, request_id):
    """Delete a saved request."""
    if ctx.obj["store"].delete(request_id):
        print_success(f"Deleted {request_id}")
    else:
        print_error(f"Saved request not found: {request_id}")
        sys.exit(1)


if __name__ == "__main__":
    main()
