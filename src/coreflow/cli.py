"""Operator CLI: run the API server or a single maintenance sweep."""

from __future__ import annotations

import argparse
import logging
import sys

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.theme import Theme

from coreflow import __version__
from coreflow.config import Config, load_config

custom_theme = Theme({
    "info": "cyan",
    "warning": "yellow",
    "error": "bold red",
    "success": "bold green",
})

console = Console(theme=custom_theme)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="coreflow", description="CoreFlow hiring pipeline service.")
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    parser.add_argument("--version", action="version", version=f"coreflow {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--no-scheduler", action="store_true", help="Do not start the background sweep")

    sub.add_parser("process-due", help="Deliver queued workflow emails that are due")
    sub.add_parser("expire-offers", help="Expire offers past their expiry date")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for the coreflow console script."""
    args = build_parser().parse_args(argv)
    config = load_config(args.env_file)
    setup_logging(config.log_level)

    if args.command == "serve":
        return _serve(config, args.host, args.port, not args.no_scheduler)
    if args.command == "process-due":
        return _process_due(config)
    if args.command == "expire-offers":
        return _expire_offers(config)
    return 1


def _serve(config: Config, host: str, port: int, start_scheduler: bool) -> int:
    import uvicorn

    from coreflow.api import create_app

    console.print(Panel(
        f"Database: {config.db_path}\nEmail backend: {config.email_backend}\nListening on http://{host}:{port}",
        title=f"CoreFlow v{__version__}",
        border_style="cyan",
    ))
    app = create_app(config, start_scheduler=start_scheduler)
    uvicorn.run(app, host=host, port=port, log_config=None)
    return 0


def _process_due(config: Config) -> int:
    from coreflow.api.deps import build_services

    services = build_services(config)
    try:
        count = services.engine.process_due_sends()
    finally:
        services.db.close()
    console.print(f"[success]Processed {count} scheduled send(s).[/success]")
    return 0


def _expire_offers(config: Config) -> int:
    from coreflow.api.deps import build_services

    services = build_services(config)
    try:
        count = services.offers.expire_overdue()
    finally:
        services.db.close()
    console.print(f"[success]Expired {count} offer(s).[/success]")
    return 0


if __name__ == "__main__":
    sys.exit(main())
