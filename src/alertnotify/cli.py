from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from rich.console import Console
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .context import Context
from .logging_utils import configure_logging, render_fields_block
from .models import alerts_from_payload
from .notifiers import DeliveryOutcome, NotificationService
from .templating import Template

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INPUT_ERROR = 1
EXIT_PERMANENT_FAILURE = 2
EXIT_RETRYABLE_FAILURE = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="alertnotify", description="Deliver alert batches to notification receivers.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(os.getenv("ALERTNOTIFY_CONFIG", "alertnotify.yaml")),
        help="Path to the receivers YAML config",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    send = subparsers.add_parser("send", help="Send one alert batch through a receiver")
    send.add_argument("--receiver", required=True, help="Receiver name from the config")
    send.add_argument("--alerts", required=True, help="JSON file with the alert batch ('-' for stdin)")
    send.add_argument("--timeout", type=float, default=30.0, help="Overall deadline in seconds")
    send.add_argument("--group-key", default="", help="Group key passed to the templates")

    subparsers.add_parser("check-config", help="Validate the config and list receivers")
    return parser


def _read_alerts(source: str) -> Any:
    if source == "-":
        return json.load(sys.stdin)
    with Path(source).open("r", encoding="utf-8") as handle:
        return json.load(handle)


def exit_code_for(outcomes: Sequence[DeliveryOutcome]) -> int:
    failures = [outcome for outcome in outcomes if not outcome.ok]
    if not failures:
        return EXIT_OK
    if any(not outcome.retryable for outcome in failures):
        return EXIT_PERMANENT_FAILURE
    return EXIT_RETRYABLE_FAILURE


def print_outcomes(outcomes: Sequence[DeliveryOutcome], console: Console) -> None:
    table = Table(title="Delivery results")
    table.add_column("Integration", style="cyan", no_wrap=True)
    table.add_column("Result")
    table.add_column("Retryable")
    table.add_column("Error", overflow="fold")
    for outcome in outcomes:
        result = "[green]sent[/green]" if outcome.ok else "[red]failed[/red]"
        retryable = "-" if outcome.ok else ("yes" if outcome.retryable else "no")
        table.add_row(f"{outcome.notifier}[{outcome.index}]", result, retryable, str(outcome.error or ""))
    console.print(table)


def _run_send(args: argparse.Namespace, config: AppConfig, console: Console) -> int:
    try:
        receiver = config.receiver(args.receiver)
        alerts = alerts_from_payload(_read_alerts(args.alerts))
    except (ConfigError, ValueError, OSError) as exc:
        LOGGER.error("Invalid input: %s", exc)
        return EXIT_INPUT_ERROR
    if not alerts:
        LOGGER.error("Alert batch is empty")
        return EXIT_INPUT_ERROR

    template = Template(config.templates, external_url=config.external_url)
    try:
        service = NotificationService.from_config(receiver, template)
    except ConfigError as exc:
        LOGGER.error("Failed to build notifiers for %s: %s", receiver.name, exc)
        return EXIT_INPUT_ERROR

    ctx = Context.with_deadline_in(args.timeout, receiver=receiver.name, group_key=args.group_key)
    with service:
        outcomes = service.notify(ctx, alerts)

    LOGGER.info(
        render_fields_block(
            "Notification summary",
            [
                ("Receiver", receiver.name),
                ("Alerts", len(alerts)),
                ("Integrations", len(outcomes)),
                ("Failed", sum(1 for outcome in outcomes if not outcome.ok)),
            ],
        )
    )
    print_outcomes(outcomes, console)
    return exit_code_for(outcomes)


def _run_check_config(config: AppConfig, console: Console) -> int:
    table = Table(title="Receivers")
    table.add_column("Name", style="cyan")
    table.add_column("DingTalk")
    table.add_column("Webhook")
    table.add_column("Email")
    for receiver in config.receivers:
        table.add_row(
            receiver.name,
            str(len(receiver.dingtalk_configs)),
            str(len(receiver.webhook_configs)),
            str(len(receiver.email_configs)),
        )
    console.print(table)
    return EXIT_OK


def run(args: argparse.Namespace, console: Optional[Console] = None) -> int:
    console = console or Console()
    try:
        config = load_config(args.config)
    except (ConfigError, OSError) as exc:
        LOGGER.error("Failed to load config %s: %s", args.config, exc)
        return EXIT_INPUT_ERROR

    if args.command == "send":
        return _run_send(args, config, console)
    return _run_check_config(config, console)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
