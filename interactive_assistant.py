#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# Copyright (c) 2025 psguard contributors
"""
Interactive Assistant - chat front end for psguard with user oversight

Users describe what they want, Gemini proposes a PowerShell command, and
the safety pipeline decides:
1. Denied -> the reason is shown and the request is recorded
2. Needs confirmation -> the user approves or cancels
3. Allowed -> the command runs in the sandbox and the output is shown
"""

import sys
import os
import argparse
import logging
from datetime import datetime
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Prompt, Confirm
from rich.table import Table

# Enable readline for command history (up/down arrows)
try:
    import readline  # noqa: F401
except ImportError:
    pass  # readline not available on Windows

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), 'src'))

from psguard.config import AppConfig, ConfigError, load_config
from psguard.command_pipeline import CommandPipeline, PipelineOutcome, RerunError, build_pipeline
from psguard.safety.models import Command, ExecutionStatus, RiskLevel, SafetyVerdict, SecurityLevel

console = Console()
logger = logging.getLogger(__name__)

RISK_STYLE = {
    RiskLevel.LOW: "green",
    RiskLevel.MEDIUM: "yellow",
    RiskLevel.HIGH: "red",
}

STATUS_STYLE = {
    ExecutionStatus.NOT_EXECUTED: "red",
    ExecutionStatus.SUCCESS: "green",
    ExecutionStatus.FAILED: "red",
    ExecutionStatus.CANCELLED: "yellow",
}


def confirm_with_user(command: Command, verdict: SafetyVerdict) -> bool:
    """Show the command and its risk, then ask for explicit consent."""
    style = RISK_STYLE[verdict.risk_level]
    body = [f"[bold]{escape(command.text)}[/bold]"]
    if command.description:
        body.append(f"\n{escape(command.description)}")
    body.append(f"\nRisk: [{style}]{verdict.risk_level.name}[/{style}] "
                f"(score {verdict.risk_score:.1f}, {verdict.command_type.name})")
    if command.affected_paths:
        body.append("Paths: " + escape(", ".join(command.affected_paths)))
    for warning in verdict.warnings:
        body.append(f"[yellow]⚠ {escape(warning)}[/yellow]")
    console.print(Panel("\n".join(body), title="Confirm execution", border_style=style))
    return Confirm.ask("Run this command?", default=False)


def show_outcome(outcome: PipelineOutcome):
    verdict = outcome.verdict
    style = RISK_STYLE[verdict.risk_level]

    if verdict.denied:
        console.print(Panel(
            f"[bold]{escape(outcome.command.text) or '(empty)'}[/bold]\n\n"
            f"Reason: {escape(verdict.reason)}",
            title="⛔ Blocked",
            border_style="red",
        ))
        return

    if outcome.status == ExecutionStatus.CANCELLED:
        console.print("[yellow]Execution cancelled.[/yellow]")
        return

    result = outcome.result
    if result is None:
        return
    title = "✅ Success" if result.success else "❌ Failed"
    text = result.stdout if result.success else (result.stderr or result.stdout)
    console.print(Panel(
        escape(text.rstrip()) or "(no output)",
        title=f"{title} [{style}]{verdict.risk_level.name}[/{style}] "
              f"in {result.elapsed.total_seconds():.2f}s",
        border_style="green" if result.success else "red",
    ))


def show_verdict(command_text: str, verdict: SafetyVerdict):
    style = RISK_STYLE[verdict.risk_level]
    table = Table(title="Safety verdict", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Command", escape(command_text))
    table.add_row("Allowed", "yes" if verdict.allowed else "no")
    table.add_row("Needs confirmation", "yes" if verdict.requires_confirmation else "no")
    table.add_row("Risk", f"[{style}]{verdict.risk_level.name}[/{style}] ({verdict.risk_score:.1f})")
    table.add_row("Type", verdict.command_type.name)
    if verdict.reason:
        table.add_row("Reason", escape(verdict.reason))
    for warning in verdict.warnings:
        table.add_row("Warning", f"[yellow]{escape(warning)}[/yellow]")
    console.print(table)


def show_history(pipeline: CommandPipeline,
                 keyword: Optional[str] = None,
                 since: Optional[datetime] = None,
                 until: Optional[datetime] = None,
                 limit: int = 20):
    records = pipeline.history.query(keyword=keyword, start=since, end=until, limit=limit)
    if not records:
        console.print("[dim]No history records.[/dim]")
        return

    table = Table(title=f"History ({len(records)} records)")
    table.add_column("ID", justify="right")
    table.add_column("Time")
    table.add_column("Request")
    table.add_column("Command")
    table.add_column("Risk")
    table.add_column("Status")
    for record in records:
        risk_style = RISK_STYLE[record.risk_level]
        status_style = STATUS_STYLE[record.status]
        table.add_row(
            str(record.id),
            record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            escape(record.user_input[:40]),
            escape(record.generated_command[:60]),
            f"[{risk_style}]{record.risk_level.name}[/{risk_style}]",
            f"[{status_style}]{record.status.name}[/{status_style}]",
        )
    console.print(table)


def rerun_record(pipeline: CommandPipeline, record_id: int, confirm) -> Optional[PipelineOutcome]:
    """Re-run a history record through the full pipeline; None if it cannot be re-run."""
    try:
        outcome = pipeline.rerun(record_id, confirm=confirm)
    except RerunError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        return None
    show_outcome(outcome)
    return outcome


class InteractiveAssistant:
    """
    Conversational loop: request -> suggested command -> safety gate -> sandbox.

    Commands: /history, /rerun <id>, /level <strict|standard|relaxed>, /quit
    """

    def __init__(self, pipeline: CommandPipeline):
        from psguard.gemini_command_client import GeminiCommandClient

        self.pipeline = pipeline
        self.client = GeminiCommandClient(model=pipeline.config.gemini_model)

        console.print(Panel(
            "[bold green]psguard - PowerShell Assistant[/bold green]\n"
            "Describe what you want to do; every command passes the safety gate first.\n"
            "Commands: /history, /rerun <id>, /level <strict|standard|relaxed>, /quit",
            title="🛡 Welcome",
            border_style="green",
        ))

    def chat(self):
        while True:
            try:
                print()
                user_input = Prompt.ask("[bold cyan]You[/bold cyan]").strip()
                if not user_input:
                    continue

                if user_input.startswith('/'):
                    if not self._handle_command(user_input):
                        break
                    continue

                console.print("[bold yellow]🧠 Generating command...[/bold yellow]")
                suggestion = self.client.suggest(user_input)
                if suggestion.description:
                    console.print(f"[dim]{escape(suggestion.description)}[/dim]")

                outcome = self.pipeline.process(
                    user_input,
                    suggestion.command_text,
                    suggestion.description,
                    confirm=confirm_with_user,
                )
                show_outcome(outcome)

            except KeyboardInterrupt:
                console.print("\n[yellow]Interrupted. Type /quit to exit.[/yellow]")
            except EOFError:
                break
            except Exception as e:
                console.print(f"[red]Error: {escape(str(e))}[/red]")
                logger.exception("Error in chat loop")

    def _handle_command(self, line: str) -> bool:
        """Handle a slash command; returns False to quit."""
        parts = line.split()
        name = parts[0].lower()

        if name in ('/quit', '/exit', '/q'):
            console.print("[green]Goodbye![/green]")
            return False
        if name == '/history':
            show_history(self.pipeline)
        elif name == '/rerun':
            if len(parts) < 2 or not parts[1].isdigit():
                console.print("[red]Usage: /rerun <id>[/red]")
            else:
                rerun_record(self.pipeline, int(parts[1]), confirm_with_user)
        elif name == '/level':
            if len(parts) < 2:
                console.print(f"Security level: [bold]{self.pipeline.config.security_level.value}[/bold]")
            else:
                try:
                    self.pipeline.config.security_level = SecurityLevel.parse(parts[1])
                    console.print(f"Security level set to [bold]{self.pipeline.config.security_level.value}[/bold]")
                except ValueError as e:
                    console.print(f"[red]{escape(str(e))}[/red]")
        else:
            console.print(f"[red]Unknown command: {escape(name)}[/red]")
        return True


def _parse_date(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO date: {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="psguard - safety gate for AI-generated PowerShell commands")
    parser.add_argument('--config', help='Path to config.json')
    parser.add_argument('--db', help='History database path (overrides config)')
    parser.add_argument('--level', choices=[level.value for level in SecurityLevel],
                        help='Security level for this run (overrides config)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')

    sub = parser.add_subparsers(dest='command')
    sub.add_parser('chat', help='Interactive assistant (default)')

    check = sub.add_parser('check', help='Evaluate a command without running it')
    check.add_argument('text', help='Command text')

    run = sub.add_parser('run', help='Evaluate, confirm and run a command')
    run.add_argument('text', help='Command text')
    run.add_argument('--request', default='', help='Original request to record in history')
    run.add_argument('--yes', '-y', action='store_true', help='Approve confirmation prompts')

    history = sub.add_parser('history', help='Show command history')
    history.add_argument('--search', help='Keyword in request or command')
    history.add_argument('--since', type=_parse_date, help='ISO start date')
    history.add_argument('--until', type=_parse_date, help='ISO end date')
    history.add_argument('--limit', type=int, default=20)

    rerun = sub.add_parser('history-rerun', help='Evaluate and run a command from history again')
    rerun.add_argument('id', type=int)
    rerun.add_argument('--yes', '-y', action='store_true', help='Approve confirmation prompts')

    delete = sub.add_parser('history-delete', help='Delete one history record')
    delete.add_argument('id', type=int)

    sub.add_parser('history-clear', help='Delete all history records')
    sub.add_parser('history-export', help='Print history as JSON')
    sub.add_parser('cleanup', help='Delete records older than the retention period')
    sub.add_parser('config', help='Show the effective configuration')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s - [%(name)s] - %(levelname)s - %(message)s'
    )

    try:
        config: AppConfig = load_config(args.config)
        if args.db:
            config.history_db_path = args.db
        if args.level:
            config.security_level = SecurityLevel.parse(args.level)
        pipeline = build_pipeline(config)
    except (ConfigError, ValueError) as e:
        console.print(f"[red]Configuration error: {escape(str(e))}[/red]")
        return 2

    pipeline.run_startup_maintenance()
    command = args.command or 'chat'

    if command == 'check':
        verdict, _ = pipeline.evaluate(Command(text=args.text))
        show_verdict(args.text, verdict)
        return 0 if verdict.allowed else 1

    if command == 'run':
        confirm = (lambda c, v: True) if args.yes else confirm_with_user
        outcome = pipeline.process(args.request or args.text, args.text, confirm=confirm)
        show_outcome(outcome)
        return 0 if outcome.status == ExecutionStatus.SUCCESS else 1

    if command == 'history':
        show_history(pipeline, args.search, args.since, args.until, args.limit)
        return 0

    if command == 'history-rerun':
        confirm = (lambda c, v: True) if args.yes else confirm_with_user
        outcome = rerun_record(pipeline, args.id, confirm)
        return 0 if outcome is not None and outcome.status == ExecutionStatus.SUCCESS else 1

    if command == 'history-delete':
        if pipeline.history.delete_one(args.id):
            console.print(f"Deleted record {args.id}")
            return 0
        console.print(f"[red]No record with id {args.id}[/red]")
        return 1

    if command == 'history-clear':
        if Confirm.ask("Delete ALL history records?", default=False):
            console.print(f"Deleted {pipeline.history.clear()} records")
        return 0

    if command == 'history-export':
        print(pipeline.history.export_json())
        return 0

    if command == 'cleanup':
        deleted = pipeline.history.cleanup(config.history_retention_days)
        console.print(f"Deleted {deleted} records older than {config.history_retention_days} days")
        return 0

    if command == 'config':
        table = Table(title="Configuration", show_header=False)
        table.add_column("Key", style="cyan")
        table.add_column("Value")
        for key, value in config.to_dict().items():
            table.add_row(key, str(value))
        console.print(table)
        return 0

    try:
        assistant = InteractiveAssistant(pipeline)
    except ValueError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        return 2
    assistant.chat()
    return 0


if __name__ == "__main__":
    sys.exit(main())
