"""Payroll batch command line interface.

Provides operational tools for:
- Audit replay
- Audit export
- Batch status
- Running the API server

Usage:
    python -m payroll_batch.cli audit --batch-id X --level warn
    python -m payroll_batch.cli export --batch-id X --output audit.jsonl
    python -m payroll_batch.cli status --batch-id X
    python -m payroll_batch.cli serve --port 8000
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import IO, Callable

from payroll_batch.clock import Clock, utc_now
from payroll_batch.config import get_settings
from payroll_batch.database import create_session_factory, init_db, make_engine
from payroll_batch.errors import BatchNotFoundError
from payroll_batch.repository import BatchRepository, SqlBatchRepository
from payroll_batch.services.audit import export_jsonl, replay
from payroll_batch.services.queries import batch_summary
from payroll_batch.types import EventActor, EventLevel


class PayrollBatchCli:
    """Payroll batch command line interface."""

    def __init__(
        self,
        repository: BatchRepository | None = None,
        stdout: IO[str] | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._repository = repository
        self.stdout = stdout or sys.stdout
        self.clock = clock
        self.parser = self._build_parser()

    @property
    def repository(self) -> BatchRepository:
        if self._repository is None:
            engine = make_engine(get_settings().database_url)
            init_db(engine)
            self._repository = SqlBatchRepository(create_session_factory(engine))
        return self._repository

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m payroll_batch.cli",
            description="Payroll batch operational tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # audit command
        audit = subparsers.add_parser("audit", help="Print a batch's audit trail, newest first")
        audit.add_argument("--batch-id", required=True, help="Batch to replay")
        audit.add_argument(
            "--actor",
            choices=[a.value for a in EventActor],
            help="Only show entries from this actor",
        )
        audit.add_argument(
            "--level",
            choices=[lv.value for lv in EventLevel],
            help="Only show entries at this level",
        )
        audit.add_argument(
            "--limit",
            type=int,
            default=100,
            help="Maximum entries to print (default: 100)",
        )

        # export command
        export = subparsers.add_parser("export", help="Export a batch's audit trail as JSON lines")
        export.add_argument("--batch-id", required=True, help="Batch to export")
        export.add_argument(
            "--output",
            default="-",
            help="Output file path, or - for stdout (default: -)",
        )
        export.add_argument("--actor", choices=[a.value for a in EventActor])
        export.add_argument("--level", choices=[lv.value for lv in EventLevel])

        # status command
        status = subparsers.add_parser("status", help="Show batch status and progress")
        status.add_argument("--batch-id", required=True, help="Batch to inspect")
        status.add_argument("--json", action="store_true", help="Print the summary as JSON")

        # serve command
        serve = subparsers.add_parser("serve", help="Run the HTTP API")
        serve.add_argument("--host", help="Bind host (default: HOST setting)")
        serve.add_argument("--port", type=int, help="Bind port (default: PORT setting)")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        # Dispatch to command handler
        handlers: dict[str, Callable[..., int]] = {
            "audit": self._cmd_audit,
            "export": self._cmd_export,
            "status": self._cmd_status,
            "serve": self._cmd_serve,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        try:
            return handler(parsed)
        except BatchNotFoundError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 2

    def _print(self, text: str = "") -> None:
        print(text, file=self.stdout)

    def _cmd_audit(self, args: argparse.Namespace) -> int:
        """Print the audit trail."""
        batch = self.repository.get(args.batch_id)
        self._print(f"Audit trail for batch {batch.id} ({batch.pay_period}, {batch.status.value})")
        self._print("=" * 60)

        shown = 0
        for entry in replay(batch, actor=args.actor, level=args.level):
            if shown >= args.limit:
                self._print(f"... truncated at {args.limit} entries")
                break
            who = entry.actor_id or entry.actor.value
            self._print(
                f"{entry.at.isoformat()}  {entry.level.value:<5}  {who:<24}  {entry.message}"
            )
            shown += 1

        if shown == 0:
            self._print("(no entries)")
        return 0

    def _cmd_export(self, args: argparse.Namespace) -> int:
        """Export the audit trail as JSON lines."""
        batch = self.repository.get(args.batch_id)
        if args.output == "-":
            count = export_jsonl(batch, self.stdout, actor=args.actor, level=args.level)
        else:
            with open(args.output, "w", encoding="utf-8") as f:
                count = export_jsonl(batch, f, actor=args.actor, level=args.level)
            self._print(f"Exported {count} entries to {args.output}")
        return 0

    def _cmd_status(self, args: argparse.Namespace) -> int:
        """Show status, FX lock and settlement progress."""
        batch = self.repository.get(args.batch_id)
        summary = batch_summary(batch, self.clock())
        if args.json:
            self._print(json.dumps(summary, indent=2, default=str))
            return 0

        fx = summary["fx"]
        progress = summary["progress"]
        recon = summary["reconciliation"]
        self._print(f"Batch {batch.id} ({batch.pay_period})")
        self._print("=" * 40)
        self._print(f"  Status:          {summary['status']}")
        self._print(f"  Approval:        {summary['approval_state'] or '-'}")
        self._print(f"  Next events:     {', '.join(summary['available_events']) or '-'}")
        if fx["snapshot_id"]:
            if not fx["locked"]:
                lock = "unlocked"
            elif fx["expired"]:
                lock = "EXPIRED"
            else:
                lock = f"locked, {fx['seconds_remaining']}s remaining"
            self._print(f"  FX snapshot:     {fx['snapshot_id']} via {fx['provider']} ({lock})")
        else:
            self._print("  FX snapshot:     none")
        self._print(f"  Payees:          {progress['total']}")
        self._print(
            f"  Paid/failed:     {progress['paid']}/{progress['failed']} "
            f"({progress['percent_complete']}% complete)"
        )
        self._print(
            f"  Reconciliation:  {recon['reconciled']} reconciled, {recon['mismatched']} "
            f"mismatched, {recon['pending']} pending, {recon['orphaned']} orphaned"
        )
        return 0

    def _cmd_serve(self, args: argparse.Namespace) -> int:
        """Run the API under uvicorn."""
        import uvicorn

        settings = get_settings()
        logging.basicConfig(level=settings.log_level)
        uvicorn.run(
            "payroll_batch.api.app:create_app",
            factory=True,
            host=args.host or settings.HOST,
            port=args.port or settings.PORT,
            reload=settings.DEBUG,
        )
        return 0


def main() -> int:
    """CLI entry point."""
    cli = PayrollBatchCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
