"""Overdue Reminders -- Main Pipeline Orchestrator.

Runs the reminder workflow end to end:

    1. Load configuration (config.yaml or defaults)
    2. Load the invoice export (CSV/TSV/XLSX) and map its columns
    3. Aggregate per-customer balances and the dashboard figures
    4. Select customers (given names, or every emailable customer)
    5. Render one reminder per selected customer
    6. Export .eml files for review
    7. Send through Microsoft Graph or Gmail with bounded concurrency
    8. Print summary and write an optional JSON report

Usage::

    # Render and export .eml files for every emailable customer:
    python -m overdue_reminders.main exports/open_invoices.csv --export-eml out/

    # Map a column by hand and use the Firm template:
    python -m overdue_reminders.main data.xlsx --map "email=AR Contact" --template Firm

    # Send two customers' reminders through Outlook:
    python -m overdue_reminders.main data.csv --customer "Acme" --customer "Bobs" \\
        --send microsoft --token "$TOKEN"

    # Dry run (no export, no sending):
    python -m overdue_reminders.main data.csv --dry-run
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Optional, Sequence

from .column_mapper import parse_override
from .config import RemindersConfig, get_config
from .data_loader import LoadResult
from .dispatcher import summarize
from .eml_export import export_eml
from .models import DashboardSnapshot, DispatchResult, Provider, RenderedMessage
from .session import ReminderSession
from .template_engine import CUSTOM_TEMPLATE, format_currency
from .transports import Transport, get_transport

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_SEND_FAILURES = 2


# ---------------------------------------------------------------------------
# Pipeline Result
# ---------------------------------------------------------------------------

@dataclass
class PipelineResult:
    """Container for the full pipeline run output."""

    load_result: LoadResult | None = None
    dashboard: DashboardSnapshot = field(default_factory=DashboardSnapshot)
    error: str | None = None

    # Statistics
    rows_loaded: int = 0
    rows_dropped: int = 0
    emailable: list[str] = field(default_factory=list)
    selected: list[str] = field(default_factory=list)
    messages: list[RenderedMessage] = field(default_factory=list)
    missing_email: int = 0

    # Outputs
    eml_paths: list[Path] = field(default_factory=list)
    dispatch_results: list[DispatchResult] = field(default_factory=list)
    report_path: Path | None = None

    # Timing
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def sends_failed(self) -> int:
        return sum(1 for r in self.dispatch_results if not r.ok)

    @property
    def ok(self) -> bool:
        return self.error is None and self.sends_failed == 0

    @property
    def duration_seconds(self) -> float:
        """Pipeline execution time in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0.0

    @property
    def exit_code(self) -> int:
        if self.error is not None:
            return EXIT_ERROR
        if self.sends_failed:
            return EXIT_SEND_FAILURES
        return EXIT_OK

    def to_report(self) -> dict:
        """JSON-serializable run report."""
        return {
            "generatedAt": (self.completed_at or datetime.now()).isoformat(timespec="seconds"),
            "source": self.load_result.source_file if self.load_result else None,
            "rowsLoaded": self.rows_loaded,
            "rowsDropped": self.rows_dropped,
            "dashboard": self.dashboard.to_dict(),
            "emailable": self.emailable,
            "selected": self.selected,
            "missingEmail": self.missing_email,
            "emlCreated": len(self.eml_paths),
            "dispatch": summarize(self.dispatch_results) if self.dispatch_results else None,
            "results": [r.to_dict() for r in self.dispatch_results],
            "error": self.error,
        }

    def print_summary(self) -> None:
        """Print a human-readable summary of the pipeline run."""
        print()
        print("=" * 65)
        print("  Overdue Reminders -- Pipeline Summary")
        print("=" * 65)
        if self.error:
            print(f"  ERROR               : {self.error}")
            print("=" * 65)
            return
        d = self.dashboard
        print(f"  Invoice rows        : {self.rows_loaded} ({self.rows_dropped} dropped)")
        print(f"  Customers           : {d.customer_count}")
        print(f"  With email          : {d.with_email_count}")
        print(f"  Total overdue       : {format_currency(d.total_overdue_all)}")
        print("-" * 65)
        print("  Aging:")
        for bucket in d.aging_buckets:
            print(f"    {bucket.label:<8s}: {format_currency(bucket.amount):>14s}")
        if d.top_customers:
            print("-" * 65)
            print("  Top customers:")
            for ranked in d.top_customers:
                print(f"    {ranked.name:<40.40s}: {format_currency(ranked.amount):>14s}")
        print("-" * 65)
        print(f"  Emailable           : {len(self.emailable)}")
        print(f"  Selected            : {len(self.selected)}")
        print(f"  Messages rendered   : {len(self.messages)}")
        print(f"  Missing email       : {self.missing_email} (skipped)")
        print(f"  .eml files written  : {len(self.eml_paths)}")
        if self.dispatch_results:
            counts = summarize(self.dispatch_results)
            print(f"  Sent                : {counts['sent']}/{counts['total']}")
            for r in self.dispatch_results:
                if not r.ok:
                    print(f"    #{r.index}: {r.error}")
        print("=" * 65)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _attach_file_log(config: RemindersConfig) -> None:
    """Mirror log output to ``output.log_file`` when configured."""
    if not config.output.log_file:
        return
    path = config.output.resolve(config.output.log_file)
    root = logging.getLogger()
    if any(isinstance(h, logging.FileHandler) and Path(h.baseFilename) == path
           for h in root.handlers):
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
    ))
    root.addHandler(handler)


def _write_report(result: PipelineResult, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(result.to_report(), f, indent=2)
    return path


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def run_pipeline(
    input_path: str | Path,
    *,
    config_path: str | Path | None = None,
    config: RemindersConfig | None = None,
    overrides: dict[str, str] | None = None,
    template: str | None = None,
    custom_template_path: str | Path | None = None,
    customers: Sequence[str] | None = None,
    now: date | datetime | None = None,
    export_dir: str | Path | None = None,
    provider: str | None = None,
    access_token: str | None = None,
    transport: Transport | None = None,
    concurrency: int | None = None,
    report_path: str | Path | None = None,
    dry_run: bool = False,
) -> PipelineResult:
    """Execute the reminder pipeline.

    Args:
        input_path: Invoice export to load.
        config_path: Path to config.yaml.  Uses default if None.
        config: Ready-made configuration (takes precedence over config_path).
        overrides: Manual ``{field: header}`` column choices.
        template: Template name; defaults to ``templates.default_template``.
        custom_template_path: File holding a custom template (implies Custom).
        customers: Customers to remind.  None means every emailable customer.
        now: Evaluation instant for day counts.  Defaults to the current time.
        export_dir: Write one .eml per message here.
        provider: ``microsoft`` or ``google`` to send; None renders only.
        access_token: Bearer token for *provider*.
        transport: Prebuilt transport (used instead of provider/token).
        concurrency: Max sends in flight; defaults to config.
        report_path: Write a JSON report here.
        dry_run: Render only: no export, no sending, no report.

    Returns:
        PipelineResult with statistics, rendered messages and send results.

    Raises:
        FileNotFoundError: If an explicit config or template file is missing.
        ValueError: For an unknown template, provider, or a missing token.
    """
    result = PipelineResult(started_at=datetime.now())

    # ------------------------------------------------------------------
    # STEP 1: Load configuration
    # ------------------------------------------------------------------
    logger.info("=" * 65)
    logger.info("  Overdue Reminders Pipeline")
    logger.info("=" * 65)

    config = config or get_config(config_path)
    logger.info("Configuration loaded from %s", config_path or "defaults + config.yaml")
    if not dry_run:
        _attach_file_log(config)

    session = ReminderSession(config, now=now)

    custom_text = None
    if custom_template_path is not None:
        custom_text = Path(custom_template_path).read_text(encoding="utf-8")
        template = CUSTOM_TEMPLATE
    session.use_template(template or config.templates.default_template, custom_text)

    # ------------------------------------------------------------------
    # STEP 2: Load the export
    # ------------------------------------------------------------------
    load_result = session.load(input_path, overrides=overrides)
    result.load_result = load_result
    load_result.print_summary()
    if load_result.error:
        result.error = load_result.error
        result.completed_at = datetime.now()
        return result

    result.rows_loaded = len(load_result.rows)
    result.rows_dropped = load_result.rows_dropped

    # ------------------------------------------------------------------
    # STEP 3: Aggregate
    # ------------------------------------------------------------------
    result.dashboard = session.result.dashboard
    result.emailable = session.emailable()

    # ------------------------------------------------------------------
    # STEP 4: Select customers
    # ------------------------------------------------------------------
    if customers:
        session.select(customers)
    else:
        session.select_all()
    result.selected = session.selected
    logger.info("Selected %d of %d emailable customers",
                len(result.selected), len(result.emailable))

    # ------------------------------------------------------------------
    # STEP 5: Render
    # ------------------------------------------------------------------
    result.messages = session.render_selected()
    result.missing_email = sum(1 for m in result.messages if not m.has_recipient)

    # ------------------------------------------------------------------
    # STEP 6: Export .eml files
    # ------------------------------------------------------------------
    if dry_run:
        print("\n[DRY RUN] Skipping export and sending.")
    elif export_dir is not None:
        result.eml_paths = export_eml(result.messages, export_dir)

    # ------------------------------------------------------------------
    # STEP 7: Send
    # ------------------------------------------------------------------
    if not dry_run and (provider or transport):
        if transport is None:
            token = access_token or config.dispatch.access_token
            if not token:
                raise ValueError(
                    "No access token: pass --token or set REMINDERS_ACCESS_TOKEN"
                )
            transport = get_transport(provider, token, config.dispatch)
        result.dispatch_results = session.dispatch(transport, concurrency)

    # ------------------------------------------------------------------
    # STEP 8: Summary & report
    # ------------------------------------------------------------------
    result.completed_at = datetime.now()
    result.print_summary()

    if report_path is not None and not dry_run:
        result.report_path = _write_report(result, Path(report_path))
        logger.info("Report written: %s", result.report_path)

    logger.info("Pipeline complete in %.1f seconds", result.duration_seconds)
    return result


# ---------------------------------------------------------------------------
# CLI Entry Point
# ---------------------------------------------------------------------------

def _parse_now(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="overdue-reminders",
        description="Overdue Reminders - turn an open-invoice export into reminder emails",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  overdue-reminders invoices.csv --export-eml out/\n"
            "  overdue-reminders invoices.xlsx --map 'email=AR Contact' --template Firm\n"
            "  overdue-reminders invoices.csv --send google --token $TOKEN\n"
            "  overdue-reminders invoices.csv --dry-run --verbose\n"
        ),
    )
    parser.add_argument("input", help="Invoice export (.csv, .tsv, .txt, .xlsx)")
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to config.yaml (default: project root config.yaml)",
    )
    parser.add_argument(
        "--map",
        action="append",
        default=[],
        metavar="FIELD=HEADER",
        help="Map a field (customer, email, invoice, amount, due_date) to a column; repeatable",
    )
    parser.add_argument("--template", default=None, help="Friendly, Firm, Final Notice or Custom")
    parser.add_argument("--custom-template", default=None, metavar="PATH",
                        help="File with a custom template (implies --template Custom)")
    parser.add_argument("--customer", action="append", default=[], metavar="NAME",
                        help="Only remind this customer; repeatable (default: all emailable)")
    parser.add_argument("--now", type=_parse_now, default=None, metavar="YYYY-MM-DD",
                        help="Evaluation date for aging (default: today)")
    parser.add_argument("--export-eml", default=None, metavar="DIR",
                        help="Write one .eml file per message to DIR")
    parser.add_argument("--send", choices=[p.value for p in Provider], default=None,
                        help="Send through this provider")
    parser.add_argument("--token", default=None,
                        help="Access token for --send (default: $REMINDERS_ACCESS_TOKEN)")
    parser.add_argument("--concurrency", type=int, default=None,
                        help="Max sends in flight (default: from config, 5)")
    parser.add_argument("--report", default=None, metavar="PATH",
                        help="Write a JSON run report")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Render only; no export, no sending",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point for the overdue reminder pipeline.

    Returns:
        Exit code (0 = success, 1 = error, 2 = some sends failed).
    """
    args = build_parser().parse_args(argv)

    # Configure logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        overrides = dict(parse_override(spec) for spec in args.map)
        result = run_pipeline(
            args.input,
            config_path=args.config,
            overrides=overrides or None,
            template=args.template,
            custom_template_path=args.custom_template,
            customers=args.customer or None,
            now=args.now,
            export_dir=args.export_eml,
            provider=args.send,
            access_token=args.token,
            concurrency=args.concurrency,
            report_path=args.report,
            dry_run=args.dry_run,
        )

        if result.error:
            print(f"\nERROR: {result.error}")
        elif result.sends_failed:
            print(f"\n{result.sends_failed} message(s) failed to send. See summary above.")
        else:
            print(f"\nPipeline completed successfully: "
                  f"{len(result.messages)} reminders in {result.duration_seconds:.1f}s")
        return result.exit_code

    except FileNotFoundError as exc:
        logger.error("File not found: %s", exc)
        print(f"\nERROR: {exc}")
        return EXIT_ERROR
    except ValueError as exc:
        logger.error("Data error: %s", exc)
        print(f"\nERROR: {exc}")
        return EXIT_ERROR
    except Exception as exc:
        logger.exception("Unexpected error in pipeline")
        print(f"\nUNEXPECTED ERROR: {exc}")
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
