"""
CLI main entry point.
"""

import argparse
import logging
import sys
import threading
from dataclasses import dataclass
from pathlib import Path

from ..config import Config, create_default_config, load_config
from ..extractors import MistralOCRClient
from ..ingestion import MailboxPoller
from ..matching import MatchingEngine
from ..schemas.normalize import format_cents
from ..schemas.outcomes import DuplicateImage, DuplicateStatement, EmptyStatement, Imported
from ..services import IntakeError, ReceiptIntake, StatementImporter
from ..state_store import ReconciliationStore
from ..statements import StatementReadError

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _add_scope(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--scope",
        type=str,
        default=None,
        help="Ledger scope (default: default_scope from config)",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="receipt-recon",
        description="Reconcile bank statement transactions with receipts",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # init-config command
    subparsers.add_parser("init-config", help="Write a default config file")

    # import-statement command
    import_parser = subparsers.add_parser(
        "import-statement", help="Import a bank statement CSV into the ledger"
    )
    import_parser.add_argument("file", type=Path, help="Statement CSV file")
    _add_scope(import_parser)

    # add-receipt command
    receipt_parser = subparsers.add_parser("add-receipt", help="Add a receipt image")
    receipt_parser.add_argument("image", type=Path, help="Receipt image file")
    _add_scope(receipt_parser)

    # add-receipt-text command
    text_parser = subparsers.add_parser(
        "add-receipt-text", help="Add a receipt from a text or HTML file"
    )
    text_parser.add_argument("file", type=Path, help="Text or HTML receipt file")
    text_parser.add_argument(
        "--sender",
        type=str,
        default=None,
        help='Sender, e.g. "Chipotle <receipts@chipotle.com>" (used for the vendor)',
    )
    _add_scope(text_parser)

    # match command
    match_parser = subparsers.add_parser("match", help="Match all orphaned receipts")
    _add_scope(match_parser)

    # link command
    link_parser = subparsers.add_parser("link", help="Link a receipt to a transaction by hand")
    link_parser.add_argument("receipt_id", type=int, help="Receipt ID")
    link_parser.add_argument("transaction_id", type=int, help="Transaction ID")
    _add_scope(link_parser)

    # unlink command
    unlink_parser = subparsers.add_parser(
        "unlink", help="Detach a receipt from its transaction (keeps the receipt)"
    )
    unlink_parser.add_argument("receipt_id", type=int, help="Receipt ID")
    _add_scope(unlink_parser)

    # delete-receipt command
    delete_parser = subparsers.add_parser(
        "delete-receipt", help="Delete a receipt and its stored image"
    )
    delete_parser.add_argument("receipt_id", type=int, help="Receipt ID")
    delete_parser.add_argument(
        "--force",
        action="store_true",
        help="Delete even if the receipt is linked to a transaction",
    )
    _add_scope(delete_parser)

    # correct command
    correct_parser = subparsers.add_parser(
        "correct", help="Replace a receipt's extracted vendor, date and total"
    )
    correct_parser.add_argument("receipt_id", type=int, help="Receipt ID")
    correct_parser.add_argument("--vendor", type=str, default=None, help="Vendor name")
    correct_parser.add_argument("--date", type=str, default=None, help="Receipt date")
    correct_parser.add_argument("--total", type=str, default=None, help="Total, e.g. $44.04")
    _add_scope(correct_parser)

    # statements command
    statements_parser = subparsers.add_parser("statements", help="List imported statements")
    _add_scope(statements_parser)

    # delete-statement command
    delete_statement_parser = subparsers.add_parser(
        "delete-statement", help="Delete a statement and its transactions"
    )
    delete_statement_parser.add_argument("statement_id", type=int, help="Statement ID")
    _add_scope(delete_statement_parser)

    # exempt command
    exempt_parser = subparsers.add_parser(
        "exempt", help="Mark a transaction as not needing a receipt"
    )
    exempt_parser.add_argument("transaction_id", type=int, help="Transaction ID")
    exempt_parser.add_argument(
        "--undo",
        action="store_true",
        help="Require a receipt again",
    )
    _add_scope(exempt_parser)

    # verify command
    verify_parser = subparsers.add_parser("verify", help="Toggle a transaction's verified flag")
    verify_parser.add_argument("transaction_id", type=int, help="Transaction ID")
    _add_scope(verify_parser)

    # orphans command
    orphans_parser = subparsers.add_parser("orphans", help="List receipts without a transaction")
    _add_scope(orphans_parser)

    # transactions command
    txn_parser = subparsers.add_parser("transactions", help="List ledger transactions")
    txn_parser.add_argument("--search", type=str, default=None, help="Description substring")
    txn_parser.add_argument(
        "--from", dest="date_from", type=str, default=None, help="From date (YYYY-MM-DD)"
    )
    txn_parser.add_argument(
        "--to", dest="date_to", type=str, default=None, help="To date (YYYY-MM-DD)"
    )
    txn_parser.add_argument(
        "--missing-only",
        action="store_true",
        help="Only transactions still missing a receipt",
    )
    _add_scope(txn_parser)

    # status command
    status_parser = subparsers.add_parser("status", help="Show ledger statistics")
    _add_scope(status_parser)

    # poll-mail command
    poll_parser = subparsers.add_parser("poll-mail", help="Ingest receipts from the mailbox")
    poll_parser.add_argument(
        "--once",
        action="store_true",
        help="Poll once and exit instead of polling on an interval",
    )

    return parser


@dataclass
class Services:
    """Long-lived handles for one CLI invocation."""

    store: ReconciliationStore
    engine: MatchingEngine
    importer: StatementImporter
    intake: ReceiptIntake

    def close(self) -> None:
        self.store.close()


def build_services(config: Config) -> Services:
    """Open the ledger and wire the services together."""
    store = ReconciliationStore(config.storage.state_db_path)
    engine = MatchingEngine(store)

    ocr_client = None
    if config.ocr.enabled:
        ocr_client = MistralOCRClient(
            api_key=config.ocr.api_key or "",
            base_url=config.ocr.base_url,
            model=config.ocr.model,
            timeout=config.ocr.timeout_seconds,
        )

    return Services(
        store=store,
        engine=engine,
        importer=StatementImporter(store, engine, config.statement),
        intake=ReceiptIntake(store, engine, config.storage.uploads_dir, ocr_client=ocr_client),
    )


def cmd_init_config(config_path: Path) -> int:
    """Write a default config file (never overwrites)."""
    if config_path.exists():
        print(f"❌ {config_path} already exists")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote default config to {config_path}")
    return 0


def cmd_import_statement(services: Services, scope: str, file: Path) -> int:
    """Import a statement file."""
    print(f"🏦 Importing {file.name} into '{scope}'...")

    try:
        outcome = services.importer.import_statement(scope, file.read_bytes(), file.name)
    except OSError as e:
        print(f"❌ Cannot read {file}: {e}")
        return 1
    except StatementReadError as e:
        print(f"❌ {e}")
        return 1

    if isinstance(outcome, DuplicateStatement):
        print(f"⏭ Already imported (statement #{outcome.statement_id})")
    elif isinstance(outcome, EmptyStatement):
        print("⚠️  Statement has no data rows")
    elif isinstance(outcome, Imported):
        print(f"✓ Statement #{outcome.statement_id}")
        print(f"   → Rows imported:      {outcome.rows_imported}")
        print(f"   → Rows skipped:       {outcome.rows_skipped}")
        print(f"   → Receipts matched:   {outcome.receipts_matched}")
    return 0


def _print_ingest(outcome) -> None:
    if isinstance(outcome, DuplicateImage):
        print(f"⏭ Same image already stored as receipt #{outcome.existing_receipt_id}")
        return

    print(f"✓ Receipt #{outcome.receipt_id}")
    if outcome.matched:
        print(f"   → Linked to transaction #{outcome.transaction_id}")
    else:
        print("   → No matching transaction (orphan)")
    for collision in outcome.collisions:
        print(
            f"   ⚠️  Same date and amount as receipt #{collision.receipt_id} "
            f"({collision.vendor or '?'}, {collision.receipt_date}, "
            f"{format_cents(collision.total_cents)})"
        )


def cmd_add_receipt(services: Services, scope: str, image: Path) -> int:
    """Add a receipt image."""
    print(f"🧾 Adding receipt {image.name}...")
    try:
        image_bytes = image.read_bytes()
    except OSError as e:
        print(f"❌ Cannot read {image}: {e}")
        return 1

    _print_ingest(services.intake.ingest_image(scope, image_bytes, image.name))
    return 0


def cmd_add_receipt_text(services: Services, scope: str, file: Path, sender: str | None) -> int:
    """Add a text receipt."""
    print(f"🧾 Adding text receipt {file.name}...")
    try:
        text = file.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        print(f"❌ Cannot read {file}: {e}")
        return 1

    _print_ingest(services.intake.ingest_text(scope, text, sender=sender, source="upload"))
    return 0


def cmd_match(services: Services, scope: str) -> int:
    """Match all orphaned receipts."""
    print(f"🔗 Matching orphaned receipts in '{scope}'...")
    linked = services.engine.match_orphans(scope)
    for match in linked:
        print(f"  ✓ Receipt #{match.receipt_id} → transaction #{match.transaction_id}")
    remaining = len(services.store.get_orphan_receipts(scope))
    print(f"\n✓ Linked: {len(linked)}, still orphaned: {remaining}")
    return 0


def cmd_link(services: Services, scope: str, receipt_id: int, transaction_id: int) -> int:
    """Link a receipt to a transaction."""
    services.intake.assign(scope, receipt_id, transaction_id)
    print(f"✓ Receipt #{receipt_id} linked to transaction #{transaction_id}")
    return 0


def cmd_unlink(services: Services, scope: str, receipt_id: int) -> int:
    """Detach a receipt from its transaction."""
    if services.intake.unlink(scope, receipt_id):
        print(f"✓ Receipt #{receipt_id} unlinked (kept as orphan)")
    else:
        print(f"⏭ Receipt #{receipt_id} is not linked")
    return 0


def cmd_delete_receipt(services: Services, scope: str, receipt_id: int, force: bool) -> int:
    """Delete a receipt."""
    services.intake.delete(scope, receipt_id, force=force)
    print(f"✓ Receipt #{receipt_id} deleted")
    return 0


def cmd_correct(
    services: Services,
    scope: str,
    receipt_id: int,
    vendor: str | None,
    date: str | None,
    total: str | None,
) -> int:
    """Replace a receipt's extracted fields."""
    _print_ingest(services.intake.correct(scope, receipt_id, vendor, date, total))
    return 0


def cmd_statements(services: Services, scope: str) -> int:
    """List imported statements."""
    statements = services.store.get_statements(scope)
    if not statements:
        print("No statements imported")
        return 0

    print(f"\n📄 Statements in '{scope}'")
    print("=" * 60)
    for statement in statements:
        print(f"  [{statement.id}] {statement.imported_at}  {statement.filename}")
    print(f"\n{len(statements)} statement(s)")
    return 0


def cmd_delete_statement(services: Services, scope: str, statement_id: int) -> int:
    """Delete a statement; receipts linked to its transactions become orphans."""
    statement = services.store.get_statement(scope, statement_id)
    if statement is None or not services.store.delete_statement(scope, statement_id):
        print(f"❌ Statement #{statement_id} not found in '{scope}'")
        return 1
    print(f"✓ Statement #{statement_id} ({statement.filename}) deleted")
    return 0


def cmd_exempt(services: Services, scope: str, transaction_id: int, undo: bool) -> int:
    """Mark a transaction as exempt (or required again)."""
    services.intake.set_receipt_required(scope, transaction_id, undo)
    if undo:
        print(f"✓ Transaction #{transaction_id} requires a receipt")
    else:
        print(f"✓ Transaction #{transaction_id} marked as not needing a receipt")
    return 0


def cmd_verify(services: Services, scope: str, transaction_id: int) -> int:
    """Toggle the verified flag."""
    verified = services.intake.toggle_verified(scope, transaction_id)
    print(f"✓ Transaction #{transaction_id} {'verified' if verified else 'unverified'}")
    return 0


def cmd_orphans(services: Services, scope: str) -> int:
    """List orphaned receipts."""
    orphans = services.store.get_orphan_receipts(scope)
    if not orphans:
        print("✓ No orphaned receipts")
        return 0

    print(f"\n🧾 Orphaned receipts in '{scope}'")
    print("=" * 60)
    for receipt in orphans:
        print(
            f"  [{receipt.id}] {receipt.receipt_date or '????-??-??'}  "
            f"{format_cents(receipt.total_cents):>10}  {receipt.vendor or '?'}  "
            f"({receipt.source.value})"
        )
    print(f"\n{len(orphans)} receipt(s)")
    return 0


def cmd_transactions(
    services: Services,
    scope: str,
    search: str | None,
    date_from: str | None,
    date_to: str | None,
    missing_only: bool,
) -> int:
    """List transactions."""
    transactions = services.store.get_transactions(
        scope,
        search=search,
        date_from=date_from,
        date_to=date_to,
        missing_only=missing_only,
    )
    if not transactions:
        print("No transactions")
        return 0

    for txn in transactions:
        if txn.receipts:
            marker = f"🧾{len(txn.receipts)}"
        elif not txn.receipt_required:
            marker = "-"
        else:
            marker = "❌"
        verified = " ✓" if txn.verified else ""
        print(
            f"  [{txn.id}] {txn.posted_date}  {format_cents(txn.amount_cents):>10}  "
            f"{marker:<4} {txn.description}{verified}"
        )
    print(f"\n{len(transactions)} transaction(s)")
    return 0


def cmd_status(services: Services, scope: str) -> int:
    """Show ledger statistics."""
    stats = services.store.get_stats(scope)
    orphans = len(services.store.get_orphan_receipts(scope))

    print(f"\n📊 Ledger Status ({scope})")
    print("=" * 40)
    print(f"  Transactions:           {stats.total}")
    print(f"  With receipts:          {stats.with_documentation}")
    print(f"  Missing receipts:       {stats.missing}")
    print(f"  Exempt:                 {stats.exempt}")
    print(f"  Verified:               {stats.verified}")
    print(f"  Orphaned receipts:      {orphans}")
    print()
    return 0


def cmd_poll_mail(config: Config, services: Services, once: bool) -> int:
    """Ingest receipts from the configured mailbox."""
    if not config.mailbox.enabled:
        print("❌ Mailbox credentials not configured (IMAP_USER / IMAP_PASSWORD)")
        return 1

    poller = MailboxPoller(services.intake, config.mailbox, scope=config.mailbox_scope)

    if once:
        print(f"📬 Polling {config.mailbox.username}...")
        result = poller.poll_once()
        print(
            f"✓ Messages: {result.messages}, receipts: {result.receipts_stored}, "
            f"duplicates: {result.duplicates}, skipped: {result.skipped_senders}"
        )
        if result.errors:
            print("⚠️  Errors encountered:")
            for error in result.errors:
                print(f"   - {error}")
            return 1
        return 0

    print(
        f"📬 Polling {config.mailbox.username} every {config.mailbox.poll_interval_seconds}s "
        "(Ctrl+C to stop)"
    )
    stop_event = threading.Event()
    try:
        poller.run_forever(stop_event)
    except KeyboardInterrupt:
        stop_event.set()
        print("\n✓ Mailbox polling stopped")
    return 0


def run_command(config: Config, parsed: argparse.Namespace) -> int:
    """Route a parsed command to its handler."""
    scope = getattr(parsed, "scope", None) or config.default_scope
    services = build_services(config)

    try:
        if parsed.command == "import-statement":
            return cmd_import_statement(services, scope, parsed.file)
        elif parsed.command == "add-receipt":
            return cmd_add_receipt(services, scope, parsed.image)
        elif parsed.command == "add-receipt-text":
            return cmd_add_receipt_text(services, scope, parsed.file, parsed.sender)
        elif parsed.command == "match":
            return cmd_match(services, scope)
        elif parsed.command == "link":
            return cmd_link(services, scope, parsed.receipt_id, parsed.transaction_id)
        elif parsed.command == "unlink":
            return cmd_unlink(services, scope, parsed.receipt_id)
        elif parsed.command == "delete-receipt":
            return cmd_delete_receipt(services, scope, parsed.receipt_id, parsed.force)
        elif parsed.command == "correct":
            return cmd_correct(
                services,
                scope,
                parsed.receipt_id,
                vendor=parsed.vendor,
                date=parsed.date,
                total=parsed.total,
            )
        elif parsed.command == "statements":
            return cmd_statements(services, scope)
        elif parsed.command == "delete-statement":
            return cmd_delete_statement(services, scope, parsed.statement_id)
        elif parsed.command == "exempt":
            return cmd_exempt(services, scope, parsed.transaction_id, parsed.undo)
        elif parsed.command == "verify":
            return cmd_verify(services, scope, parsed.transaction_id)
        elif parsed.command == "orphans":
            return cmd_orphans(services, scope)
        elif parsed.command == "transactions":
            return cmd_transactions(
                services,
                scope,
                search=parsed.search,
                date_from=parsed.date_from,
                date_to=parsed.date_to,
                missing_only=parsed.missing_only,
            )
        elif parsed.command == "status":
            return cmd_status(services, scope)
        elif parsed.command == "poll-mail":
            return cmd_poll_mail(config, services, parsed.once)
        else:
            print(f"❌ Unknown command: {parsed.command}")
            return 1
    except IntakeError as e:
        print(f"❌ {e}")
        return 1
    finally:
        services.close()


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    errors = config.validate()
    if errors:
        print("❌ Invalid configuration:")
        for error in errors:
            print(f"   - {error}")
        return 1

    try:
        return run_command(config, parsed)
    except Exception as e:
        logger.exception("Command '%s' failed", parsed.command)
        print(f"❌ {parsed.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
