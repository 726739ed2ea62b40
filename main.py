#!/usr/bin/env python3
"""BillSort - Invoice intake and lifecycle assistant."""

import argparse
import os
import sys
from typing import List, Optional

from billsort import BillSort, __version__
from mail import GmailSource, MailError
from storage import create_storage, StorageError
from workflows import (
    BillSortError,
    CancellationToken,
    IntakeEngine,
    LifecycleMachine,
    RunContext,
    logged_attachments,
    repair_buffer,
)


def load_docstore() -> bool:
    """Create the docstore driver from DOCSTORE into BillSort."""
    docstore_uri = os.environ.get('DOCSTORE')
    if not docstore_uri:
        print("Error: DOCSTORE environment variable not set")
        print("Example: DOCSTORE=gdrive:abc123 or DOCSTORE=local:docstore")
        return False
    BillSort.docstore_driver = create_storage(docstore_uri)
    return True


def selected_companies(company: Optional[str]) -> List[str]:
    if company:
        return [company]
    return list(BillSort.companies)


def open_mail_source() -> GmailSource:
    """Service account with domain-wide delegation if GMAIL_USER is set, else an OAuth token."""
    user = os.environ.get('GMAIL_USER')
    if user:
        key_file = os.environ.get('GMAIL_SERVICE_ACCOUNT', 'service_account_key.json')
        return GmailSource.from_service_account(key_file, user)
    token_file = os.environ.get('GMAIL_TOKEN_FILE', 'gmail_token.json')
    return GmailSource.from_token_file(token_file)


def run_intake(company: Optional[str], token: Optional[CancellationToken] = None) -> None:
    """Fetch unseen messages and run intake for each selected company."""
    BillSort.reset_tallies()
    ctx = RunContext.from_config()
    try:
        source = open_mail_source()
        BillSort.print_right(f"Using classifier: {BillSort.classifier_provider_name}")
        BillSort.print_right(f"Docstore: {ctx.driver.display_name}")
        BillSort.print_right(f"Mail: {source.display_name}")
        if BillSort.log:
            BillSort.print_right("Log mode: enabled (logging to --ActivityLog)")

        engine = IntakeEngine(ctx)
        for name in selected_companies(company):
            if token is not None and token.cancelled:
                break
            label = BillSort.label_for(name)
            messages = source.list_unseen_messages(
                label, exclude_attachments=logged_attachments(ctx.store, name))
            BillSort.print_right(f"{name}: {len(messages)} unseen message(s) under label {label}")
            result = engine.run(name, messages, token=token)
            BillSort.print_right(
                f"{name}: {len(result.with_action('stored'))} stored, "
                f"{len(result.with_action('duplicate'))} duplicate, "
                f"{len(result.with_action('triage'))} triage, "
                f"{len(result.with_action('failed'))} failed"
                + (" (cancelled)" if result.cancelled else "")
            )
    except (MailError, StorageError, BillSortError) as e:
        BillSort.print_right(f"[red]Intake stopped: {e}[/red]")
    finally:
        ctx.close()
    BillSort.print_right("\n[green]Intake complete![/green]")


def run_transition(args: argparse.Namespace) -> int:
    """Apply one operator transition and report the result."""
    if not args.company:
        print("Error: --company is required for status changes")
        return 2
    ctx = RunContext.from_config()
    machine = LifecycleMachine(ctx)
    try:
        if args.delete is not None:
            result = machine.delete(args.company, args.delete, args.reason)
        elif args.activate is not None:
            result = machine.activate(args.company, args.activate, args.reason)
        else:
            result = machine.accept_triage(args.company, args.accept, args.relevance, args.reason)
    except BillSortError as e:
        print(f"Error: {e}")
        return 1
    finally:
        ctx.close()
    return 0 if result.ok else 1


def run_repair(company: Optional[str]) -> None:
    ctx = RunContext.from_config()
    try:
        for name in selected_companies(company):
            repair_buffer(ctx, name)
    finally:
        ctx.close()


def main_tui(company: Optional[str]) -> None:
    """Run intake inside the TextUI app."""
    from textui import BillSortApp

    source_name = os.environ.get('GMAIL_USER') or os.environ.get('GMAIL_TOKEN_FILE', 'gmail_token.json')
    labels = ", ".join(f"{name}: {BillSort.label_for(name)}" for name in selected_companies(company))
    app = BillSortApp(
        source=f"{source_name} ({labels})",
        destination=BillSort.docstore_driver.display_name,
        process_func=lambda token: run_intake(company, token),
    )
    app.run()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=f"Invoice intake and lifecycle utility v{__version__}")
    parser.add_argument("--intake", action="store_true",
                        help="Fetch unseen labelled mail and process attachments")
    parser.add_argument("--label", type=str,
                        help="Mail label for every company (overrides COMPANIES and MAIL_LABEL)")
    parser.add_argument("--company", type=str,
                        help="Company to operate on (default: all configured companies)")
    parser.add_argument("--delete", type=int, metavar="ROW",
                        help="Move buffer row ROW from Active to Delete")
    parser.add_argument("--activate", type=int, metavar="ROW",
                        help="Move buffer row ROW from Delete to Active")
    parser.add_argument("--accept", type=int, metavar="ROW",
                        help="Accept triage row ROW (use with --relevance)")
    parser.add_argument("--relevance", choices=["Yes", "No"],
                        help="Relevance for --accept")
    parser.add_argument("--reason", type=str, default="",
                        help="Audit reason for a status change")
    parser.add_argument("--repair", action="store_true",
                        help="Re-resolve storage references of active documents")
    parser.add_argument("--log", action="store_true",
                        help="Append decisions to the --ActivityLog folder")
    parser.add_argument("--cli", action="store_true",
                        help="Use CLI output instead of TextUI (default is TextUI)")
    args = parser.parse_args()

    if not load_docstore():
        sys.exit(2)
    BillSort.configure(args, BillSort.docstore_driver)

    if args.delete is not None or args.activate is not None or args.accept is not None:
        if args.accept is not None and not args.relevance:
            print("Error: --accept requires --relevance Yes|No")
            sys.exit(2)
        sys.exit(run_transition(args))

    elif args.repair:
        run_repair(args.company)

    elif args.intake:
        if args.cli:
            run_intake(args.company)
        else:
            main_tui(args.company)

    else:
        parser.print_help()
