#!/usr/bin/env python3
"""
able_account_cli.py - terminal front-end for the Able Account tracker
"""

from __future__ import annotations
import argparse
import getpass
import os
import shlex
import sys
from enum import Enum
from typing import List, Optional

from rich.console import Console
from rich.table import Table

# Project modules
from able_account.account_db import DatabaseError
from able_account.backup_codec import (
    BackupValidationError,
    default_backup_filename,
    export_document,
    import_document,
    read_backup_file,
    write_backup_file,
)
from able_account.models import UNSET, Account, AccountUpdate, Category, ValidationError
from able_account.reminders import reminder_message
from able_account.repository import SORT_ORDERS, STATUS_FILTERS, filter_accounts, sort_accounts
from able_account.status import RotationStatus, days_until_due, status
from able_account.store_state import StoreError, StoreState, WrongPassphrase
from able_account.tracker import AccountTracker, TrackerError

# ============ Configuration Constants ============
PROG = "able-account"
MAX_LOGIN_ATTEMPTS = 3
MAX_INPUT_LENGTH = 1000

# ============ ANSI Color Control ============
class ColorMode(Enum):
    AUTO = "auto"
    ALWAYS = "always"
    NEVER = "never"

class Colors:
    """Centralized color management with accessibility support"""

    def __init__(self, mode: ColorMode = ColorMode.AUTO):
        self._enabled = self._should_enable_colors(mode)

    def _should_enable_colors(self, mode: ColorMode) -> bool:
        if mode == ColorMode.NEVER:
            return False
        if mode == ColorMode.ALWAYS:
            return True
        return sys.stdout.isatty() and os.getenv("TERM") != "dumb"

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _wrap(self, text: str, code: str) -> str:
        if not self._enabled:
            return text
        return f"\033[{code}m{text}\033[0m"

    def error(self, text: str) -> str:
        return self._wrap(text, "91")  # Bright red

    def success(self, text: str) -> str:
        return self._wrap(text, "92")  # Bright green

    def warning(self, text: str) -> str:
        return self._wrap(text, "93")  # Bright yellow

    def info(self, text: str) -> str:
        return self._wrap(text, "94")  # Bright blue

# Global color instance (configured by main)
colors = Colors()

STATUS_STYLES = {
    RotationStatus.OVERDUE: "bold red",
    RotationStatus.DUE_SOON: "yellow",
    RotationStatus.GOOD: "green",
}

# ============ UI Helpers ============

def print_error(msg: str, prefix: str = "ERROR"):
    print(f"[{colors.error(prefix)}] {msg}", file=sys.stderr)

def print_success(msg: str, prefix: str = "OK"):
    print(f"[{colors.success(prefix)}] {msg}")

def print_warning(msg: str, prefix: str = "WARNING"):
    print(f"[{colors.warning(prefix)}] {msg}")

def print_info(msg: str):
    print(colors.info(msg))

def sanitize_input(text: str, max_length: int = MAX_INPUT_LENGTH) -> str:
    """Sanitize user input: strip, limit length, remove control chars"""
    text = text.strip()[:max_length]
    return ''.join(c for c in text if c.isprintable() or c in '\n\t')

def confirm_action(prompt: str, dangerous: bool = False) -> bool:
    if dangerous:
        response = input(f"{prompt} Type 'yes' to confirm: ").strip().lower()
        return response == "yes"
    response = input(f"{prompt} [y/N]: ").strip().lower()
    return response in ('y', 'yes')

def render_accounts(accounts: List[Account], console: Console, title: str = "Accounts") -> Table:
    table = Table(title=title)
    table.add_column("ID", justify="right")
    table.add_column("Service")
    table.add_column("Username")
    table.add_column("Category")
    table.add_column("Status")
    table.add_column("Due in", justify="right")

    for account in accounts:
        current = status(account)
        days = days_until_due(account)
        table.add_row(
            str(account.id),
            account.service_name,
            account.username or "-",
            account.category.value,
            f"[{STATUS_STYLES[current]}]{current.value}[/]",
            "never changed" if days is None else f"{days}d",
        )
    console.print(table)
    return table


# ============ Main CLI Class ============

class AbleAccountCLI:
    def __init__(self, color_mode: ColorMode = ColorMode.AUTO, tracker: Optional[AccountTracker] = None):
        global colors
        colors = Colors(color_mode or ColorMode.AUTO)
        self.console = Console(no_color=not colors.enabled, highlight=False)

        try:
            self.tracker = tracker if tracker is not None else AccountTracker()
        except Exception as e:
            print_error(f"Failed to open account store: {e}")
            sys.exit(1)

    # ======== Authentication ========

    def ensure_unlocked(self) -> bool:
        if self.tracker.is_unlocked:
            return True

        state = self.tracker.state()
        if state is StoreState.ENCRYPTED:
            print_info("Enter your passphrase to access your accounts.")
        elif state is StoreState.LEGACY_UNENCRYPTED:
            print_info("Your existing accounts will be encrypted. Set a passphrase to protect them.")
        else:
            print_info("Create a passphrase to encrypt your data.")

        for _ in range(MAX_LOGIN_ATTEMPTS):
            try:
                passphrase = getpass.getpass("Passphrase: ")
                confirm = None
                if state is not StoreState.ENCRYPTED:
                    confirm = getpass.getpass("Confirm passphrase: ")
            except (KeyboardInterrupt, EOFError):
                print()
                return False

            allowed, delay = self.tracker.throttle.check_and_delay()
            if not allowed:
                print_warning(f"Wait {delay}s...")

            try:
                self.tracker.unlock(passphrase, confirm)
            except WrongPassphrase:
                failures = self.tracker.throttle.failed_attempts
                if failures >= self.tracker.throttle.threshold:
                    print_error(f"Wrong passphrase. Please try again. ({failures} failed attempts)")
                else:
                    print_error("Wrong passphrase. Please try again.")
                continue
            except TrackerError as e:
                print_error(str(e))
                continue
            except StoreError as e:
                print_error(f"Failed to open database: {e}")
                return False

            print_success("Unlocked")
            self._show_overdue_alert()
            return True

        print_error("Too many failed attempts.")
        return False

    def _show_overdue_alert(self):
        overdue = self.tracker.repository.by_status(RotationStatus.OVERDUE)
        if overdue:
            names = ", ".join(a.service_name for a in overdue[:5])
            print_warning(f"{reminder_message(len(overdue))} {names}")

    # ======== Command Handlers ========

    def cmd_status(self, args):
        state = self.tracker.state()
        print_info(f"Store state: {state.value}")
        if self.tracker.is_unlocked:
            repo = self.tracker.repository
            print_info(f"{len(repo.list())} accounts, {repo.overdue_count()} overdue")

    def cmd_add(self, args):
        if not self.ensure_unlocked():
            return

        service = args.service or sanitize_input(input("Service name: "))
        try:
            new_id = self.tracker.repository.add(
                service_name=service,
                url=args.url,
                username=args.username,
                category=args.category,
                refresh_interval_days=args.interval,
                last_password_change=UNSET if args.last_change is None else args.last_change,
                notes=args.notes,
            )
            self.tracker.refresh_summary()
            print_success(f"Added '{service}' (id {new_id})")
        except ValidationError as e:
            print_error(str(e))
        except StoreError as e:
            print_error(f"Failed to save account: {e}")

    def cmd_list(self, args):
        if not self.ensure_unlocked():
            return

        repo = self.tracker.repository
        accounts = repo.search(args.search) if args.search else repo.list()
        accounts = filter_accounts(accounts, args.filter)
        accounts = sort_accounts(accounts, args.sort)

        if not accounts:
            print_info("No accounts found.")
            return
        render_accounts(accounts, self.console, title=f"{len(accounts)} account(s)")

    def cmd_overdue(self, args):
        if not self.ensure_unlocked():
            return
        summary = self.tracker.refresh_summary()
        if summary["count"] == 0:
            print_success("All passwords are up to date.")
            return
        print_warning(reminder_message(summary["count"]))
        for name in summary["names"]:
            print(f"  - {name}")

    def cmd_update(self, args):
        if not self.ensure_unlocked():
            return

        changes = AccountUpdate.from_mapping({
            key: value for key, value in {
                "service_name": args.service,
                "url": args.url,
                "username": args.username,
                "category": args.category,
                "refresh_interval_days": args.interval,
                "last_password_change": args.last_change,
                "notes": args.notes,
            }.items() if value is not None
        })
        try:
            if changes.is_empty():
                print_info("Nothing to update.")
                return
            count = self.tracker.repository.update(args.id, changes)
            self.tracker.refresh_summary()
        except ValidationError as e:
            print_error(str(e))
            return
        except StoreError as e:
            print_error(f"Failed to update account: {e}")
            return
        if count:
            print_success(f"Account {args.id} updated.")
        else:
            print_warning(f"No account with id {args.id}.")

    def cmd_refresh(self, args):
        if not self.ensure_unlocked():
            return
        try:
            count = self.tracker.repository.mark_refreshed(args.id)
            self.tracker.refresh_summary()
        except StoreError as e:
            print_error(f"Failed to mark account refreshed: {e}")
            return
        if count:
            print_success(f"Account {args.id} marked as refreshed.")
        else:
            print_warning(f"No account with id {args.id}.")

    def cmd_delete(self, args):
        if not self.ensure_unlocked():
            return

        account = self.tracker.repository.get(args.id)
        if account is None:
            print_error("Account not found.")
            return
        if not args.yes and not confirm_action(f"Delete '{account.service_name}'?"):
            print_info("Deletion cancelled.")
            return
        try:
            self.tracker.repository.delete(args.id)
            self.tracker.refresh_summary()
            print_success(f"Deleted '{account.service_name}'.")
        except StoreError as e:
            print_error(f"Failed to delete account: {e}")

    def cmd_export(self, args):
        if not self.ensure_unlocked():
            return

        document = export_document(self.tracker.repository)
        if document["count"] == 0:
            print_error("No accounts to export")
            return

        filename = args.output or default_backup_filename()
        if os.path.exists(filename) and not confirm_action(f"File '{filename}' exists. Overwrite?"):
            return
        try:
            write_backup_file(document, filename)
        except RuntimeError as e:
            print_error(str(e))
            return
        print_success(f"Exported {document['count']} account(s) to {filename}")
        print_warning("The backup file is NOT encrypted.")

    def cmd_import(self, args):
        if not self.ensure_unlocked():
            return

        try:
            document = read_backup_file(args.input)
            if args.mode == "replace" and not confirm_action(
                "Replace ALL existing accounts?", dangerous=True
            ):
                return
            result = import_document(self.tracker.repository, document, args.mode)
            self.tracker.refresh_summary()
        except BackupValidationError as e:
            print_error(str(e))
            return
        except (StoreError, DatabaseError) as e:
            print_error(f"Import failed: {e}")
            return

        msg = f"Imported {result.added} account(s)"
        if result.skipped:
            msg += f", {result.skipped} skipped"
        print_success(msg)

    def cmd_change_pass(self, args):
        if not self.ensure_unlocked():
            return
        try:
            new_pass = getpass.getpass("New passphrase: ")
            confirm = getpass.getpass("Confirm new passphrase: ")
            self.tracker.change_passphrase(new_pass, confirm)
        except (KeyboardInterrupt, EOFError):
            print()
            return
        except TrackerError as e:
            print_error(str(e))
            return
        except StoreError as e:
            print_error(f"Failed to change passphrase. Try again. ({e})")
            return
        print_success("Passphrase changed successfully")

    def cmd_lock(self, args):
        self.tracker.lock()
        print_success("Locked")

    # ======== Parser & Dispatcher ========

    def build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog=PROG,
            description="Able Account - password rotation tracker",
            epilog=f"For detailed help: {PROG} <command> --help"
        )
        parser.add_argument('--no-color', action='store_true', help='Disable colored output')

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        subparsers.add_parser('status', help='Show store state')
        subparsers.add_parser('lock', help='Lock the store')

        add = subparsers.add_parser('add', help='Track a new account')
        add.add_argument('--service', '-s', help='Service name')
        add.add_argument('--url')
        add.add_argument('--username', '-u')
        add.add_argument('--category', '-c', choices=[c.value for c in Category], default='general')
        add.add_argument('--interval', '-i', type=int, help='Refresh interval in days (1-365)')
        add.add_argument('--last-change', help='Last password change (ISO-8601)')
        add.add_argument('--notes', '-n')

        list_cmd = subparsers.add_parser('list', help='List tracked accounts')
        list_cmd.add_argument('--filter', '-f', choices=STATUS_FILTERS, default='all')
        list_cmd.add_argument('--sort', choices=SORT_ORDERS, default='name_asc')
        list_cmd.add_argument('--search', '-q', help='Search service, URL or username')

        subparsers.add_parser('overdue', help='Show accounts that need a refresh')

        update = subparsers.add_parser('update', help='Edit an account')
        update.add_argument('id', type=int)
        update.add_argument('--service', '-s')
        update.add_argument('--url')
        update.add_argument('--username', '-u')
        update.add_argument('--category', '-c', choices=[c.value for c in Category])
        update.add_argument('--interval', '-i', type=int)
        update.add_argument('--last-change')
        update.add_argument('--notes', '-n')

        refresh = subparsers.add_parser('refresh', help='Mark a password as just changed')
        refresh.add_argument('id', type=int)

        delete = subparsers.add_parser('delete', help='Stop tracking an account')
        delete.add_argument('id', type=int)
        delete.add_argument('--yes', '-y', action='store_true', help='Skip confirmation')

        export = subparsers.add_parser('export', help='Export a JSON backup (plaintext)')
        export.add_argument('--output', '-o', help='Output filename')

        imp = subparsers.add_parser('import', help='Import a JSON backup')
        imp.add_argument('input', help='Backup filename')
        imp.add_argument('--mode', choices=['merge', 'replace'], default='merge')

        subparsers.add_parser('change-pass', help='Change the store passphrase')

        return parser

    def dispatch(self, args):
        handlers = {
            'status': self.cmd_status,
            'lock': self.cmd_lock,
            'add': self.cmd_add,
            'list': self.cmd_list,
            'overdue': self.cmd_overdue,
            'update': self.cmd_update,
            'refresh': self.cmd_refresh,
            'delete': self.cmd_delete,
            'export': self.cmd_export,
            'import': self.cmd_import,
            'change-pass': self.cmd_change_pass,
        }
        handler = handlers.get(args.command)
        if handler:
            handler(args)

    def interactive_shell(self):
        print_info("Able Account interactive shell. Type 'help' for commands, 'exit' to quit.")
        parser = self.build_parser()

        while True:
            try:
                text = input(f"{PROG}> ").strip()
                if not text:
                    continue
                if text in ('exit', 'quit', 'q'):
                    self.tracker.lock()
                    break
                if text == 'help':
                    parser.print_help()
                    continue
                try:
                    self.dispatch(parser.parse_args(shlex.split(text)))
                except SystemExit:
                    # argparse exits on bad input
                    pass
            except KeyboardInterrupt:
                print("\n(Use \"exit\" to quit)")
            except EOFError:
                break


# ============ Main Entry Point ============

def main(argv: Optional[List[str]] = None):
    argv = list(sys.argv[1:] if argv is None else argv)
    color_mode = ColorMode.AUTO
    if '--no-color' in argv:
        color_mode = ColorMode.NEVER
        argv.remove('--no-color')

    cli = None
    try:
        cli = AbleAccountCLI(color_mode=color_mode)
        parser = cli.build_parser()

        if not argv:
            cli.interactive_shell()
            return

        args = parser.parse_args(argv)
        if not args.command:
            parser.print_help()
            return
        cli.dispatch(args)

    except KeyboardInterrupt:
        print(f"\n{colors.error('Interrupted by user.')}")
        sys.exit(130)
    finally:
        if cli is not None:
            cli.tracker.lock()


if __name__ == "__main__":
    main()
