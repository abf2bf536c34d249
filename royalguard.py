#!/usr/bin/env python3
"""
Royalguard Secret Store
A local, terminal-based secret store: named records of fields, encrypted at
rest under a master password, with full change history and a filter language
for queries.
"""

# ==============================================================================
# STANDARD LIBRARY IMPORTS
# ==============================================================================
import argparse
import logging
import sys

# ==============================================================================
# THIRD-PARTY LIBRARY IMPORTS
# ==============================================================================
from prompt_toolkit import prompt
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.completion import WordCompleter
from prompt_toolkit.history import InMemoryHistory

# ==============================================================================
# CUSTOM MODULE IMPORTS
# ==============================================================================
from guard import ui
from guard.commands import COMMAND_WORDS, CopyCommand, HistoryCommand, execute, parse_command
from guard.config import Settings
from guard.database import VaultDatabase
from guard.errors import AuthenticationError, GuardError, NoVaultError, VaultIOError
from guard.log import setup_logging

logger = logging.getLogger("royalguard.shell")

# ==============================================================================
# CONSTANTS
# ==============================================================================

MIN_PASSWORD_LENGTH = 8

MAX_UNLOCK_ATTEMPTS = 3

HELP_TEXT = """
Commands:

  set <name> [[sensitive] <field> [sensitive] = <value>]...   create or update a record (alias: add)
  del <name> [<field>...]                                      delete a record or some of its fields
  show all | <name> | <filter>                                 list records, sensitive values masked
  reveal all | <name> | <filter>                               list records with actual values
  history <name>                                               show prior values (masked)
  reveal history <name>                                        show prior values
  copy <name> <field>                                          copy a value to the clipboard
  rename <old> <new>                                           rename a record
  import <path>                                                import one record per line
  save                                                         write unsaved changes to the vault
  passwd                                                       change the master password
  help (h)                                                     show this help
  exit (quit, q)                                               lock the vault and exit

Filters:  <field> is|contains|matches <value>, joined with and / or and (...)
          '.' or $name stands for the record name, e.g.  show . contains mail
Values containing spaces, quotes, parentheses or '=' must be quoted.
"""

# Shell commands handled here rather than by the command language
SHELL_ALIASES = {
    'help': 'help',
    'h': 'help',
    'exit': 'exit',
    'quit': 'exit',
    'q': 'exit',
    'save': 'save',
    'passwd': 'passwd',
}

# ==============================================================================
# MAIN ROYALGUARD CLASS
# ==============================================================================

class Royalguard:
    """
    Interactive session controller: creates or unlocks a vault, then reads
    commands until exit.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.db = VaultDatabase(settings.vault_path, settings.kdf)
        self.history = InMemoryHistory()
        self.auto_suggest = AutoSuggestFromHistory()
        self.completer = WordCompleter(
            sorted(set(COMMAND_WORDS) | set(SHELL_ALIASES) | {'all'}),
            ignore_case=True,
        )

    def _format_prompt(self) -> str:
        return "royalguard> " if self.db.is_open else "royalguard (locked)> "

    # ==========================================================================
    # VAULT MANAGEMENT
    # ==========================================================================

    def _ask_new_password(self, label: str = "master password") -> str:
        while True:
            password = prompt(f"New {label}: ", is_password=True)
            if len(password) < MIN_PASSWORD_LENGTH:
                ui.error(f"Use at least {MIN_PASSWORD_LENGTH} characters")
                continue
            if password != prompt(f"Confirm {label}: ", is_password=True):
                ui.error("Passwords do not match")
                continue
            return password

    def initialize_vault(self) -> bool:
        """
        Create a new vault at the configured path.

        Returns:
            bool: True if the vault was created and is now open
        """
        if self.db.vault_file.exists():
            ui.error(f"Vault already exists: {self.db.db_path}")
            ui.info("Use 'unlock' to open it")
            return False

        password = self._ask_new_password()
        ui.success("Deriving encryption key...")
        try:
            self.db.create(password)
        except VaultIOError as e:
            ui.error(str(e))
            return False

        ui.success(f"Vault created: {self.db.db_path}")
        return True

    def unlock_vault(self) -> bool:
        """
        Unlock the configured vault, offering to create it on first run.

        Returns:
            bool: True if the vault is open
        """
        for attempt in range(1, MAX_UNLOCK_ATTEMPTS + 1):
            password = prompt("Master password: ", is_password=True)
            try:
                vault = self.db.unlock(password)
            except NoVaultError:
                ui.error(f"No vault at {self.db.db_path}")
                answer = prompt("Create it now? [y/N]: ").strip().lower()
                return answer == 'y' and self.initialize_vault()
            except AuthenticationError as e:
                remaining = MAX_UNLOCK_ATTEMPTS - attempt
                ui.error(f"{e} (attempts remaining: {remaining})")
                continue
            except VaultIOError as e:
                ui.error(str(e))
                return False

            ui.success(f"Vault unlocked ({len(vault)} records)")
            return True

        ui.error("Maximum authentication attempts reached")
        return False

    def change_master_password(self) -> None:
        current = prompt("Current master password: ", is_password=True)
        if not self.db.verify_password(current):
            ui.error("Current password incorrect")
            return
        new_password = self._ask_new_password("master password")
        ui.success("Re-encrypting vault...")
        try:
            self.db.change_master_password(new_password)
        except VaultIOError as e:
            ui.error(str(e))
            return
        ui.success("Master password changed")

    def save_vault(self) -> bool:
        """
        Write pending changes to the vault file.

        Returns:
            bool: True if the file now holds everything in memory
        """
        if not self.db.dirty:
            ui.info("Nothing to save")
            return True
        try:
            self.db.save()
        except VaultIOError as e:
            logger.error("save failed: %s", e)
            ui.error(f"Not saved: {e}")
            return False
        ui.success("Vault saved")
        return True

    def _can_exit(self) -> bool:
        # Unsaved changes get one more write attempt, then the user decides
        if not self.db.dirty or self.save_vault():
            return True
        try:
            answer = prompt("Unsaved changes will be lost. Exit anyway? [y/N]: ")
        except EOFError:
            ui.error("Input closed, unsaved changes discarded")
            return True
        except KeyboardInterrupt:
            return False
        return answer.strip().lower() == 'y'

    # ==========================================================================
    # COMMAND HANDLING
    # ==========================================================================

    def handle(self, line: str) -> None:
        """Parse, execute and display one command line; errors are reported, not raised."""
        try:
            command = parse_command(line)
            result = execute(command, self.db)
        except VaultIOError as e:
            if e.path != self.db.db_path:
                ui.error(str(e))
                return
            logger.error("save failed: %s", e)
            ui.error(f"Not saved: {e}")
            ui.info("The change is kept in memory; use 'save' to retry")
            return
        except GuardError as e:
            ui.error(str(e))
            return

        if isinstance(command, CopyCommand):
            timeout = self.settings.clipboard_timeout
            if ui.copy_to_clipboard(result.copied, timeout):
                if timeout:
                    ui.success(f"{command.key} copied to clipboard (clears in {timeout} seconds)")
                else:
                    ui.success(f"{command.key} copied to clipboard")
            else:
                ui.error("Clipboard unavailable")
        elif isinstance(command, HistoryCommand):
            ui.display_history(command.name, result.history)
        elif result.report is not None:
            ui.display_import_report(result.report)
        elif result.saved:
            ui.success(result.message)
        else:
            ui.display_records(result.records)

    def run(self) -> None:
        """Interactive command loop."""
        ui.info("Type 'help' for commands")
        while True:
            try:
                line = prompt(
                    self._format_prompt(),
                    history=self.history,
                    auto_suggest=self.auto_suggest,
                    completer=self.completer,
                ).strip()
            except KeyboardInterrupt:
                continue
            except EOFError:
                if self._can_exit():
                    break
                continue

            if not line:
                continue

            shell_command = SHELL_ALIASES.get(line.lower())
            if shell_command == 'help':
                print(HELP_TEXT)
            elif shell_command == 'exit':
                if self._can_exit():
                    break
            elif shell_command == 'save':
                self.save_vault()
            elif shell_command == 'passwd':
                self.change_master_password()
            else:
                self.handle(line)

        ui.success("Vault locked")

    def cleanup(self) -> None:
        self.db.close()

# ==============================================================================
# MAIN ENTRY POINT
# ==============================================================================

def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Royalguard keeps named records of secrets in an encrypted local vault, "
                    "with field history and a filter language for queries.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest='command', help='Available operations')

    for name, help_text in (
        ('init', 'Create a new encrypted vault'),
        ('unlock', 'Unlock a vault for interactive use'),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument(
            '--vault',
            default=None,
            help=f'Vault file path (default: {settings.vault_path})',
        )
        sub.add_argument(
            '--verbose', '-v',
            action='store_true',
            help='Log debug output to stderr',
        )

    return parser


def main(argv=None) -> int:
    """Main entry point for Royalguard."""
    try:
        settings = Settings.from_env()
    except ValueError as e:
        ui.error(f"Configuration error: {e}")
        return 1

    parser = build_parser(settings)
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    settings = settings.with_overrides(vault_path=args.vault)
    setup_logging(verbose=args.verbose, log_file=settings.log_file,
                  file_level=settings.log_level)

    app = Royalguard(settings)
    try:
        if args.command == 'init':
            if not app.initialize_vault():
                return 1
        elif not app.unlock_vault():
            return 1
        app.run()
    except (KeyboardInterrupt, EOFError):
        print()
        ui.error("Operation cancelled, vault locked")
        return 1
    finally:
        app.cleanup()

    return 0


if __name__ == "__main__":
    sys.exit(main())
