"""Terminal output for the chat.

Conversation output goes to stdout; warnings and errors go to a separate
stderr console so that absorbed failures stay visible without mixing
into the transcript.

Classes
-------
- ChatConsole  — coloured output helpers over two rich consoles
"""
from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from azor_chatdog.models import Message, Role
from azor_chatdog.storage.session_store import SessionSummary

_SUMMARY_PREVIEW_CHARS = 80

DOG_ART = r"""
           ,////,
          /  ' ,)
         (o____/
        /  ~ \
       |  /   `----.
       | |         |
      /   \        |
     ~   / \
    ~   |   \
       /     \
      '       '
""".strip("\n")


def speech_bubble(text: str) -> str:
    """Return the dog ASCII art saying ``text``."""
    width = len(text) + 2
    return "\n".join(
        [
            "   " + "-" * width + ".",
            f"  ( {text} )",
            "   " + "-" * width + "'",
            "      \\",
            "       \\",
            DOG_ART,
        ]
    )


class ChatConsole:
    """Output helpers used by the REPL and the slash commands.

    Parameters
    ----------
    out:
        Console for conversation output.  Defaults to stdout.
    err:
        Console for warnings and errors.  Defaults to stderr.
    """

    def __init__(self, out: Console | None = None, err: Console | None = None) -> None:
        self.out = out or Console()
        self.err = err or Console(stderr=True)

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    def info(self, message: str) -> None:
        self.out.print(escape(message))

    def help(self, message: str) -> None:
        self.out.print(escape(message), style="yellow")

    def user(self, message: str) -> None:
        self.out.print(escape(message), style="blue")

    def assistant(self, message: str) -> None:
        self.out.print(escape(message), style="cyan")

    def warning(self, message: str) -> None:
        self.err.print(escape(message), style="yellow")

    def error(self, message: str) -> None:
        self.err.print(escape(message), style="red")

    # ------------------------------------------------------------------
    # Screens
    # ------------------------------------------------------------------

    def welcome(self) -> None:
        self.info(speech_bubble("Woof Woof!"))

    def display_help(self, session_id: str, storage_dir: Path) -> None:
        self.info(f"Current session (ID): {session_id}")
        self.info(f"Session files are saved continuously in: {storage_dir}")
        self.help("Available commands (slash commands):")
        self.help("  /switch <ID>      - Switch to an existing session.")
        self.help("  /help             - Show this help.")
        self.help("  /exit, /quit      - End the chat.")
        self.help("\n  /session list     - List saved sessions.")
        self.help("  /session display  - Show the full session history.")
        self.help("  /session pop      - Remove the last exchange (you and the assistant).")
        self.help("  /session clear    - Clear the current session history.")
        self.help("  /session new      - Start a new session.")
        self.help("  /session remove   - Delete the current session and start a new one.")

    def display_final_instructions(self, session_id: str) -> None:
        self.info("\n--- How to continue this session ---")
        self.info(f"To continue this session (ID: {session_id}) later, run:")
        self.out.print(f"\n    azor --session-id={escape(session_id)}\n", style="bold white")
        self.info("--------------------------------------")

    def display_history_summary(
        self, history: Sequence[Message], assistant_name: str
    ) -> None:
        """Show how many messages were skipped and the last two messages."""
        if not history:
            return
        if len(history) > 2:
            self.info("\n--- Session thread resumed ---")
            self.info(f"({len(history) - 2} earlier messages omitted)")
        else:
            self.info("\n--- Session thread ---")
        for message in history[-2:]:
            preview = message.text[:_SUMMARY_PREVIEW_CHARS]
            if message.role is Role.USER:
                self.user(f"  YOU: {preview}...")
            else:
                self.assistant(f"  {assistant_name}: {preview}...")
        self.info("----------------------------")

    def display_full_session(
        self, history: Sequence[Message], session_id: str, assistant_name: str
    ) -> None:
        if not history:
            self.info("Session history is empty.")
            return
        self.info(f"\n--- FULL SESSION HISTORY ({session_id}, {len(history)} entries) ---")
        for index, message in enumerate(history, start=1):
            if message.role is Role.USER:
                self.user(f"\n[{index}] YOU:")
                self.user(message.text)
            else:
                self.assistant(f"\n[{index}] {assistant_name}:")
                self.assistant(message.text)
        self.info("--------------------------------------------------------")

    def display_session_list(self, sessions: Sequence[SessionSummary]) -> None:
        if not sessions:
            self.help("\nNo saved sessions.")
            return
        table = Table(title="Saved sessions")
        table.add_column("Session ID", style="cyan")
        table.add_column("Messages", justify="right")
        table.add_column("Last activity")
        for summary in sessions:
            if summary.error is not None:
                table.add_row(summary.session_id, "-", f"[red]{escape(summary.error)}[/red]")
                continue
            last = (
                summary.last_activity.strftime("%Y-%m-%d %H:%M")
                if summary.last_activity is not None
                else "no activity"
            )
            table.add_row(summary.session_id, str(summary.message_count), last)
        self.out.print(table)
