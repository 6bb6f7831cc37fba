"""Slash commands available inside the chat loop.

Commands
--------
- /exit, /quit      — end the chat
- /help             — show the command list
- /switch <ID>      — save the current session and load another one
- /session list     — list saved sessions
- /session display  — print the whole conversation
- /session pop      — drop the last exchange
- /session clear    — drop the whole conversation
- /session new      — save and start a new session
- /session remove   — delete the current session file and start afresh
"""
from __future__ import annotations

import logging

from azor_chatdog.cli.console import ChatConsole
from azor_chatdog.session.manager import SessionManager

logger = logging.getLogger(__name__)

EXIT_COMMANDS = frozenset({"/exit", "/quit"})
SESSION_SUBCOMMANDS = ("list", "display", "pop", "clear", "new", "remove")


class CommandHandler:
    """Dispatch slash commands against a ``SessionManager``.

    Parameters
    ----------
    manager:
        Owner of the active session.
    console:
        Where command output is written.
    """

    def __init__(self, manager: SessionManager, console: ChatConsole) -> None:
        self._manager = manager
        self._console = console

    async def handle(self, line: str) -> bool:
        """Run the command in ``line``.

        Returns
        -------
        bool
            True when the chat should end.
        """
        parts = line.strip().split()
        if not parts:
            return False
        command = parts[0].lower()
        args = parts[1:]
        logger.debug("CommandHandler: %s %s", command, args)

        if command in EXIT_COMMANDS:
            self._console.info("\nEnding the chat. Saving the current session...")
            return True
        if command == "/help":
            self.show_help()
        elif command == "/switch":
            await self._switch(args)
        elif command == "/session":
            await self._session(args)
        else:
            self._console.error(f"Unknown command: {parts[0]}. Use /help.")
        return False

    def show_help(self) -> None:
        session = self._manager.current_session
        self._console.display_help(session.session_id, self._manager.store.storage_dir)

    # ------------------------------------------------------------------
    # /switch
    # ------------------------------------------------------------------

    async def _switch(self, args: list[str]) -> None:
        if len(args) != 1:
            self._console.error("Usage: /switch <SESSION-ID>")
            return
        target = args[0]
        current = self._manager.current_session
        if target == current.session_id:
            self._console.info("You are already in this session.")
            return

        result = await self._manager.switch_to_session(target)
        if result.save_error:
            self._console.error(f"Error saving session: {result.save_error}")
        elif result.save_attempted and result.previous_session_id:
            self._console.info(f"\nSession {result.previous_session_id} saved.")

        if not result.switched:
            self._console.error(f"Cannot load session {target}: {result.load_error}")
            self._console.info(
                f"Staying in session {self._manager.current_session.session_id}."
            )
            return

        session = result.session
        self._console.info(f"\n--- Switched to session: {session.session_id} ---")
        if result.has_history:
            self._console.display_history_summary(
                await session.get_history(), session.assistant_name
            )

    # ------------------------------------------------------------------
    # /session <subcommand>
    # ------------------------------------------------------------------

    async def _session(self, args: list[str]) -> None:
        if not args or args[0].lower() not in SESSION_SUBCOMMANDS:
            self._console.error(
                "Usage: /session " + "|".join(SESSION_SUBCOMMANDS)
            )
            return
        subcommand = args[0].lower()
        session = self._manager.current_session

        if subcommand == "list":
            self._console.display_session_list(self._manager.list_sessions())
        elif subcommand == "display":
            self._console.display_full_session(
                await session.get_history(), session.session_id, session.assistant_name
            )
        elif subcommand == "pop":
            if await session.pop_last_exchange():
                self._console.info(
                    f"Removed the last exchange from session {session.session_id}."
                )
                self._console.display_history_summary(
                    await session.get_history(), session.assistant_name
                )
            else:
                self._console.info("Nothing to remove: the session has no complete exchange.")
        elif subcommand == "clear":
            outcome = await session.clear_history()
            if outcome.ok:
                self._console.info("Session history cleared.")
            else:
                self._console.error(f"Error saving session: {outcome.error}")
        elif subcommand == "new":
            result = await self._manager.create_new_session()
            if result.save_error:
                self._console.error(f"Error saving session: {result.save_error}")
            elif result.previous_session_id:
                self._console.info(f"\nSession {result.previous_session_id} saved.")
            self._console.info(f"New session started: {result.session.session_id}")
        elif subcommand == "remove":
            result = await self._manager.remove_current_session_and_create_new()
            if result.removed:
                self._console.info(f"Session {result.removed_session_id} removed.")
            else:
                self._console.error(
                    f"Cannot remove session {result.removed_session_id}: {result.remove_error}"
                )
            self._console.info(f"New session started: {result.session.session_id}")
