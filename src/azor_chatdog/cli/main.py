"""CLI entry point for azor-chatdog.

Invoked as::

    azor [--session-id ID] [--log-level LEVEL]

or, during development::

    python -m azor_chatdog.cli.main

Plain input is sent to the assistant; input starting with ``/`` is a
command (see ``azor_chatdog.cli.commands``).  The session is saved after
every exchange.  Ctrl+C or SIGTERM stops the loop, after which the active
session is saved one last time.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
import threading
from collections.abc import Awaitable, Callable
from typing import TypeVar

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.prompt import Prompt

from azor_chatdog.cli.commands import CommandHandler
from azor_chatdog.cli.console import ChatConsole
from azor_chatdog.config import ConfigError, Settings
from azor_chatdog.llm.base import BackendInitError
from azor_chatdog.llm.factory import ClientFactory, create_client
from azor_chatdog.session.manager import SessionManager

logger = logging.getLogger(__name__)

LineReader = Callable[[], str]
T = TypeVar("T")

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def configure_logging(level: str, console: Console | None = None) -> None:
    """Route log records to stderr through rich."""
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )


def _prompt_reader(console: ChatConsole) -> LineReader:
    def read() -> str:
        return Prompt.ask("[bold blue]YOU[/bold blue]", console=console.out)

    return read


# ---------------------------------------------------------------------------
# Input and cancellation
# ---------------------------------------------------------------------------


async def read_line(reader: LineReader, stop: asyncio.Event) -> str | None:
    """Read one line without blocking the event loop.

    The blocking read runs on a daemon thread so that a pending prompt
    never keeps the process alive after shutdown.  Returns None when
    ``stop`` is set first.

    Raises
    ------
    EOFError
        When the input stream is closed.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future[str] = loop.create_future()

    def deliver(value: str | None, error: BaseException | None) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(value or "")

    def worker() -> None:
        try:
            value = reader()
        except BaseException as exc:  # noqa: BLE001
            result: tuple[str | None, BaseException | None] = (None, exc)
        else:
            result = (value, None)
        # The loop is gone when the process is already shutting down.
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(deliver, *result)

    threading.Thread(target=worker, name="azor-input", daemon=True).start()
    stop_wait = asyncio.ensure_future(stop.wait())
    try:
        await asyncio.wait({future, stop_wait}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stop_wait.cancel()
    if future.done():
        return future.result()
    future.cancel()
    return None


async def _until_done_or_stopped(
    coro: Awaitable[T], stop: asyncio.Event, grace: float
) -> T | None:
    """Await ``coro``; once ``stop`` is set allow it ``grace`` more seconds."""
    task = asyncio.ensure_future(coro)
    stop_wait = asyncio.ensure_future(stop.wait())
    try:
        await asyncio.wait({task, stop_wait}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stop_wait.cancel()
    if not task.done():
        logger.info("Interrupted; waiting up to %ss for the current request.", grace)
        try:
            return await asyncio.wait_for(task, grace)
        except TimeoutError:
            logger.warning("The current request did not finish in time; abandoning it.")
            return None
    return task.result()


def _install_signal_handlers(stop: asyncio.Event) -> list[signal.Signals]:
    loop = asyncio.get_running_loop()
    installed = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
        except (NotImplementedError, RuntimeError, ValueError):
            # Not supported on this platform or outside the main thread.
            continue
        installed.append(signum)
    return installed


def _remove_signal_handlers(signums: list[signal.Signals]) -> None:
    loop = asyncio.get_running_loop()
    for signum in signums:
        loop.remove_signal_handler(signum)


# ---------------------------------------------------------------------------
# Chat loop
# ---------------------------------------------------------------------------


async def _exchange(manager: SessionManager, console: ChatConsole, text: str) -> None:
    session = manager.current_session
    response = await session.send_message(text)
    if response.failed:
        console.error(f"\n{session.assistant_name}: {response.text}")
    else:
        console.assistant(f"\n{session.assistant_name}: {response.text}")
    info = await session.get_token_info()
    console.info(
        f"Tokens: {info.used} used, {info.remaining} remaining of {info.limit} "
        f"({info.percentage:.1f}%)"
    )
    outcome = await session.save_to_file()
    if not outcome.ok:
        console.error(f"Error saving session: {outcome.error}")


async def chat_loop(
    manager: SessionManager,
    console: ChatConsole,
    stop: asyncio.Event,
    reader: LineReader,
) -> None:
    """Read input until ``/exit``, end of input or ``stop`` is set."""
    handler = CommandHandler(manager, console)
    grace = manager.settings.cleanup_timeout
    while not stop.is_set():
        try:
            line = await read_line(reader, stop)
        except (EOFError, KeyboardInterrupt):
            console.info("\nInput closed. Ending the chat.")
            return
        if line is None:
            console.info("\nInterrupted. Ending the chat.")
            return
        line = line.strip()
        if not line:
            continue
        try:
            if line.startswith("/"):
                if await _until_done_or_stopped(handler.handle(line), stop, grace):
                    return
            else:
                await _until_done_or_stopped(_exchange(manager, console, line), stop, grace)
        except BackendInitError as exc:
            console.error(f"Cannot start the assistant for a new session: {exc}")


async def shutdown(manager: SessionManager, console: ChatConsole) -> None:
    """Save the active session and release it.  Never raises."""
    try:
        result = await manager.cleanup_and_save()
    except Exception as exc:  # noqa: BLE001
        logger.error("Final save failed: %s", exc, exc_info=True)
        result = None
    if result is not None:
        if result.saved:
            console.display_final_instructions(result.session_id)
        elif result.save_error:
            console.error(f"Final save failed: {result.save_error}")
    try:
        await manager.close()
    except Exception as exc:  # noqa: BLE001
        logger.error("Closing the session failed: %s", exc, exc_info=True)


async def run_chat(
    settings: Settings,
    session_id: str | None = None,
    *,
    console: ChatConsole | None = None,
    reader: LineReader | None = None,
    stop: asyncio.Event | None = None,
    client_factory: ClientFactory = create_client,
) -> int:
    """Run one interactive chat and return the process exit code.

    Parameters
    ----------
    settings:
        Process configuration.
    session_id:
        Session to resume, if any.
    console:
        Output target.  Defaults to stdout/stderr.
    reader:
        Blocking line reader.  Defaults to a rich prompt.
    stop:
        Cancellation event.  When omitted one is created and bound to
        SIGINT and SIGTERM.
    client_factory:
        Engine client factory.
    """
    console = console or ChatConsole()
    reader = reader or _prompt_reader(console)
    manager = SessionManager(settings, client_factory=client_factory)

    try:
        settings.ensure_directories()
    except OSError as exc:
        console.error(f"Cannot create {settings.base_dir}: {exc}")
        return 1

    console.welcome()
    try:
        session = await manager.start(session_id)
    except (ConfigError, BackendInitError) as exc:
        console.error(f"Cannot start the assistant: {exc}")
        return 1

    if session_id and session.session_id != session_id:
        console.error(f"Session {session_id} could not be loaded; started a new one.")
    console.display_help(session.session_id, manager.store.storage_dir)
    if not session.is_empty():
        console.display_history_summary(await session.get_history(), session.assistant_name)

    signums: list[signal.Signals] = []
    if stop is None:
        stop = asyncio.Event()
        signums = _install_signal_handlers(stop)
    try:
        await chat_loop(manager, console, stop, reader)
    finally:
        _remove_signal_handlers(signums)
        await shutdown(manager, console)
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


@click.command()
@click.option(
    "--session-id",
    default=None,
    help="Resume the session with this ID.",
)
@click.option(
    "--log-level",
    default="WARNING",
    show_default=True,
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    help="Threshold for diagnostics written to stderr.",
)
@click.version_option(package_name="azor-chatdog", prog_name="azor")
def cli(session_id: str | None, log_level: str) -> None:
    """Chat with Azor, the assistant dog, in a resumable session."""
    configure_logging(log_level)
    try:
        settings = Settings.from_environment()
    except ConfigError as exc:
        Console(stderr=True).print(f"[red]Configuration error:[/red] {escape(str(exc))}")
        sys.exit(1)
    sys.exit(asyncio.run(run_chat(settings, session_id)))


def main() -> None:
    """Console script entry point."""
    cli()


if __name__ == "__main__":
    main()
