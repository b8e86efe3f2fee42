# src/prodhub/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.session import HubSession
from ..errors import MutationError

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}")


async def run_console_loop(session: HubSession) -> None:
    """
    Read slash commands until /exit or EOF.

    The session runs without a background coordinator here: queued snapshots are
    applied before every command and again after it, so each reply reflects the
    writes it just made.
    """
    logger.info("Console connector started (owner=%s).", session.owner_id)
    _print_ts("[CONSOLE] Use /help for commands. Use /exit to quit.\n")

    def emit(text: str) -> None:
        print(f"[{_ts_local()}] {text}", flush=True)

    while True:
        try:
            user_input = (await asyncio.to_thread(input, ">>> ")).strip()
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        await session.sync()
        try:
            response = await command_registry.handle(session, user_input, emit=emit)
        except MutationError as e:
            logger.info("Write failed: %s", e)
            response = f"Write failed: {e}"
        except Exception:
            logger.exception("Command handler crashed.")
            response = "Internal error while handling a command."
        await session.sync()

        if response is None:
            response = "Commands start with '/'. Use /help to list them."
        _print_ts(response)

        for notice in session.pop_notices():
            _print_ts(f"[SYNC] {notice}")

    logger.info("Console connector finished.")
