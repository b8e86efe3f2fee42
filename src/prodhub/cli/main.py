# src/prodhub/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds the HubSession, connects its feeds and runs the
console REPL until /exit.
"""

from __future__ import annotations

import asyncio
import logging

from ..cli.bootstrap import create_session
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..core.session import HubSession
from ..errors import SubscriptionError
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


async def _run(session: HubSession) -> None:
    try:
        await session.start(background=False)
    except SubscriptionError as e:
        logger.error("Could not connect live feeds: %s", e)
        await session.stop()
        return

    try:
        if session.settings is not None and session.settings.calendar_access_token:
            await session.refresh_calendar()
        await run_console_loop(session)
    finally:
        await session.stop()


def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)

    # IMPORTANT: reuse same settings object
    session = create_session(settings=settings)

    try:
        asyncio.run(_run(session))
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    finally:
        logger.info("Bye.")


if __name__ == "__main__":
    main()
