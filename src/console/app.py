from __future__ import annotations

import asyncio
import logging
import sys

from dotenv import load_dotenv

from console.keys import ExitRequested, KeyboardInput
from console.terminal import Terminal
from console.workflow import Workflow
from directory.auth import AuthenticationError, describe_auth_failure
from directory.lifespan import directory_session
from pim_lifecycle.config import LifecycleConfig
from pim_lifecycle.observability import configure_logging, configure_telemetry

load_dotenv()

logger = logging.getLogger(__name__)


async def run(config: LifecycleConfig, *, stdin=None, stdout=None) -> int:
    """Sign in, drive the interactive workflow and return the exit status."""
    terminal = Terminal(stdout)
    try:
        async with directory_session(config) as session:
            async with KeyboardInput(stdin) as keys:
                terminal.hide_cursor()
                try:
                    workflow = Workflow(
                        session.principal,
                        session.resolver,
                        session.submitter,
                        terminal,
                        keys,
                        default_duration=config.default_duration,
                    )
                    await workflow.run()
                finally:
                    terminal.release()
    except ExitRequested:
        logger.info("Exit requested by user")
    except AuthenticationError as exc:
        logger.error("Sign-in failed: %s", exc.category.value)
        print(
            f"Sign-in failed ({exc.category.value}): {describe_auth_failure(exc)}",
            file=sys.stderr,
        )
        return 1
    return 0


def main() -> None:
    config = LifecycleConfig().resolve()
    configure_logging(config.log_level, log_file=config.log_file)
    telemetry = configure_telemetry()

    try:
        code = asyncio.run(run(config))
    except Exception:
        logger.exception("Unrecoverable error")
        print("Unexpected error; see the log for details.", file=sys.stderr)
        code = 1
    finally:
        if telemetry is not None:
            telemetry.shutdown()
    sys.exit(code)


if __name__ == "__main__":
    main()
