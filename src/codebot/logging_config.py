# logging_config.py
# One-time logging setup for the CLI.

import logging

from rich.logging import RichHandler


def setup_logging(level: str = "WARNING", verbose: bool = False, debug: bool = False) -> None:
    """
    Configure the root logger with a rich handler.

    --debug wins over --verbose; both win over the configured level.
    Noisy transport libraries stay at WARNING unless debugging.
    """
    if debug:
        log_level = logging.DEBUG
    elif verbose:
        log_level = logging.INFO
    else:
        log_level = getattr(logging, level.upper(), logging.WARNING)

    # force=True replaces handlers left by an earlier call
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=debug, show_path=debug)],
        force=True,
    )

    if not debug:
        for name in ("httpx", "httpcore", "openai"):
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug("Logging initialised at %s", logging.getLevelName(log_level))
