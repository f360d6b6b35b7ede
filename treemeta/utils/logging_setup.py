"""
Logging configuration for command-line entry points.
Library modules only create loggers; handlers are installed here.
"""
import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(verbose: bool = False):
    """Install a root handler. DEBUG when verbose, INFO otherwise."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )
    # Playwright's asyncio driver is chatty at DEBUG
    logging.getLogger("asyncio").setLevel(logging.WARNING)
