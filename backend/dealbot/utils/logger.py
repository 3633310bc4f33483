import logging


def get_logger(name: str) -> logging.Logger:
    """Return a module logger; handlers and format are configured once in main._configure_logging()."""
    return logging.getLogger(name)
