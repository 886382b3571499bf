import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

def get_logger(name: str, verbose: bool = False) -> logging.Logger:
    logger = logging.getLogger(f"sra_kmer_index.{name}")
    if logger.handlers:
        return logger
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    return logger

def set_verbose(verbose: bool) -> None:
    """Flip every already-created pipeline logger between DEBUG and INFO."""
    level = logging.DEBUG if verbose else logging.INFO
    for name, logger in logging.Logger.manager.loggerDict.items():
        if name.startswith("sra_kmer_index.") and isinstance(logger, logging.Logger):
            logger.setLevel(level)
