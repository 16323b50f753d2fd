import logging
from pathlib import Path

def setup_logging(log_dir: Path, debug: bool = False) -> logging.Logger:
    """Configures file logging for the mbc package and returns its logger."""
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "mbc.log"

    logger = logging.getLogger("mbc")
    logger.setLevel(logging.DEBUG if debug else logging.INFO)

    # Avoid stacking handlers when called more than once
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()

    handler = logging.FileHandler(log_file)
    handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
