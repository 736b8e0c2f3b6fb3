import logging
import colorlog


class LedgerContextFilter(logging.Filter):
    """Add ledger context to log records."""
    def filter(self, record):
        # Ensure all records have the context attributes the format prints
        for attr in ("operation", "entry_id"):
            if getattr(record, attr, None) is None:
                setattr(record, attr, "-")
        return True


def setup_logging(level: str = "INFO", name: str = "contest") -> logging.Logger:
    """Set up a colored console logger for the service."""
    logger = logging.getLogger(name)

    if logger.hasHandlers():
        logger.handlers.clear()

    logger.setLevel(level.upper())
    logger.propagate = False

    console_handler = colorlog.StreamHandler()
    console_handler.addFilter(LedgerContextFilter())
    console_handler.setFormatter(colorlog.ColoredFormatter(
        "%(asctime)s - %(log_color)s%(levelname)-8s%(reset)s - %(name)s - %(message)s"
        " [op:%(operation)s entry:%(entry_id)s]",
        datefmt="%Y-%m-%d %H:%M:%S",
        reset=True,
        log_colors={
            'DEBUG':    'cyan',
            'INFO':     'green',
            'WARNING':  'yellow',
            'ERROR':    'red',
            'CRITICAL': 'red,bg_white',
        }
    ))
    logger.addHandler(console_handler)
    return logger
