import logging
import os
import sys
from pathlib import Path

_initialized = False

# Module-level logger shared by every service; configured by setup_logging().
logger = logging.getLogger('surveylink')

FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(survey_id)s] %(step_name)s: %(message)s'


class ContextDefaultsFilter(logging.Filter):
    """Fill the context fields the format expects when a record lacks them."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name in ('survey_id', 'step_name'):
            if getattr(record, name, None) is None:
                setattr(record, name, '-')
        return True


def setup_logging(level=logging.INFO, name: str = 'surveylink', log_dir=None) -> logging.Logger:
    """
    Configure the service logger once per process.

    Repeated calls return the configured logger without attaching
    duplicate handlers. ``level`` may be a number or a level name.
    """
    global _initialized
    log = logging.getLogger(name)
    if _initialized and log.handlers:
        return log

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    log.setLevel(level)

    for handler in list(log.handlers):
        log.removeHandler(handler)

    formatter = logging.Formatter(FORMAT)
    context = ContextDefaultsFilter()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(formatter)
    console.addFilter(context)
    log.addHandler(console)

    try:
        logs_dir = Path(log_dir or os.getenv('LOG_DIR') or Path(__file__).parent.parent / 'logs')
        logs_dir.mkdir(exist_ok=True)
        file_handler = logging.FileHandler(str(logs_dir / 'server.log'))
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(context)
        log.addHandler(file_handler)
    except OSError as e:  # pragma: no cover - filesystem issues
        log.error(f"Failed to create log file handler: {e}")

    _initialized = True
    return log
