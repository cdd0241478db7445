"""Logging configuration for the web app."""
import logging
import sys
from pathlib import Path

NOISY_LOGGERS = ('httpx', 'httpcore', 'hpack', 'urllib3')

FORMAT = '%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep our own loggers on the console; HTTP client libraries only
    get through at WARNING and above.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.split('.')[0] in NOISY_LOGGERS:
            return record.levelno >= logging.WARNING
        return True


def setup_logging(level='INFO', log_dir=None) -> None:
    """
    Configure the root logger once: stderr console plus an optional
    housekeeping.log file under log_dir.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    # Flask's reloader imports the app twice; avoid duplicate handlers.
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(fmt=FORMAT, datefmt=DATE_FORMAT)
    console_level = logging.getLevelName(str(level).upper())
    if not isinstance(console_level, int):
        console_level = logging.INFO

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(console_level)
    ch.setFormatter(fmt)
    ch.addFilter(_ConsoleNoiseFilter())
    root.addHandler(ch)

    if log_dir:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(path / 'housekeeping.log'), encoding='utf-8')
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(fmt)
        root.addHandler(fh)

    logging.captureWarnings(True)
