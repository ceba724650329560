import logging
from pathlib import Path
from typing import Optional


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


def configure_logging(level: str = "INFO", file_path: Optional[str] = None, *, verbose: bool = False) -> None:
    """
    Log to stderr and, when `file_path` is set, append to that file as well.

    `verbose` forces DEBUG for this package only; other loggers keep `level`.
    """
    numeric_level = getattr(logging, (level or "INFO").upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if file_path:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    logging.basicConfig(
        level=numeric_level,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,  # allow configure_logging() to be called multiple times (CLI does this)
    )

    logging.getLogger("school_fee_ledger").setLevel(logging.DEBUG if verbose else numeric_level)
