from __future__ import annotations

import logging
import sys


def setup_logging(level: str | int = logging.INFO) -> None:
    """
    Configure root logging once at startup:
    - calsync loggers at the requested level
    - third-party libraries (googleapiclient, urllib3) only WARNING+

    Safe to call more than once; handlers are not duplicated.
    """
    root = logging.getLogger()
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    if not any(getattr(h, "_calsync", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        handler._calsync = True  # type: ignore[attr-defined]
        root.addHandler(handler)

    root.setLevel(logging.WARNING)
    logging.getLogger("calsync").setLevel(level)
    for noisy in ("googleapiclient", "googleapiclient.discovery_cache", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
