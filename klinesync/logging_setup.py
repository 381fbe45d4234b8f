from __future__ import annotations

import logging
import sys

_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install a single stderr handler on the root logger.

    Safe to call more than once; previous handlers installed here are replaced.
    """
    root = logging.getLogger()
    for handler in root.handlers[:]:
        if getattr(handler, "_klinesync", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT))
    handler._klinesync = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(level.upper())

    # httpx logs every request at INFO; one line per window is too chatty.
    logging.getLogger("httpx").setLevel(logging.WARNING)
