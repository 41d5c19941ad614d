import logging
import os
import sys

def setup_logging(level: str | None = None, traffic: bool = False) -> None:
    """Configure root logging; ``traffic`` enables per-frame logging of the projector link."""
    lvl_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    lvl = getattr(logging, lvl_name, logging.INFO)

    logging.basicConfig(
        level=lvl,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
    )
    # keep uvicorn in sync
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(lvl)

    # a 2s poll loop makes frame traces noisy, keep them behind their own switch
    logging.getLogger("tk700.link").setLevel(logging.DEBUG if traffic else max(lvl, logging.INFO))
