import logging
import sys

import uvicorn

from tk700.core.config import get_settings
from tk700.core.logging import setup_logging
from tk700.exceptions.projector import ConfigurationError
from tk700.main import create_app


def main() -> int:
    try:
        settings = get_settings()
    except ConfigurationError as e:
        setup_logging()
        logging.getLogger("tk700").critical("%s (%s)", e.message, e.context)
        return 2

    setup_logging(settings.LOG_LEVEL, traffic=settings.LINK_TRAFFIC_LOG)
    logging.getLogger("tk700").info("TK700 Control Server starting on %s:%s", settings.HOST, settings.PORT)
    uvicorn.run(create_app(settings), host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())
    return 0


if __name__ == "__main__":
    sys.exit(main())
