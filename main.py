import sys

import uvicorn

from core.config import settings
from core.logger import setup_logging, logger


def main():
    setup_logging()

    host = "0.0.0.0"
    port = 8000
    if len(sys.argv) > 1 and sys.argv[1].isdigit():
        port = int(sys.argv[1])

    logger.info("Starting Learning Engine API", host=host, port=port, env=settings.ENV)
    uvicorn.run("api.main:app", host=host, port=port, log_level="info", reload=settings.DEBUG)


if __name__ == "__main__":
    main()
