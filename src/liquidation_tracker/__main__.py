"""Run the liquidation tracker API under uvicorn."""

import logging

import uvicorn

from liquidation_tracker.config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def main() -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
    uvicorn.run(
        "liquidation_tracker.api.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
