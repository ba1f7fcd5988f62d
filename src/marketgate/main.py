"""Main entry point for the MarketGate API server."""

import logging

import uvicorn

from marketgate.config import settings

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def main() -> None:
    """Run the API server."""
    logger.info(f"Starting MarketGate on {settings.api_host}:{settings.api_port}")
    uvicorn.run(
        "marketgate.api.app:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
