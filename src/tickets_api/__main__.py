"""
Run the API locally:

    uv run python -m tickets_api

Listens on PORT (default 3000).
"""

import uvicorn
from aws_lambda_powertools import Logger

from tickets_api.app import app
from tickets_api.config import load_settings

logger = Logger(service="tickets-api")


def main() -> None:
    settings = load_settings()
    logger.info("Server running on port %d", settings.port)
    uvicorn.run(app, host="0.0.0.0", port=settings.port)  # noqa: S104


if __name__ == "__main__":
    main()
