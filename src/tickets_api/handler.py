"""
tickets_api.handler — AWS Lambda entry point.

Adapts Lambda Function URL (payload format 2.0) and API Gateway events to the
FastAPI application. Configured as the function handler
``tickets_api.handler.lambda_handler`` by scripts/deploy.py.
"""

from typing import Any

from aws_lambda_powertools import Logger
from aws_lambda_powertools.logging import correlation_paths
from aws_lambda_powertools.utilities.typing import LambdaContext
from mangum import Mangum

from tickets_api.app import app

logger = Logger(service="tickets-api")

# Lifespan events are not used by the app; skip them on every cold start.
_asgi_handler = Mangum(app, lifespan="off")


@logger.inject_lambda_context(
    correlation_id_path=correlation_paths.LAMBDA_FUNCTION_URL, clear_state=True
)
def lambda_handler(event: dict[str, Any], context: LambdaContext) -> dict[str, Any]:
    return _asgi_handler(event, context)
