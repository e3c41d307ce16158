"""
tickets_api — Tickets App backend HTTP API.

FastAPI application served locally with uvicorn and on AWS Lambda through
the Mangum adapter in tickets_api.handler.
"""

__version__ = "1.0.0"
