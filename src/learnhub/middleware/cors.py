"""Browser access for the LearnHub web client."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from learnhub.config import Settings

# Auth travels in the Authorization header; no cookies are issued
_REQUEST_HEADERS = ["Authorization", "Content-Type", "X-Request-Id"]
_EXPOSED_HEADERS = ["X-Request-Id", "X-RateLimit-Limit", "X-RateLimit-Remaining", "Retry-After"]


def setup_cors(app: FastAPI, settings: Settings) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=_REQUEST_HEADERS,
        expose_headers=_EXPOSED_HEADERS,
        max_age=600,
    )
