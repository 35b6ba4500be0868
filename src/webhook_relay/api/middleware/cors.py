"""CORS middleware configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi.middleware.cors import CORSMiddleware

from webhook_relay.api.dependencies import HEADER_USER, HEADER_WORKSPACE

if TYPE_CHECKING:
    from fastapi import FastAPI

_CALLER_HEADERS = [HEADER_WORKSPACE, HEADER_USER]


def setup_cors(app: FastAPI, origins: list[str] | None = None) -> None:
    """Allow the admin UI origins to call the API with the caller headers.

    Credentials are only allowed for an explicit origin list; browsers
    reject credentialed responses to a ``*`` origin.
    """
    origins = origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials="*" not in origins,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["content-type", *_CALLER_HEADERS],
        expose_headers=_CALLER_HEADERS,
    )
