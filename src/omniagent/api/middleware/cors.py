"""CORS middleware configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi.middleware.cors import CORSMiddleware

from omniagent.api.middleware.auth import AUTH_HEADER_USER

if TYPE_CHECKING:
    from fastapi import FastAPI


def setup_cors(app: FastAPI) -> None:
    """Allow the browser front end to call the API with the user header."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*", AUTH_HEADER_USER],
    )
