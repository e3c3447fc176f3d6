"""
CORS Configuration

Per-environment Cross-Origin Resource Sharing settings for the desk UI.
"""

import os
from dataclasses import dataclass, field, replace
from typing import List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware


@dataclass
class CORSConfig:
    """CORS configuration settings."""

    allowed_origins: List[str] = field(default_factory=list)

    allow_credentials: bool = True

    allowed_methods: List[str] = field(default_factory=lambda: [
        "GET", "POST", "PUT", "DELETE", "OPTIONS"
    ])

    allowed_headers: List[str] = field(default_factory=lambda: [
        "Accept",
        "Accept-Language",
        "Content-Type",
        "Content-Language",
        "Authorization",
        "Last-Event-ID",
        "X-Request-ID",
    ])

    expose_headers: List[str] = field(default_factory=lambda: [
        "X-Request-ID",
    ])

    # Preflight cache, seconds
    max_age: int = 3600

    # Development only
    allow_all_origins: bool = False


CORS_CONFIGS = {
    "development": CORSConfig(
        allowed_origins=[
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ],
        allow_all_origins=True,
    ),
    "test": CORSConfig(
        allowed_origins=["http://test"],
    ),
    "production": CORSConfig(
        allowed_origins=[],
        max_age=7200,
    ),
}


def get_cors_config(
    environment: Optional[str] = None,
    extra_origins: Optional[str] = None,
) -> CORSConfig:
    """
    CORS configuration for an environment.

    Args:
        environment: Key into CORS_CONFIGS; defaults to SHELFDESK_ENV
        extra_origins: Comma-separated origins added to the preset;
            defaults to CORS_ALLOWED_ORIGINS
    """
    if environment is None:
        environment = os.getenv("SHELFDESK_ENV", "development")
    if extra_origins is None:
        extra_origins = os.getenv("CORS_ALLOWED_ORIGINS", "")

    preset = CORS_CONFIGS.get(environment, CORS_CONFIGS["development"])
    origins = list(preset.allowed_origins)
    origins.extend(origin.strip() for origin in extra_origins.split(",") if origin.strip())

    return replace(preset, allowed_origins=origins)


def setup_cors(app: FastAPI, config: Optional[CORSConfig] = None) -> None:
    """
    Configure CORS middleware for the FastAPI application.

    Args:
        app: FastAPI application instance.
        config: CORS configuration. If None, loads from environment.
    """
    if config is None:
        config = get_cors_config()

    allow_origins = ["*"] if config.allow_all_origins else config.allowed_origins

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=config.allow_credentials and not config.allow_all_origins,
        allow_methods=config.allowed_methods,
        allow_headers=config.allowed_headers,
        expose_headers=config.expose_headers,
        max_age=config.max_age,
    )
