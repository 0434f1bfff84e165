"""Application configuration using Pydantic Settings.

This module provides centralized configuration management for the Operations
Room backend. All settings can be overridden via environment variables or a
.env file.
"""

import json
import logging
from typing import Any

import structlog
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        database_path: SQLite file holding the agent_sessions and
            operations_events tables.
        event_log_capacity: Maximum number of events kept in the live feed.
        snapshot_session_limit: Number of non-terminal sessions fetched at startup.
        snapshot_event_limit: Number of recent events fetched at startup.
        grace_period_seconds: Delay between a sub-agent reaching a terminal
            status and its removal from the office.
        path_steps: Number of points produced by the path planner.
        frame_rate_hz: Animation ticks per second.
        operations_api_key: Bearer key required by the log endpoint. Empty
            disables authentication.
        backend_port: Port for the FastAPI server.
        cors_origins: Allowed origins for CORS.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """

    # Persistence
    database_path: str = "./data/operations.db"

    # Reconciliation
    event_log_capacity: int = 50
    snapshot_session_limit: int = 50
    snapshot_event_limit: int = 50

    # Office animation
    grace_period_seconds: float = 5.0
    path_steps: int = 20
    frame_rate_hz: float = 20.0

    # Inbound logging API
    operations_api_key: str = ""

    # Server Configuration
    backend_port: int = 8000
    cors_origins: str | list[str] = ["http://localhost:3000"]
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """Parse CORS origins from string or list.

        Accepts:
        - JSON array: '["http://localhost:3000"]'
        - Comma-separated: 'http://localhost:3000,http://localhost:8080'
        - Single value: 'http://localhost:3000'
        - Already a list: ["http://localhost:3000"]
        """
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return ["http://localhost:3000"]

    @field_validator("path_steps")
    @classmethod
    def validate_path_steps(cls, v: int) -> int:
        """A path needs at least its two endpoints."""
        if v < 2:
            raise ValueError("path_steps must be at least 2")
        return v

    @property
    def frame_interval_seconds(self) -> float:
        """Seconds between two animation ticks."""
        return 1.0 / self.frame_rate_hz if self.frame_rate_hz > 0 else 0.05

    model_config = SettingsConfigDict(
        # Support running `uvicorn` from either the repo root or `backend/`
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structured logging for the application.

    Sets up structlog with appropriate processors for either JSON or console output.

    Args:
        log_level: The minimum log level to emit (DEBUG, INFO, WARNING, ERROR).
        log_format: Output format - 'json' for production, 'text' for development.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Global settings instance
settings = Settings()

# Configure logging on module import
configure_logging(settings.log_level, settings.log_format)
