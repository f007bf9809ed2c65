from __future__ import annotations

import os

from pydantic import BaseModel, Field


class LifecycleConfig(BaseModel):
    """Runtime configuration for the role lifecycle tool."""

    graph_base_url: str = Field(
        default="https://graph.microsoft.com/v1.0",
        description="Base URL of the directory API. Falls back to PIM_GRAPH_BASE_URL env var.",
    )
    access_token: str | None = Field(
        default=None,
        description=(
            "Bearer token for the directory API, acquired by the external sign-in step. "
            "Falls back to PIM_ACCESS_TOKEN env var."
        ),
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        description="Per-request timeout for directory calls.",
    )
    role_definition_ttl_seconds: float = Field(
        default=300.0,
        description="How long fetched role definitions are reused.",
    )
    active_roles_ttl_seconds: float = Field(
        default=60.0,
        description="How long the set of active role ids for a principal is reused.",
    )
    schedule_instances_ttl_seconds: float = Field(
        default=30.0,
        description="How long the active assignment instance list for a principal is reused.",
    )
    lookup_workers: int = Field(
        default=4,
        description="Maximum concurrent role-definition lookups during resolution.",
    )
    fanout_threshold: int = Field(
        default=3,
        description="Role-definition lookups only run in parallel above this many candidates.",
    )
    default_duration: str = Field(
        default="1H",
        description="Duration pre-filled in the activation prompt (e.g. 2H30M).",
    )
    notify_webhook_urls: list[str] = Field(
        default_factory=list,
        description="Generic JSON webhooks notified after successful transitions.",
    )
    teams_webhook_url: str | None = Field(
        default=None,
        description="Incoming-webhook URL of a chat channel that receives MessageCards.",
    )
    log_level: str = Field(
        default="INFO",
        description="Python logging level. Falls back to PIM_LOG_LEVEL env var.",
    )
    log_file: str | None = Field(
        default=None,
        description=(
            "Log destination. The terminal belongs to the UI, so without a file only "
            "warnings reach stderr. Falls back to PIM_LOG_FILE env var."
        ),
    )

    def resolve(self) -> LifecycleConfig:
        """Return a copy with env-var fallbacks applied."""
        webhooks = os.getenv("PIM_NOTIFY_WEBHOOK_URLS")
        return self.model_copy(
            update={
                "graph_base_url": os.getenv(
                    "PIM_GRAPH_BASE_URL", self.graph_base_url
                ).rstrip("/"),
                "access_token": self.access_token or os.getenv("PIM_ACCESS_TOKEN"),
                "http_timeout_seconds": _env_float(
                    "PIM_HTTP_TIMEOUT_SECONDS", self.http_timeout_seconds
                ),
                "role_definition_ttl_seconds": _env_float(
                    "PIM_ROLE_DEFINITION_TTL_SECONDS", self.role_definition_ttl_seconds
                ),
                "active_roles_ttl_seconds": _env_float(
                    "PIM_ACTIVE_ROLES_TTL_SECONDS", self.active_roles_ttl_seconds
                ),
                "schedule_instances_ttl_seconds": _env_float(
                    "PIM_SCHEDULE_INSTANCES_TTL_SECONDS",
                    self.schedule_instances_ttl_seconds,
                ),
                "lookup_workers": int(
                    _env_float("PIM_LOOKUP_WORKERS", self.lookup_workers)
                ),
                "fanout_threshold": int(
                    _env_float("PIM_FANOUT_THRESHOLD", self.fanout_threshold)
                ),
                "default_duration": os.getenv(
                    "PIM_DEFAULT_DURATION", self.default_duration
                ),
                "notify_webhook_urls": (
                    [url.strip() for url in webhooks.split(",") if url.strip()]
                    if webhooks
                    else self.notify_webhook_urls
                ),
                "teams_webhook_url": self.teams_webhook_url
                or os.getenv("PIM_TEAMS_WEBHOOK_URL"),
                "log_level": os.getenv("PIM_LOG_LEVEL", self.log_level),
                "log_file": self.log_file or os.getenv("PIM_LOG_FILE"),
            }
        )


def _env_float(key: str, default: float) -> float:
    val = os.getenv(key)
    if val is None or not val.strip():
        return default
    return float(val)
