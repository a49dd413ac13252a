"""
threatmap configuration.

Only the backend URL is required at startup; the monitor will refuse to
start without it. Everything else has a working default. The push channel
URL is derived from the backend URL unless set explicitly; components that
need more than the defaults are validated lazily via validate_for().
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Maps each component to the settings fields it requires beyond the
# always-required backend URL.
_COMPONENT_REQUIRED_FIELDS: dict[str, list[str]] = {
    "api": [
        "api_host",
        "api_port",
    ],
    "authenticated": [
        "backend_api_token",
    ],
}

_KNOWN_COMPONENTS = set(_COMPONENT_REQUIRED_FIELDS.keys())

_STREAM_PATH = "/ws/threats"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Required at startup: ValidationError raised immediately if missing
    # ------------------------------------------------------------------
    threat_backend_url: str

    # ------------------------------------------------------------------
    # Feed sources
    # ------------------------------------------------------------------
    threat_stream_url: Optional[str] = None   # derived from the backend URL when unset
    backend_api_token: Optional[str] = None   # sent as a bearer token when set
    require_auth: bool = False                # refuse to start without backend_api_token
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    snapshot_refresh_seconds: float = Field(default=0.0, ge=0)   # 0 = fetch at startup only
    stream_reconnect_seconds: float = Field(default=2.0, gt=0)
    stream_max_reconnect_seconds: float = Field(default=60.0, gt=0)

    # ------------------------------------------------------------------
    # Working set
    # ------------------------------------------------------------------
    feed_capacity: int = Field(default=50, ge=1)
    freshness_window_seconds: float = Field(default=10.0, gt=0)
    mitigated_memory: int = Field(default=1000, ge=0)

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------
    globe_radius: float = Field(default=2.0, gt=0)
    arc_segments: int = Field(default=50, ge=1)

    # ------------------------------------------------------------------
    # App
    # ------------------------------------------------------------------
    api_host: Optional[str] = "0.0.0.0"
    api_port: Optional[int] = 8000
    log_level: str = "INFO"

    def resolved_stream_url(self) -> str:
        """Return the push channel URL, deriving ws(s)://<backend>/ws/threats if unset."""
        if self.threat_stream_url:
            return self.threat_stream_url

        parts = urlsplit(self.threat_backend_url)
        scheme = {"https": "wss", "http": "ws"}.get(parts.scheme, parts.scheme)
        path = parts.path.rstrip("/") + _STREAM_PATH
        return urlunsplit((scheme, parts.netloc, path, "", ""))

    def validate_for(self, component: str) -> None:
        """Assert that all settings required by *component* are present.

        Call this before starting the component. Raises RuntimeError with a
        specific, actionable message if any required environment variable
        is missing.

        Raises:
            ValueError: If *component* is not a recognised component.
            RuntimeError: If one or more required settings are absent.
        """
        if component not in _KNOWN_COMPONENTS:
            raise ValueError(
                f"Unknown component '{component}'. "
                f"Known components: {', '.join(sorted(_KNOWN_COMPONENTS))}"
            )

        required = _COMPONENT_REQUIRED_FIELDS[component]
        missing = [
            field for field in required if getattr(self, field, None) is None
        ]

        if missing:
            missing_vars = ", ".join(m.upper() for m in missing)
            raise RuntimeError(
                f"Component '{component}' cannot start: "
                f"missing required environment variables: {missing_vars}. "
                f"Set these in your .env file (see .env.example)."
            )


@lru_cache
def get_settings() -> Settings:
    """Return the cached application settings.

    In tests, clear the cache with get_settings.cache_clear() after
    patching environment variables, or instantiate Settings() directly
    with _env_file=None to avoid reading the .env file.
    """
    return Settings()
