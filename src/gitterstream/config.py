"""Client configuration via environment variables (GITTER_ prefix) or defaults."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class ClientConfig(BaseSettings):
    api_base_url: str = "https://api.gitter.im/"
    stream_base_url: str = "https://stream.gitter.im/"
    api_version: str = "v1/"
    token: str | None = None
    connect_timeout: float = 10.0
    request_timeout: float = 30.0
    stream_max_pending: int = 64
    log_dir: str | None = None
    log_level: str = "INFO"

    model_config = {"env_prefix": "GITTER_"}

    @property
    def api_base(self) -> str:
        """Versioned base for request/response endpoints, e.g. https://api.gitter.im/v1/."""
        return _join_base(self.api_base_url, self.api_version)

    @property
    def stream_base(self) -> str:
        """Versioned base for the streaming endpoint."""
        return _join_base(self.stream_base_url, self.api_version)


def _join_base(base_url: str, version: str) -> str:
    version = version.strip("/")
    if not version:
        return base_url.rstrip("/") + "/"
    return f"{base_url.rstrip('/')}/{version}/"
