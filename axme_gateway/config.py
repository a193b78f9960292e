from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import Any, Callable, Mapping

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class AxmeClientConfig:
    base_url: str
    api_key: str = field(repr=False)
    timeout_seconds: float = 15.0
    max_retries: int = 2
    retry_backoff_seconds: float = 0.2
    auto_trace_id: bool = True
    default_owner_agent: str | None = None
    mcp_endpoint_path: str = "/mcp"
    mcp_protocol_version: str = "2024-11-05"
    mcp_observer: Callable[[dict[str, Any]], None] | None = None

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ValueError("base_url must be non-empty")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.retry_backoff_seconds < 0:
            raise ValueError("retry_backoff_seconds must be >= 0")
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))

    @classmethod
    def from_env(
        cls,
        *,
        prefix: str = "AXME_",
        environ: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> "AxmeClientConfig":
        """Build a config from ``AXME_*`` environment variables.

        Keyword overrides win over the environment. ``AXME_BASE_URL`` and
        ``AXME_API_KEY`` are required unless passed as overrides.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        def read(name: str) -> str | None:
            raw = env.get(prefix + name)
            if raw is None or not raw.strip():
                return None
            return raw.strip()

        for key, name in (("base_url", "BASE_URL"), ("api_key", "API_KEY"), ("default_owner_agent", "OWNER_AGENT")):
            raw = read(name)
            if raw is not None:
                values[key] = raw
        for key, name in (("timeout_seconds", "TIMEOUT_SECONDS"), ("retry_backoff_seconds", "RETRY_BACKOFF_SECONDS")):
            raw = read(name)
            if raw is not None:
                values[key] = _parse_number(prefix + name, raw, float)
        raw = read("MAX_RETRIES")
        if raw is not None:
            values["max_retries"] = _parse_number(prefix + "MAX_RETRIES", raw, int)
        raw = read("AUTO_TRACE_ID")
        if raw is not None:
            values["auto_trace_id"] = _parse_bool(prefix + "AUTO_TRACE_ID", raw)

        values.update(overrides)
        for required in ("base_url", "api_key"):
            if not values.get(required):
                raise ValueError(f"{prefix}{required.upper()} is not set")
        return cls(**values)


def _parse_number(name: str, raw: str, kind: Callable[[str], Any]) -> Any:
    try:
        return kind(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _parse_bool(name: str, raw: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")
