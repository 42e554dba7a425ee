import json
import re
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


# Headers whose values routinely carry quotes or URLs. A trailing "*"
# matches a name prefix.
DEFAULT_SKIP_HEADERS = [
    "accept",
    "accept-encoding",
    "accept-language",
    "authorization",
    "cache-control",
    "connection",
    "content-length",
    "content-type",
    "cookie",
    "dnt",
    "host",
    "if-match",
    "if-modified-since",
    "if-none-match",
    "origin",
    "pragma",
    "priority",
    "referer",
    "sec-ch-*",
    "sec-fetch-*",
    "sec-gpc",
    "te",
    "upgrade-insecure-requests",
    "user-agent",
]


def _parse_list(raw: Any) -> list[str]:
    """Parse a list setting given as a list, a JSON array or a delimited string."""
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []

    # Prefer JSON, but tolerate "10.0.0.0/8, 192.168.0.0/16" style values
    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]

    seen: set[str] = set()
    result: list[str] = []
    for part in re.split(r"[,\s]+", raw):
        if part and part not in seen:
            seen.add(part)
            result.append(part)
    return result


class TierSettings(BaseModel):
    """Budget and window for one quota tier."""

    budget: int
    window: float

    @field_validator("budget")
    @classmethod
    def validate_budget(cls, v: int) -> int:
        if v < 1:
            raise ValueError("tier budget must be at least 1")
        return v

    @field_validator("window")
    @classmethod
    def validate_window(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("tier window must be positive")
        return v


class Settings(BaseSettings):
    """Admission gateway settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    Dict and list settings accept JSON, e.g.
    ``TIERS='{"default": {"budget": 60, "window": 60}}'``.
    """

    # Debug mode - enables detailed error responses
    debug: bool = False

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    # Redis settings (optional, shared ledger across instances)
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"

    # Quota ledger settings
    ledger_key_prefix: str = "admitgate:ledger"
    ledger_max_keys: int = 100_000  # In-memory backend LRU bound
    ledger_failure_mode: Literal["fail_closed", "fail_open"] = "fail_closed"
    ledger_unavailable_retry_after: float = 1.0

    # Quota tiers
    tiers: dict[str, TierSettings] = Field(
        default_factory=lambda: {"default": TierSettings(budget=60, window=60.0)}
    )
    caller_tiers: dict[str, str] = Field(default_factory=dict)
    default_tier: str = "default"
    endpoint_budget_fraction: float = 0.1

    # Address policy (CIDR ranges or bare addresses)
    address_allow: Annotated[list[str], NoDecode] = []
    address_deny: Annotated[list[str], NoDecode] = []

    # Additional threat patterns, keyed by category value
    # (injection | script_injection | path_traversal)
    extra_threat_patterns: dict[str, list[str]] = Field(default_factory=dict)

    # HTTP adapter settings
    trust_forwarded_for: bool = False
    skip_headers: Annotated[list[str], NoDecode] = DEFAULT_SKIP_HEADERS

    @field_validator("address_allow", "address_deny", mode="before")
    @classmethod
    def decode_address_lists(cls, v: Any) -> list[str]:
        return _parse_list(v)

    @field_validator("skip_headers", mode="before")
    @classmethod
    def decode_skip_headers(cls, v: Any) -> list[str]:
        return [h.lower() for h in _parse_list(v)]

    @field_validator("ledger_max_keys")
    @classmethod
    def validate_max_keys(cls, v: int) -> int:
        """Validate the in-memory key bound is positive."""
        if v < 1:
            raise ValueError("ledger_max_keys must be at least 1")
        return v

    @field_validator("ledger_unavailable_retry_after")
    @classmethod
    def validate_retry_after(cls, v: float) -> float:
        """Validate fail-closed retry hint is positive."""
        if v <= 0:
            raise ValueError("ledger_unavailable_retry_after must be positive")
        return v

    @field_validator("endpoint_budget_fraction")
    @classmethod
    def validate_endpoint_fraction(cls, v: float) -> float:
        """Validate endpoint fraction lies in (0, 1]."""
        if not 0 < v <= 1:
            raise ValueError("endpoint_budget_fraction must be in (0, 1]")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "structured", "json"):
            raise ValueError("log_format must be one of: text, structured, json")
        return v

    @model_validator(mode="after")
    def validate_tier_table(self) -> "Settings":
        """Validate that every referenced tier is defined."""
        if self.default_tier not in self.tiers:
            raise ValueError(f"default_tier '{self.default_tier}' is not defined in tiers")
        for caller, tier in self.caller_tiers.items():
            if tier not in self.tiers:
                raise ValueError(f"caller '{caller}' mapped to undefined tier '{tier}'")
        return self

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
