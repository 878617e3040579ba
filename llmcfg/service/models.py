from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from urllib.parse import quote
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    FieldSerializationInfo,
    SecretStr,
    field_serializer,
    field_validator,
    model_validator,
)

ProxyProtocol = Literal["http", "https", "socks4", "socks5"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dump_secret(value: Optional[SecretStr], info: FieldSerializationInfo) -> Optional[str]:
    """Reveal secrets only when the caller asks for them via the dump context."""
    if value is None:
        return None
    if info.context and info.context.get("reveal_secrets"):
        return value.get_secret_value()
    return str(value)


def _not_blank(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("name must not be empty")
    return value


class Provider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    BAIDU = "baidu"
    AZURE = "azure"
    GEMINI = "gemini"
    OLLAMA = "ollama"
    LOCAL = "local"
    DEEPSEEK = "deepseek"
    SILICON_FLOW = "silicon_flow"
    OPENROUTER = "openrouter"


class ProxyAuth(BaseModel):
    username: str = Field(..., min_length=1, description="Proxy user")
    password: SecretStr = Field(default=SecretStr(""), description="Proxy password")

    @field_serializer("password", when_used="json")
    def _serialize_password(self, value: SecretStr, info: FieldSerializationInfo) -> Optional[str]:
        return _dump_secret(value, info)


class ProxyConfig(BaseModel):
    enabled: bool = Field(default=False, description="Whether traffic goes through this proxy")
    protocol: ProxyProtocol = Field(default="http")
    host: str = Field(..., min_length=1, description="Proxy host name or address")
    port: int = Field(..., ge=1, le=65535)
    auth: Optional[ProxyAuth] = None
    timeout: int = Field(default=30000, ge=1000, le=120000, description="Downstream timeout in ms")
    retries: int = Field(default=3, ge=0, le=10, description="Downstream retry count")

    @field_validator("host", mode="before")
    @classmethod
    def _strip_host(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @property
    def url(self) -> str:
        credentials = ""
        if self.auth is not None:
            credentials = quote(self.auth.username, safe="")
            password = self.auth.password.get_secret_value()
            if password:
                credentials += ":" + quote(password, safe="")
            credentials += "@"
        return f"{self.protocol}://{credentials}{self.host}:{self.port}"


class GlobalProxyConfig(ProxyConfig):
    """Process-wide fallback proxy; the host may stay blank while it is disabled."""

    host: str = Field(default="", description="Proxy host name or address")
    port: int = Field(default=1080, ge=1, le=65535)

    @model_validator(mode="after")
    def _require_host_when_enabled(self) -> "GlobalProxyConfig":
        if self.enabled and not self.host:
            raise ValueError("host is required when the global proxy is enabled")
        return self


class Config(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    id: str = Field(default_factory=lambda: uuid4().hex, description="Unique config id")
    provider_id: Provider
    name: str = Field(..., min_length=1, description="Human-friendly config label")
    model_id: str = Field(..., min_length=1, description="Vendor model selector")
    model_name: str = ""
    is_default: bool = False
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    top_p: float = Field(default=1.0, ge=0.0, le=1.0)
    frequency_penalty: float = Field(default=0.0, ge=-2.0, le=2.0)
    presence_penalty: float = Field(default=0.0, ge=-2.0, le=2.0)
    max_tokens: int = Field(default=2048, ge=1)
    system_message: str = ""
    api_key: Optional[SecretStr] = Field(default=None, description="Overrides the provider-wide key")
    proxy: Optional[ProxyConfig] = None
    options: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        return _not_blank(value)

    @model_validator(mode="after")
    def _fill_model_name(self) -> "Config":
        if not self.model_name:
            self.model_name = self.model_id
        return self

    @field_serializer("api_key", when_used="json")
    def _serialize_api_key(self, value: Optional[SecretStr], info: FieldSerializationInfo) -> Optional[str]:
        return _dump_secret(value, info)


class ConfigCreate(BaseModel):
    """Fields accepted when a config is created; ids, flags and timestamps are assigned."""

    model_config = ConfigDict(extra="forbid", protected_namespaces=())

    provider_id: Provider
    name: str = Field(..., min_length=1)
    model_id: str = Field(..., min_length=1)
    model_name: str = ""
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    top_p: float = Field(default=1.0, ge=0.0, le=1.0)
    frequency_penalty: float = Field(default=0.0, ge=-2.0, le=2.0)
    presence_penalty: float = Field(default=0.0, ge=-2.0, le=2.0)
    max_tokens: int = Field(default=2048, ge=1)
    system_message: str = ""
    api_key: Optional[SecretStr] = None
    proxy: Optional[ProxyConfig] = None
    options: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        return _not_blank(value)


# Patch fields that may be set to null to clear them.
CLEARABLE_FIELDS = frozenset({"api_key", "proxy"})


class ConfigPatch(BaseModel):
    """Partial update; only fields explicitly set are merged."""

    model_config = ConfigDict(extra="forbid", protected_namespaces=())

    provider_id: Optional[Provider] = None
    name: Optional[str] = Field(default=None, min_length=1)
    model_id: Optional[str] = Field(default=None, min_length=1)
    model_name: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    top_p: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    frequency_penalty: Optional[float] = Field(default=None, ge=-2.0, le=2.0)
    presence_penalty: Optional[float] = Field(default=None, ge=-2.0, le=2.0)
    max_tokens: Optional[int] = Field(default=None, ge=1)
    system_message: Optional[str] = None
    api_key: Optional[SecretStr] = None
    proxy: Optional[ProxyConfig] = None
    options: Optional[Dict[str, Any]] = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: Optional[str]) -> Optional[str]:
        return value if value is None else _not_blank(value)

    @model_validator(mode="after")
    def _reject_nulls(self) -> "ConfigPatch":
        for name in self.model_fields_set:
            if name not in CLEARABLE_FIELDS and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> Dict[str, Any]:
        # Nested models are kept as-is so a patched proxy is a full replacement.
        return {name: getattr(self, name) for name in self.model_fields_set}


class ProxySource(str, Enum):
    PER_CONFIG = "per-config"
    GLOBAL = "global"
    NONE = "none"


class EffectiveProxy(BaseModel):
    source: ProxySource
    proxy: Optional[ProxyConfig] = None

    @property
    def url(self) -> Optional[str]:
        return self.proxy.url if self.proxy is not None else None


class StoreSnapshot(BaseModel):
    """On-disk layout of the entity store."""

    configs: List[Config] = Field(default_factory=list)
    global_proxy: Optional[GlobalProxyConfig] = None
