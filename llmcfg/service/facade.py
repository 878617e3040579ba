from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .models import (
    Config,
    ConfigCreate,
    ConfigPatch,
    EffectiveProxy,
    GlobalProxyConfig,
    Provider,
    ProxyConfig,
)
from .registry import ConfigRegistry
from .resolver import ProxyResolver
from .store import EntityStore

ModelT = TypeVar("ModelT", bound=BaseModel)
Payload = Union[Mapping[str, Any], BaseModel]


def _parse(model_cls: Type[ModelT], data: Payload) -> ModelT:
    if isinstance(data, model_cls):
        return data
    try:
        if isinstance(data, BaseModel):
            data = data.model_dump(exclude_unset=True)
        return model_cls.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic(exc) from exc


def _parse_provider(value: Union[str, Provider]) -> Provider:
    try:
        return Provider(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown provider {value!r}", details={"provider_id": str(value)}) from exc


class ConfigService:
    """Entry point for callers of the configuration service.

    Inputs arrive as mappings (decoded request bodies) or models. Malformed
    input is reported as ``ValidationError``, unknown ids as
    ``NotFoundError`` and storage failures as ``StoreError``. Each operation
    writes at most one store snapshot, so a failure leaves the store as it
    was before the call.
    """

    def __init__(self, store: EntityStore) -> None:
        self._store = store
        self._registry = ConfigRegistry(store)
        self._resolver = ProxyResolver(store)
        self._log = logging.getLogger(__name__)

    @property
    def store(self) -> EntityStore:
        return self._store

    async def startup(self) -> None:
        await self._store.startup()

    async def get_configs(self, provider_id: Optional[Union[str, Provider]] = None) -> List[Config]:
        provider = _parse_provider(provider_id) if provider_id is not None else None
        return await self._registry.list_configs(provider)

    async def get_config(self, config_id: str) -> Config:
        return await self._registry.get_config(config_id)

    async def get_default_config(self, provider_id: Union[str, Provider]) -> Optional[Config]:
        return await self._registry.get_default_config(_parse_provider(provider_id))

    async def create_config(self, data: Payload) -> Config:
        return await self._registry.create_config(_parse(ConfigCreate, data))

    async def update_config(self, config_id: str, patch: Payload) -> Config:
        return await self._registry.update_config(config_id, _parse(ConfigPatch, patch))

    async def delete_config(self, config_id: str) -> None:
        await self._registry.delete_config(config_id)

    async def set_default_config(self, config_id: str) -> None:
        await self._registry.set_default_config(config_id)

    async def get_global_proxy(self) -> GlobalProxyConfig:
        return await self._store.get_global_proxy()

    async def set_global_proxy(self, data: Payload) -> None:
        proxy = _parse(GlobalProxyConfig, data)
        await self._store.put_global_proxy(proxy)
        self._log.info("global proxy %s", "enabled" if proxy.enabled else "disabled")

    async def set_config_proxy(self, config_id: str, data: Optional[Payload]) -> None:
        proxy = _parse(ProxyConfig, data) if data is not None else None
        await self._registry.set_config_proxy(config_id, proxy)

    async def get_config_proxy(self, config_id: str) -> EffectiveProxy:
        return await self._resolver.resolve_proxy(config_id)
