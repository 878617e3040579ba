from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from .errors import NotFoundError, ValidationError
from .models import Config, ConfigCreate, ConfigPatch, Provider, ProxyConfig, utcnow
from .store import EntityStore


def _touch(config: Config, now: Optional[datetime] = None) -> datetime:
    # updated_at never moves backwards, even if the wall clock does.
    now = now or utcnow()
    return max(now, config.updated_at)


class ConfigRegistry:
    """Owns the config lifecycle and the one-default-per-provider rule.

    Mutations for a provider run inside that provider's lock so the
    read-modify-write of sibling configs cannot interleave. Reads go
    straight to the store.
    """

    def __init__(self, store: EntityStore) -> None:
        self._store = store
        self._locks: Dict[Provider, asyncio.Lock] = {}
        self._log = logging.getLogger(__name__)

    def _provider_lock(self, provider_id: Provider) -> asyncio.Lock:
        return self._locks.setdefault(provider_id, asyncio.Lock())

    async def list_configs(self, provider_id: Optional[Provider] = None) -> List[Config]:
        configs = await self._store.list()
        if provider_id is None:
            return configs
        return [config for config in configs if config.provider_id == provider_id]

    async def get_config(self, config_id: str) -> Config:
        return await self._store.get(config_id)

    async def get_default_config(self, provider_id: Provider) -> Optional[Config]:
        for config in await self.list_configs(provider_id):
            if config.is_default:
                return config
        return None

    async def create_config(self, data: ConfigCreate) -> Config:
        async with self._provider_lock(data.provider_id):
            siblings = await self.list_configs(data.provider_id)
            now = utcnow()
            config = Config(**dict(data), is_default=not siblings, created_at=now, updated_at=now)
            await self._store.put(config)
        self._log.info(
            "created config %s for %s (default=%s)", config.id, config.provider_id.value, config.is_default
        )
        return config

    async def update_config(self, config_id: str, patch: ConfigPatch) -> Config:
        current = await self._store.get(config_id)
        changes = patch.changes()
        provider_id = changes.pop("provider_id", current.provider_id)
        if provider_id != current.provider_id:
            raise ValidationError(
                "provider_id cannot be changed once a config is created",
                details={"id": config_id, "provider_id": current.provider_id.value},
            )
        async with self._provider_lock(current.provider_id):
            current = await self._store.get(config_id)
            updated = self._merge(current, changes)
            await self._store.put(updated)
        self._log.debug("updated config %s fields=%s", config_id, sorted(changes))
        return updated

    async def set_config_proxy(self, config_id: str, proxy: Optional[ProxyConfig]) -> Config:
        current = await self._store.get(config_id)
        async with self._provider_lock(current.provider_id):
            current = await self._store.get(config_id)
            updated = current.model_copy(update={"proxy": proxy, "updated_at": _touch(current)})
            await self._store.put(updated)
        self._log.debug("config %s proxy %s", config_id, "cleared" if proxy is None else "replaced")
        return updated

    async def delete_config(self, config_id: str) -> None:
        current = await self._store.get(config_id)
        async with self._provider_lock(current.provider_id):
            await self._store.delete(config_id)
        if current.is_default:
            self._log.info(
                "deleted default config %s; %s has no default until one is selected",
                config_id,
                current.provider_id.value,
            )
        else:
            self._log.info("deleted config %s", config_id)

    async def set_default_config(self, config_id: str) -> None:
        current = await self._store.get(config_id)
        async with self._provider_lock(current.provider_id):
            siblings = await self.list_configs(current.provider_id)
            if not any(config.id == config_id for config in siblings):
                raise NotFoundError(config_id)
            now = utcnow()
            changed = []
            for config in siblings:
                is_default = config.id == config_id
                if config.is_default != is_default:
                    config.is_default = is_default
                    config.updated_at = _touch(config, now)
                    changed.append(config)
            if changed:
                await self._store.put_many(changed)
        self._log.info("config %s is now the default for %s", config_id, current.provider_id.value)

    def _merge(self, current: Config, changes: Dict[str, Any]) -> Config:
        data = dict(current)
        data.update(changes)
        # A display name that was only mirroring the model id follows it.
        if "model_id" in changes and "model_name" not in changes and current.model_name == current.model_id:
            data["model_name"] = changes["model_id"]
        data["updated_at"] = _touch(current)
        try:
            return Config.model_validate(data)
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(exc) from exc
