from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from .crypto import SecretCipher
from .errors import NotFoundError, StoreError
from .models import Config, GlobalProxyConfig, StoreSnapshot

STORE_PATH_ENV = "LLMCFG_STORE_PATH"
KEY_FILE_NAME = "security-key.dat"

# Try to find the store relative to the package, then fall back to project root
store_in_package = Path(__file__).parent.parent / "config" / "store.json"
store_in_project = Path("config/store.json")


def default_store_path() -> Path:
    override = os.environ.get(STORE_PATH_ENV)
    if override:
        return Path(override)
    if store_in_package.exists():
        return store_in_package
    if store_in_project.exists():
        return store_in_project
    # Default to the package location (will be created if needed)
    return store_in_package


class EntityStore:
    """Insertion-ordered record store for configs and the global proxy.

    Every mutation builds a complete snapshot and hands it to ``_commit``;
    the in-memory state is only swapped once the commit returned, so a
    failed write is never observable. Subclasses persist snapshots by
    overriding ``_load`` and ``_commit``.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._configs: Dict[str, Config] = {}
        self._global_proxy: Optional[GlobalProxyConfig] = None
        self._started = False
        self._log = logging.getLogger(__name__)

    async def startup(self) -> None:
        async with self._lock:
            if self._started:
                return
            snapshot = self._load()
            if snapshot.global_proxy is None:
                self._log.info("creating default global proxy record")
                snapshot.global_proxy = GlobalProxyConfig()
                self._commit(snapshot)
            self._configs = {config.id: config for config in snapshot.configs}
            self._global_proxy = snapshot.global_proxy
            self._started = True
            self._log.info("store loaded with %s configs", len(self._configs))

    def _load(self) -> StoreSnapshot:
        return StoreSnapshot()

    def _commit(self, snapshot: StoreSnapshot) -> None:
        """Persist ``snapshot``; raise ``StoreError`` to abort the mutation."""

    async def _ensure_started(self) -> None:
        if not self._started:
            await self.startup()

    async def get(self, config_id: str) -> Config:
        await self._ensure_started()
        config = self._configs.get(config_id)
        if config is None:
            raise NotFoundError(config_id)
        return config.model_copy(deep=True)

    async def list(self) -> List[Config]:
        await self._ensure_started()
        return [config.model_copy(deep=True) for config in self._configs.values()]

    async def put(self, config: Config) -> None:
        await self.put_many([config])

    async def put_many(self, configs: Iterable[Config]) -> None:
        """Write several configs in one commit."""
        await self._ensure_started()
        async with self._lock:
            updated = dict(self._configs)
            for config in configs:
                updated[config.id] = config.model_copy(deep=True)
            self._apply(updated, self._global_proxy)

    async def delete(self, config_id: str) -> None:
        await self._ensure_started()
        async with self._lock:
            if config_id not in self._configs:
                raise NotFoundError(config_id)
            updated = {key: value for key, value in self._configs.items() if key != config_id}
            self._apply(updated, self._global_proxy)

    async def get_global_proxy(self) -> GlobalProxyConfig:
        await self._ensure_started()
        assert self._global_proxy is not None
        return self._global_proxy.model_copy(deep=True)

    async def put_global_proxy(self, proxy: GlobalProxyConfig) -> None:
        await self._ensure_started()
        async with self._lock:
            self._apply(self._configs, proxy.model_copy(deep=True))

    def _apply(self, configs: Dict[str, Config], global_proxy: Optional[GlobalProxyConfig]) -> None:
        self._commit(StoreSnapshot(configs=list(configs.values()), global_proxy=global_proxy))
        self._configs = configs
        self._global_proxy = global_proxy


class JsonEntityStore(EntityStore):
    """Entity store persisted as a single JSON document.

    API keys and proxy passwords are encrypted with a Fernet key kept in
    ``key_path`` (``security-key.dat`` beside the store by default), which is
    generated on first start.
    """

    def __init__(self, path: Path, key_path: Optional[Path] = None) -> None:
        super().__init__()
        self._path = path
        self._key_path = key_path or path.with_name(KEY_FILE_NAME)
        self._cipher: Optional[SecretCipher] = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def key_path(self) -> Path:
        return self._key_path

    def _get_cipher(self) -> SecretCipher:
        if self._cipher is None:
            self._cipher = SecretCipher.from_key_file(self._key_path)
        return self._cipher

    def _load(self) -> StoreSnapshot:
        if not self._path.exists():
            self._log.info("initialising empty store at %s", self._path)
            return StoreSnapshot()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            _map_secrets(data, self._get_cipher().decrypt)
            snapshot = StoreSnapshot.model_validate(data)
        except OSError as exc:
            raise StoreError(f"Cannot read store {self._path}: {exc}") from exc
        except (UnicodeDecodeError, json.JSONDecodeError, PydanticValidationError) as exc:
            raise StoreError(f"Store {self._path} is corrupt: {exc}") from exc
        check_integrity(snapshot, self._path)
        return snapshot

    def _commit(self, snapshot: StoreSnapshot) -> None:
        payload = snapshot.model_dump(mode="json", context={"reveal_secrets": True})
        _map_secrets(payload, self._get_cipher().encrypt)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as exc:
            raise StoreError(f"Cannot write store {self._path}: {exc}") from exc
        self._log.debug("wrote %s configs to %s", len(snapshot.configs), self._path)


def _map_secrets(data: Any, transform: Callable[[str], str]) -> None:
    """Apply ``transform`` in place to every non-empty secret in a raw store document."""
    if not isinstance(data, dict):
        return
    proxies = [data.get("global_proxy")]
    for config in data.get("configs") or []:
        if not isinstance(config, dict):
            continue
        if isinstance(config.get("api_key"), str) and config["api_key"]:
            config["api_key"] = transform(config["api_key"])
        proxies.append(config.get("proxy"))
    for proxy in proxies:
        auth = proxy.get("auth") if isinstance(proxy, dict) else None
        if isinstance(auth, dict) and isinstance(auth.get("password"), str) and auth["password"]:
            auth["password"] = transform(auth["password"])


def check_integrity(snapshot: StoreSnapshot, path: Path) -> None:
    seen = set()
    defaults = set()
    for config in snapshot.configs:
        if config.id in seen:
            raise StoreError(f"Store {path} is corrupt: duplicate config id {config.id}")
        seen.add(config.id)
        if config.is_default:
            if config.provider_id in defaults:
                raise StoreError(
                    f"Store {path} is corrupt: several defaults for {config.provider_id.value}"
                )
            defaults.add(config.provider_id)
