from __future__ import annotations

import logging

from .models import EffectiveProxy, ProxyConfig, ProxySource
from .store import EntityStore


class ProxyResolver:
    """Decides which proxy, if any, outbound calls for a config should use.

    Precedence, first match wins:

    1. the config's own proxy, when it is present and enabled;
    2. the global proxy, when it is enabled;
    3. no proxy (direct connection).

    A per-config proxy that is present but disabled does not hide the global
    one. Proxies are validated when written, so resolution only fails for an
    unknown config id.
    """

    def __init__(self, store: EntityStore) -> None:
        self._store = store
        self._log = logging.getLogger(__name__)

    async def resolve_proxy(self, config_id: str) -> EffectiveProxy:
        config = await self._store.get(config_id)
        if config.proxy is not None and config.proxy.enabled:
            effective = EffectiveProxy(source=ProxySource.PER_CONFIG, proxy=config.proxy)
        else:
            global_proxy = await self._store.get_global_proxy()
            if global_proxy.enabled:
                proxy = ProxyConfig.model_validate(global_proxy.model_dump())
                effective = EffectiveProxy(source=ProxySource.GLOBAL, proxy=proxy)
            else:
                effective = EffectiveProxy(source=ProxySource.NONE)
        self._log.debug("config %s resolves to %s proxy", config_id, effective.source.value)
        return effective
