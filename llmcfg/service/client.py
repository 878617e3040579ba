from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from .facade import ConfigService
from .models import EffectiveProxy

DEFAULT_TIMEOUT = 60.0
DEFAULT_RETRIES = 0

logger = logging.getLogger(__name__)


def client_options(effective: EffectiveProxy) -> Dict[str, Any]:
    """Translate an effective proxy into downstream client settings (seconds, not ms)."""
    if effective.proxy is None:
        return {"proxy": None, "timeout": DEFAULT_TIMEOUT, "retries": DEFAULT_RETRIES}
    proxy = effective.proxy
    return {"proxy": proxy.url, "timeout": proxy.timeout / 1000, "retries": proxy.retries}


def build_http_client(
    effective: EffectiveProxy,
    base_url: str = "",
    headers: Optional[Dict[str, str]] = None,
) -> httpx.AsyncClient:
    options = client_options(effective)
    # Retries here are connection retries performed by the transport.
    transport = httpx.AsyncHTTPTransport(proxy=options["proxy"], retries=options["retries"])
    logger.debug(
        "building client for %s via %s proxy", base_url or "<no base url>", effective.source.value
    )
    return httpx.AsyncClient(
        base_url=base_url,
        headers=headers,
        timeout=options["timeout"],
        transport=transport,
    )


async def build_config_client(
    service: ConfigService,
    config_id: str,
    base_url: str = "",
    headers: Optional[Dict[str, str]] = None,
) -> httpx.AsyncClient:
    effective = await service.get_config_proxy(config_id)
    return build_http_client(effective, base_url=base_url, headers=headers)
