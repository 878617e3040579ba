"""Validates the config store file structure and the one-default-per-provider rule."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from llmcfg.service.errors import StoreError
from llmcfg.service.models import Provider, StoreSnapshot
from llmcfg.service.store import check_integrity, default_store_path


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    store_path = Path(argv[0]) if argv else default_store_path()
    if not store_path.exists():
        print(f"{store_path} does not exist")
        return 1
    try:
        data = json.loads(store_path.read_text(encoding="utf-8"))
        snapshot = StoreSnapshot.model_validate(data)
        check_integrity(snapshot, store_path)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValidationError, StoreError) as exc:
        print("Store invalid:\n")
        print(exc)
        return 1

    counts: Dict[Provider, int] = {}
    defaults = set()
    for config in snapshot.configs:
        counts[config.provider_id] = counts.get(config.provider_id, 0) + 1
        if config.is_default:
            defaults.add(config.provider_id)

    missing = [provider for provider in counts if provider not in defaults]
    if missing:
        print("Warnings:")
        for provider in missing:
            print(f" - Provider {provider.value} has {counts[provider]} configs but no default")
    else:
        print("Store OK.")

    print("Providers:")
    for provider, count in counts.items():
        print(f" - {provider.value} -> {count} configs")
    proxy = snapshot.global_proxy
    if proxy is not None and proxy.enabled:
        print(f"Global proxy: {proxy.protocol}://{proxy.host}:{proxy.port}")
    else:
        print("Global proxy: disabled")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
