import json
from pathlib import Path

import pytest

from llmcfg.service.errors import NotFoundError, StoreError
from llmcfg.service.models import Config, GlobalProxyConfig, Provider, ProxyAuth, ProxyConfig
from llmcfg.service.store import EntityStore, JsonEntityStore


def _config(name: str, provider: Provider = Provider.OPENAI, **extra) -> Config:
    return Config(provider_id=provider, name=name, model_id="gpt-4o", **extra)


@pytest.mark.asyncio
async def test_startup_creates_missing_store_file(tmp_path: Path):
    store_path = tmp_path / "nested" / "store.json"
    store = JsonEntityStore(store_path)
    await store.startup()

    assert store_path.exists()
    on_disk = json.loads(store_path.read_text())
    assert on_disk["configs"] == []
    assert on_disk["global_proxy"]["enabled"] is False
    assert on_disk["global_proxy"]["port"] == 1080


@pytest.mark.asyncio
async def test_configs_survive_reload_with_secrets(tmp_path: Path):
    store_path = tmp_path / "store.json"
    store = JsonEntityStore(store_path)
    proxy = ProxyConfig(
        enabled=True,
        protocol="socks5",
        host="10.0.0.1",
        port=1080,
        auth=ProxyAuth(username="alice", password="s3cret"),
    )
    first = _config("Primary", api_key="sk-test", proxy=proxy)
    second = _config("Backup", provider=Provider.ANTHROPIC)
    await store.put(first)
    await store.put(second)

    raw = store_path.read_text()
    assert "sk-test" not in raw
    assert "s3cret" not in raw
    on_disk = json.loads(raw)
    assert on_disk["configs"][0]["api_key"].startswith("fernet:")
    assert on_disk["configs"][0]["proxy"]["auth"]["password"].startswith("fernet:")
    assert on_disk["configs"][1]["api_key"] is None
    assert (tmp_path / "security-key.dat").exists()

    reloaded = JsonEntityStore(store_path)
    await reloaded.startup()
    configs = await reloaded.list()
    assert [c.id for c in configs] == [first.id, second.id]
    assert configs[0].api_key.get_secret_value() == "sk-test"
    assert configs[0].proxy.auth.password.get_secret_value() == "s3cret"
    assert configs[0].created_at == first.created_at


@pytest.mark.asyncio
async def test_put_existing_keeps_insertion_position():
    store = EntityStore()
    a, b, c = _config("a"), _config("b"), _config("c")
    await store.put_many([a, b, c])

    b.name = "b-renamed"
    await store.put(b)

    names = [config.name for config in await store.list()]
    assert names == ["a", "b-renamed", "c"]


@pytest.mark.asyncio
async def test_returned_records_are_copies():
    store = EntityStore()
    config = _config("a")
    await store.put(config)

    fetched = await store.get(config.id)
    fetched.name = "mutated"

    assert (await store.get(config.id)).name == "a"


@pytest.mark.asyncio
async def test_get_and_delete_unknown_id():
    store = EntityStore()
    with pytest.raises(NotFoundError):
        await store.get("missing")
    with pytest.raises(NotFoundError):
        await store.delete("missing")


@pytest.mark.asyncio
async def test_global_proxy_created_with_defaults_on_first_access(tmp_path: Path):
    store_path = tmp_path / "store.json"
    store = JsonEntityStore(store_path)

    proxy = await store.get_global_proxy()

    assert proxy.enabled is False
    assert proxy.protocol == "http"
    assert proxy.port == 1080
    assert json.loads(store_path.read_text())["global_proxy"]["port"] == 1080


@pytest.mark.asyncio
async def test_global_proxy_is_updated_in_place(tmp_path: Path):
    store_path = tmp_path / "store.json"
    store = JsonEntityStore(store_path)
    await store.put_global_proxy(GlobalProxyConfig(enabled=True, host="global.local", port=8080))

    reloaded = JsonEntityStore(store_path)
    proxy = await reloaded.get_global_proxy()
    assert proxy.enabled is True
    assert proxy.host == "global.local"


@pytest.mark.asyncio
async def test_corrupt_file_raises_store_error(tmp_path: Path):
    store_path = tmp_path / "store.json"
    store_path.write_text("{not json")

    with pytest.raises(StoreError):
        await JsonEntityStore(store_path).startup()


@pytest.mark.asyncio
async def test_non_utf8_file_raises_store_error(tmp_path: Path):
    store_path = tmp_path / "store.json"
    store_path.write_bytes(b'{"configs": [], "x": "\xff\xfe"}')

    with pytest.raises(StoreError):
        await JsonEntityStore(store_path).startup()


@pytest.mark.asyncio
async def test_global_proxy_password_is_encrypted(tmp_path: Path):
    store_path = tmp_path / "store.json"
    store = JsonEntityStore(store_path)
    await store.put_global_proxy(
        GlobalProxyConfig(enabled=True, host="global.local", auth={"username": "bob", "password": "hunter2"})
    )

    assert "hunter2" not in store_path.read_text()
    reloaded = JsonEntityStore(store_path)
    proxy = await reloaded.get_global_proxy()
    assert proxy.auth.password.get_secret_value() == "hunter2"


@pytest.mark.asyncio
async def test_secrets_need_the_matching_key(tmp_path: Path):
    store_path = tmp_path / "store.json"
    await JsonEntityStore(store_path).put(_config("a", api_key="sk-test"))

    other_key = tmp_path / "other" / "security-key.dat"
    with pytest.raises(StoreError):
        await JsonEntityStore(store_path, key_path=other_key).startup()


@pytest.mark.asyncio
async def test_plaintext_secrets_from_older_files_are_read(tmp_path: Path):
    store_path = tmp_path / "store.json"
    record = {"provider_id": "openai", "name": "a", "model_id": "gpt-4o", "api_key": "sk-old"}
    store_path.write_text(json.dumps({"configs": [record]}))

    store = JsonEntityStore(store_path)
    await store.startup()

    [config] = await store.list()
    assert config.api_key.get_secret_value() == "sk-old"
    assert "sk-old" not in store_path.read_text()


@pytest.mark.asyncio
async def test_file_with_two_defaults_for_one_provider_is_rejected(tmp_path: Path):
    store_path = tmp_path / "store.json"
    records = [
        {"provider_id": "openai", "name": "a", "model_id": "gpt-4o", "is_default": True},
        {"provider_id": "openai", "name": "b", "model_id": "gpt-4o", "is_default": True},
    ]
    store_path.write_text(json.dumps({"configs": records}))

    with pytest.raises(StoreError):
        await JsonEntityStore(store_path).startup()


class FlakyStore(EntityStore):
    def __init__(self) -> None:
        super().__init__()
        self.fail = False

    def _commit(self, snapshot) -> None:
        if self.fail:
            raise StoreError("disk full")


@pytest.mark.asyncio
async def test_failed_commit_leaves_state_untouched():
    store = FlakyStore()
    config = _config("a")
    await store.put(config)

    store.fail = True
    with pytest.raises(StoreError):
        await store.put(_config("b"))
    with pytest.raises(StoreError):
        await store.delete(config.id)

    assert [c.id for c in await store.list()] == [config.id]


@pytest.mark.asyncio
async def test_global_proxy_reads_do_not_write_after_startup():
    store = FlakyStore()
    await store.startup()

    store.fail = True
    proxy = await store.get_global_proxy()

    assert proxy.enabled is False
    assert proxy.port == 1080
