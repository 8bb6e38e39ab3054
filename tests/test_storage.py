"""
Tests for the key-value stores.

Tests cover:
- MemoryStorage get/set/remove
- RedisStorage key layout, TTL and bytes decoding
- FileStorage persistence across instances and corrupt files
- Entry name validation
"""
import pytest

from fieldcrypt.storage import FileStorage, MemoryStorage, RedisStorage


class TestMemoryStorage:

    @pytest.mark.asyncio
    async def test_set_get_remove(self):
        store = MemoryStorage()
        assert await store.get("e2e_salt") is None
        await store.set("e2e_salt", "c2FsdA==")
        assert await store.get("e2e_salt") == "c2FsdA=="
        assert "e2e_salt" in store
        await store.remove("e2e_salt")
        assert await store.get("e2e_salt") is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_remove_missing_is_noop(self):
        store = MemoryStorage()
        await store.remove("nothing")

    @pytest.mark.asyncio
    async def test_rejects_non_string(self):
        with pytest.raises(TypeError):
            await MemoryStorage().set("name", b"bytes")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["", "a:b", "x" * 256])
    async def test_rejects_bad_names(self, name):
        with pytest.raises(ValueError):
            await MemoryStorage().get(name)

    def test_repr_hides_values(self):
        store = MemoryStorage({"e2e_encryption_key": "secret-material"})
        assert "secret-material" not in repr(store)


class TestRedisStorage:

    @pytest.mark.asyncio
    async def test_round_trip_with_ttl(self, fake_redis):
        store = RedisStorage(fake_redis, "sess-1", ttl=120)
        await store.set("e2e_encryption_key", "a2V5")
        assert fake_redis.data == {"fieldcrypt:sess-1:e2e_encryption_key": b"a2V5"}
        assert fake_redis.ttls["fieldcrypt:sess-1:e2e_encryption_key"] == 120
        assert await store.get("e2e_encryption_key") == "a2V5"

    @pytest.mark.asyncio
    async def test_sessions_are_isolated(self, fake_redis):
        await RedisStorage(fake_redis, "sess-1").set("k", "one")
        assert await RedisStorage(fake_redis, "sess-2").get("k") is None

    @pytest.mark.asyncio
    async def test_remove(self, fake_redis):
        store = RedisStorage(fake_redis, "sess-1", prefix="app")
        await store.set("k", "v")
        await store.remove("k")
        assert fake_redis.data == {}
        assert await store.get("k") is None

    def test_requires_session_id(self, fake_redis):
        with pytest.raises(ValueError):
            RedisStorage(fake_redis, "")


class TestFileStorage:

    @pytest.mark.asyncio
    async def test_survives_new_instance(self, tmp_path):
        path = tmp_path / "profile" / "fieldcrypt.json"
        await FileStorage(path).set("e2e_salt", "c2FsdA==")
        assert path.exists()
        assert await FileStorage(path).get("e2e_salt") == "c2FsdA=="

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, tmp_path):
        assert await FileStorage(tmp_path / "none.json").get("e2e_salt") is None

    @pytest.mark.asyncio
    async def test_keeps_other_entries(self, tmp_path):
        store = FileStorage(tmp_path / "data.json")
        await store.set("a", "1")
        await store.set("b", "2")
        await store.remove("a")
        assert await store.get("a") is None
        assert await store.get("b") == "2"

    @pytest.mark.asyncio
    async def test_no_temp_files_left(self, tmp_path):
        store = FileStorage(tmp_path / "data.json")
        await store.set("a", "1")
        assert [p.name for p in tmp_path.iterdir()] == ["data.json"]

    @pytest.mark.asyncio
    async def test_corrupt_file(self, tmp_path):
        path = tmp_path / "data.json"
        path.write_text("{not json")
        with pytest.raises(RuntimeError, match="Corrupt storage file"):
            await FileStorage(path).get("a")
