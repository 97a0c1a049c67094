"""
Tests for secure storage backends.
"""

import json
import os
import stat
import sys
import threading

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from config import StealthConfig
from encryption import VAULT_PREFIX, generate_vault_key
from storage import StorageError, get_storage_backend
from storage.base import EntryLockedError, StorageReadError, StorageWriteError
from storage.json_file import JSONFileStorage
from storage.memory import MemoryStorage

LOW_ITERATIONS = 1_000


class TestMemoryStorage:
    """Tests for MemoryStorage backend."""

    def test_set_and_get(self):
        storage = MemoryStorage()
        storage.set_item("alice:notes", "[]")
        assert storage.get_item("alice:notes") == "[]"

    def test_missing_key_returns_none(self):
        assert MemoryStorage().get_item("missing") is None

    def test_locked_entry_requires_authentication(self):
        storage = MemoryStorage()
        storage.set_item("alice:private_1", "abcd", require_authentication=True)
        with pytest.raises(EntryLockedError):
            storage.get_item("alice:private_1")
        assert storage.get_item("alice:private_1", authenticated=True) == "abcd"
        assert storage.requires_authentication("alice:private_1")

    def test_delete(self):
        storage = MemoryStorage()
        storage.set_item("k", "v")
        assert storage.delete_item("k") is True
        assert storage.delete_item("k") is False
        assert not storage.has_item("k")

    def test_keys_sorted(self):
        storage = MemoryStorage()
        storage.set_item("b", "1")
        storage.set_item("a", "2")
        assert storage.keys() == ["a", "b"]

    def test_rejects_non_string(self):
        with pytest.raises(TypeError):
            MemoryStorage().set_item("k", b"bytes")

    def test_get_info(self):
        storage = MemoryStorage()
        storage.set_item("k", "v")
        info = storage.get_info()
        assert info["backend_type"] == "MemoryStorage"
        assert info["available"] is True
        assert info["entry_count"] == 1

    def test_thread_safety(self):
        storage = MemoryStorage()

        def writer(n):
            for i in range(50):
                storage.set_item(f"{n}:{i}", str(i))

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(storage.keys()) == 200


class TestJSONFileStorage:
    """Tests for the encrypted JSON vault."""

    @pytest.fixture
    def vault_path(self, tmp_path):
        return str(tmp_path / "vault.json")

    def test_round_trip_encrypted(self, vault_path):
        key = generate_vault_key()
        storage = JSONFileStorage(vault_path, vault_key=key)
        storage.set_item("alice:notes", '{"notes": []}')

        reopened = JSONFileStorage(vault_path, vault_key=key)
        assert reopened.get_item("alice:notes") == '{"notes": []}'

    def test_values_are_encrypted_on_disk(self, vault_path):
        storage = JSONFileStorage(vault_path, vault_key=generate_vault_key())
        storage.set_item("alice:public_1", "0xdeadbeef")

        with open(vault_path, encoding="utf-8") as f:
            document = json.load(f)
        value = document["entries"]["alice:public_1"]["value"]
        assert value.startswith(VAULT_PREFIX)
        assert "deadbeef" not in value
        assert document["version"] == 1
        assert "salt" in document["kdf"]

    def test_file_permissions(self, vault_path):
        storage = JSONFileStorage(vault_path, vault_key=generate_vault_key())
        storage.set_item("k", "v")
        assert stat.S_IMODE(os.stat(vault_path).st_mode) == 0o600

    def test_passphrase_key(self, vault_path):
        storage = JSONFileStorage(vault_path, vault_key="passphrase", kdf_iterations=LOW_ITERATIONS)
        storage.set_item("k", "v")

        reopened = JSONFileStorage(vault_path, vault_key="passphrase")
        assert reopened.get_item("k") == "v"

    def test_wrong_key_cannot_read(self, vault_path):
        JSONFileStorage(vault_path, vault_key=generate_vault_key()).set_item("k", "v")
        other = JSONFileStorage(vault_path, vault_key=generate_vault_key())
        with pytest.raises(StorageReadError):
            other.get_item("k")

    @pytest.mark.parametrize("vault_key", [None, ""])
    def test_vault_key_required(self, vault_path, vault_key):
        with pytest.raises(StorageError):
            JSONFileStorage(vault_path, vault_key=vault_key)
        assert not os.path.exists(vault_path)

    def test_plaintext_entry_rejected(self, vault_path):
        key = generate_vault_key()
        JSONFileStorage(vault_path, vault_key=key).set_item("k", "v")
        with open(vault_path, encoding="utf-8") as f:
            document = json.load(f)
        document["entries"]["k"]["value"] = "v"
        with open(vault_path, "w", encoding="utf-8") as f:
            json.dump(document, f)

        with pytest.raises(StorageReadError):
            JSONFileStorage(vault_path, vault_key=key).get_item("k")

    def test_locked_entry_persists(self, vault_path):
        key = generate_vault_key()
        JSONFileStorage(vault_path, vault_key=key).set_item("p", "x", require_authentication=True)
        reopened = JSONFileStorage(vault_path, vault_key=key)
        with pytest.raises(EntryLockedError):
            reopened.get_item("p")
        assert reopened.get_item("p", authenticated=True) == "x"

    def test_invalid_json(self, vault_path):
        with open(vault_path, "w", encoding="utf-8") as f:
            f.write("{not json")
        with pytest.raises(StorageReadError):
            JSONFileStorage(vault_path, vault_key=generate_vault_key()).get_item("k")

    def test_unsupported_version(self, vault_path):
        with open(vault_path, "w", encoding="utf-8") as f:
            json.dump({"version": 99, "kdf": {"salt": ""}, "entries": {}}, f)
        with pytest.raises(StorageReadError):
            JSONFileStorage(vault_path, vault_key=generate_vault_key()).keys()

    def test_write_failure_keeps_cache(self, vault_path, monkeypatch):
        storage = JSONFileStorage(vault_path, vault_key=generate_vault_key())
        storage.set_item("k", "old")

        def failing_save():
            raise StorageWriteError("disk full")

        monkeypatch.setattr(storage, "_save", failing_save)
        with pytest.raises(StorageWriteError):
            storage.set_item("k", "new")
        assert storage.get_item("k") == "old"

    def test_delete_and_destroy(self, vault_path):
        storage = JSONFileStorage(vault_path, vault_key=generate_vault_key())
        storage.set_item("k", "v")
        assert storage.delete_item("k") is True
        assert storage.get_item("k") is None
        assert storage.destroy() is True
        assert not os.path.exists(vault_path)
        assert storage.destroy() is False

    def test_get_info(self, vault_path):
        storage = JSONFileStorage(vault_path, vault_key=generate_vault_key())
        storage.set_item("k", "v")
        info = storage.get_info()
        assert info["backend_type"] == "JSONFileStorage"
        assert info["encryption_enabled"] is True
        assert info["file_exists"] is True


class TestStorageFactory:
    """Tests for get_storage_backend."""

    def test_memory_backend(self):
        backend = get_storage_backend(StealthConfig(storage_backend="memory"))
        assert isinstance(backend, MemoryStorage)

    def test_json_backend(self, tmp_path):
        config = StealthConfig(
            storage_backend="json",
            vault_file=str(tmp_path / "v.json"),
            vault_key=generate_vault_key(),
        )
        backend = get_storage_backend(config)
        assert isinstance(backend, JSONFileStorage)
        assert backend.file_path == config.vault_file

    def test_default_json_backend_refuses_plaintext(self, tmp_path):
        """Without STEALTH_VAULT_KEY the default backend will not open a vault."""
        vault_file = tmp_path / "v.json"
        with pytest.raises(StorageError, match="STEALTH_VAULT_KEY"):
            get_storage_backend(StealthConfig(vault_file=str(vault_file)))
        assert not vault_file.exists()

    def test_unknown_backend(self):
        with pytest.raises(StorageError):
            get_storage_backend(StealthConfig(storage_backend="postgres"))
