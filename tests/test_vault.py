"""
tests/test_vault.py -- SecretStore (AES-256-GCM encrypted API keys).

Coverage:
  - store/get round trip, stamping last_used
  - same plaintext encrypts differently each time
  - tampered ciphertext, swapped IV, record copied under another id -> DecryptionFailed
  - encrypt/decrypt before init_key -> KeyNotInitialized
  - key file is 0600 and reused across instances
  - plaintext never reaches disk; listing exposes metadata only
  - a failed write raises StorageError
"""

from __future__ import annotations

import os
import stat
from dataclasses import fields
from datetime import timedelta

import pytest

from auth.errors import DecryptionFailed, KeyNotInitialized, StorageError
from auth.models import SecretRecord
from auth.repository import JsonFileRepository
from auth.vault import SecretStore


class TestEncryptDecrypt:
    async def test_round_trip(self, vault: SecretStore) -> None:
        ct, iv = vault.encrypt("sk-live-123", context="rec-1")
        assert vault.decrypt(ct, iv, context="rec-1") == "sk-live-123"

    async def test_fresh_iv_each_time(self, vault: SecretStore) -> None:
        first = vault.encrypt("same value")
        second = vault.encrypt("same value")
        assert first[0] != second[0]
        assert first[1] != second[1]
        assert len(bytes.fromhex(first[1])) == 12

    async def test_tampered_ciphertext(self, vault: SecretStore) -> None:
        ct, iv = vault.encrypt("sk-live-123")
        flipped = f"{int(ct[0], 16) ^ 1:x}" + ct[1:]
        with pytest.raises(DecryptionFailed):
            vault.decrypt(flipped, iv)

    async def test_swapped_iv(self, vault: SecretStore) -> None:
        ct, _ = vault.encrypt("sk-live-123")
        _, other_iv = vault.encrypt("something else")
        with pytest.raises(DecryptionFailed):
            vault.decrypt(ct, other_iv)

    async def test_wrong_context(self, vault: SecretStore) -> None:
        ct, iv = vault.encrypt("sk-live-123", context="rec-1")
        with pytest.raises(DecryptionFailed):
            vault.decrypt(ct, iv, context="rec-2")

    async def test_non_hex_input(self, vault: SecretStore) -> None:
        with pytest.raises(DecryptionFailed):
            vault.decrypt("zz", "zz")

    async def test_empty_string(self, vault: SecretStore) -> None:
        ct, iv = vault.encrypt("")
        assert vault.decrypt(ct, iv) == ""

    async def test_unicode(self, vault: SecretStore) -> None:
        ct, iv = vault.encrypt("clé-secrète-🔑")
        assert vault.decrypt(ct, iv) == "clé-secrète-🔑"


class TestKey:
    def test_encrypt_before_init(self, tmp_path) -> None:
        repo = JsonFileRepository(tmp_path / "api-keys.json", SecretRecord.from_record)
        v = SecretStore(repo, tmp_path / ".key")
        with pytest.raises(KeyNotInitialized):
            v.encrypt("x")
        with pytest.raises(KeyNotInitialized):
            v.decrypt("00", "00")

    async def test_key_file_mode(self, vault: SecretStore, tmp_path) -> None:
        assert stat.S_IMODE(os.stat(tmp_path / ".key").st_mode) == 0o600

    async def test_key_reused_by_new_instance(self, vault: SecretStore, tmp_path) -> None:
        secret_id = await vault.store("openai", "sk-live-123")
        repo = JsonFileRepository(tmp_path / "api-keys.json", SecretRecord.from_record)
        again = SecretStore(repo, tmp_path / ".key")
        await again.load()
        await again.init_key()
        assert await again.get(secret_id) == "sk-live-123"


class TestRecords:
    async def test_store_and_get(self, vault: SecretStore) -> None:
        secret_id = await vault.store("openai", "sk-live-123")
        assert await vault.get(secret_id) == "sk-live-123"

    async def test_get_unknown(self, vault: SecretStore) -> None:
        assert await vault.get("nope") is None

    async def test_get_stamps_last_used(self, vault: SecretStore, clock) -> None:
        secret_id = await vault.store("openai", "sk-live-123")
        [before] = vault.list_secrets()
        assert before.last_used is None
        clock.advance(timedelta(minutes=5))
        await vault.get(secret_id)
        [after] = vault.list_secrets()
        assert after.last_used == clock()

    async def test_plaintext_not_on_disk(self, vault: SecretStore, tmp_path) -> None:
        await vault.store("openai", "sk-live-very-secret")
        text = (tmp_path / "api-keys.json").read_text(encoding="utf-8")
        assert "sk-live-very-secret" not in text
        assert "openai" in text

    async def test_listing_has_no_ciphertext(self, vault: SecretStore) -> None:
        await vault.store("openai", "sk-live-123")
        [view] = vault.list_secrets()
        names = {f.name for f in fields(view)}
        assert "ciphertext" not in names and "iv" not in names
        assert view.name == "openai"

    async def test_record_moved_to_other_id_fails(self, vault: SecretStore) -> None:
        first = await vault.store("a", "value-a")
        second = await vault.store("b", "value-b")
        records = vault._records
        records[second].ciphertext = records[first].ciphertext
        records[second].iv = records[first].iv
        with pytest.raises(DecryptionFailed):
            await vault.get(second)

    async def test_delete(self, vault: SecretStore) -> None:
        secret_id = await vault.store("openai", "sk-live-123")
        assert await vault.delete(secret_id) is True
        assert await vault.delete(secret_id) is False
        assert await vault.get(secret_id) is None

    async def test_store_write_failure(self, vault: SecretStore, monkeypatch) -> None:
        def fail(records) -> None:
            raise StorageError("disk full")

        monkeypatch.setattr(vault._repo, "save", fail)
        with pytest.raises(StorageError):
            await vault.store("openai", "sk-live-123")
