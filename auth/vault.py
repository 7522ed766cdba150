"""
auth/vault.py -- Encrypted-at-rest store for third-party API keys.

Security design decisions:
  Cipher: AES-256-GCM (cryptography's AESGCM). GCM authenticates as well as
       encrypts, so a tampered ciphertext, a wrong IV or a record copied over
       another record fails decryption with DecryptionFailed instead of
       returning garbage.

  IV: 96 random bits per encryption, never reused. Two encryptions of the
       same value produce different (ciphertext, iv) pairs.

  Binding: the record id is passed as associated data, so ciphertexts cannot
       be swapped between records without detection.

  Key: 32 random bytes, hex-encoded in <auth_dir>/.key with mode 0600,
       generated on first init_key(). Every encrypt/decrypt before init_key()
       raises KeyNotInitialized.

The plaintext is never persisted and never logged. list_secrets() exposes
only id, name and timestamps.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from auth.errors import DecryptionFailed, KeyNotInitialized
from auth.models import SecretRecord, SecretView, utcnow
from auth.repository import Repository, read_or_create_key_file

logger = logging.getLogger("configstudio.auth")

_KEY_BYTES = 32
_IV_BYTES = 12


class SecretStore:
    """Named secrets encrypted under a process-wide symmetric key."""

    def __init__(
        self,
        repository: Repository[SecretRecord],
        key_path: Path,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repo = repository
        self._key_path = key_path
        self._clock = clock
        self._key: bytes | None = None
        self._lock = asyncio.Lock()
        self._records: dict[str, SecretRecord] = {}

    async def load(self) -> None:
        records = await asyncio.to_thread(self._repo.load)
        async with self._lock:
            self._records = {r.id: r for r in records}

    async def init_key(self) -> None:
        """Load the symmetric key from disk, creating it on first use."""
        self._key = await asyncio.to_thread(read_or_create_key_file, self._key_path, _KEY_BYTES)

    async def _save(self) -> None:
        await asyncio.to_thread(self._repo.save, list(self._records.values()))

    # ------------------------------------------------------------------
    # Cipher
    # ------------------------------------------------------------------

    def _cipher(self) -> AESGCM:
        if self._key is None:
            raise KeyNotInitialized()
        return AESGCM(self._key)

    def encrypt(self, plaintext: str, context: str = "") -> tuple[str, str]:
        """Return (ciphertext_hex, iv_hex) for plaintext under a fresh IV."""
        cipher = self._cipher()
        iv = os.urandom(_IV_BYTES)
        ciphertext = cipher.encrypt(iv, plaintext.encode("utf-8"), context.encode("utf-8"))
        return ciphertext.hex(), iv.hex()

    def decrypt(self, ciphertext_hex: str, iv_hex: str, context: str = "") -> str:
        cipher = self._cipher()
        try:
            iv = bytes.fromhex(iv_hex)
            ciphertext = bytes.fromhex(ciphertext_hex)
            plaintext = cipher.decrypt(iv, ciphertext, context.encode("utf-8"))
            return plaintext.decode("utf-8")
        except (InvalidTag, ValueError) as exc:
            raise DecryptionFailed("Secret could not be decrypted.") from exc

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def store(self, name: str, plaintext: str) -> str:
        """Encrypt and persist plaintext under name. Returns the new record id."""
        secret_id = str(uuid.uuid4())
        ciphertext, iv = self.encrypt(plaintext, context=secret_id)
        record = SecretRecord(id=secret_id, name=name, ciphertext=ciphertext, iv=iv, created=self._clock())
        async with self._lock:
            self._records[secret_id] = record
            await self._save()
        logger.info("API key stored: %s (%s)", name, secret_id)
        return secret_id

    async def get(self, secret_id: str) -> str | None:
        """Decrypt a secret and stamp last_used. None if the id is unknown."""
        async with self._lock:
            record = self._records.get(secret_id)
            if record is None:
                return None
            plaintext = self.decrypt(record.ciphertext, record.iv, context=record.id)
            record.last_used = self._clock()
            await self._save()
        return plaintext

    def list_secrets(self) -> list[SecretView]:
        return [r.safe_view() for r in sorted(self._records.values(), key=lambda r: r.created)]

    async def delete(self, secret_id: str) -> bool:
        async with self._lock:
            record = self._records.pop(secret_id, None)
            if record is None:
                return False
            await self._save()
        logger.info("API key deleted: %s (%s)", record.name, secret_id)
        return True
