"""Shared helpers for credential vault tests."""
import hashlib

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from riscura_vault.services.credentials.store import CredentialRecord
from riscura_vault.shared.core.exceptions import StoreError


def encrypt_legacy(key: bytes, plaintext: str) -> str:
    """
    Produce a record the way the retired CBC writer did.

    The package only reads this scheme, so fixtures build it here.
    """
    material = b""
    previous = b""
    while len(material) < 48:
        previous = hashlib.md5(previous + key).digest()
        material += previous
    cbc_key, iv = material[:32], material[32:48]

    padder = padding.PKCS7(128).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(cbc_key), modes.CBC(iv)).encryptor()
    return (encryptor.update(padded) + encryptor.finalize()).hex()


class InMemoryCredentialStore:
    """Credential store double with per-record write failures."""

    def __init__(self, records: list[CredentialRecord], failing_ids: set[str] | None = None):
        self.records = {record.id: record for record in records}
        self.failing_ids = failing_ids or set()
        self.updates: list[tuple[str, str]] = []
        self.find_calls = 0

    async def find_many(self, *, cipher_text_not_null: bool = True) -> list[CredentialRecord]:
        self.find_calls += 1
        records = list(self.records.values())
        if cipher_text_not_null:
            records = [record for record in records if record.cipher_text is not None]
        return records

    async def update(self, record_id: str, *, cipher_text: str) -> None:
        if record_id in self.failing_ids:
            raise StoreError("simulated write failure", code="store_write_failed")
        current = self.records[record_id]
        self.records[record_id] = CredentialRecord(
            id=current.id,
            organization_id=current.organization_id,
            cipher_text=cipher_text,
        )
        self.updates.append((record_id, cipher_text))

    def cipher_text(self, record_id: str) -> str | None:
        return self.records[record_id].cipher_text
