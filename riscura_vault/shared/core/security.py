import base64
import binascii
import hashlib
import os

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from riscura_vault.shared.core.config import get_settings
from riscura_vault.shared.core.exceptions import (
    AuthenticationFailure,
    ConfigurationError,
    EncryptionError,
    InvalidPayload,
    LegacyDecryptFailure,
)

logger = structlog.get_logger()

# ============================================================================
# Key Derivation
# ============================================================================


class EncryptionKeyManager:
    """
    Derives the integration-credential key from the configured passphrase.

    The salt is fixed (SHA-256 of an application constant) so that every run
    with the same passphrase reproduces the same key; the key itself is never
    persisted.
    """

    KDF_ITERATIONS = 100000
    KDF_KEY_LENGTH = 32  # AES-256
    KDF_SALT_SEED = b"probo-encryption-salt"

    @classmethod
    def salt(cls) -> bytes:
        return hashlib.sha256(cls.KDF_SALT_SEED).digest()

    @classmethod
    def derive_key(cls, passphrase: str) -> bytes:
        """Derive the 32-byte credential key with PBKDF2-HMAC-SHA256."""
        if not passphrase:
            raise ConfigurationError(
                "Cannot derive an encryption key from an empty passphrase.",
                code="missing_encryption_passphrase",
            )
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=cls.KDF_KEY_LENGTH,
            salt=cls.salt(),
            iterations=cls.KDF_ITERATIONS,
        )
        return kdf.derive(passphrase.encode("utf-8"))


def derive_key(passphrase: str) -> bytes:
    return EncryptionKeyManager.derive_key(passphrase)


def _require_key(key: bytes) -> bytes:
    if not isinstance(key, (bytes, bytearray)) or len(key) != EncryptionKeyManager.KDF_KEY_LENGTH:
        raise EncryptionError(
            f"Credential key must be exactly {EncryptionKeyManager.KDF_KEY_LENGTH} bytes",
            code="invalid_key",
        )
    return bytes(key)


# ============================================================================
# Current scheme: AES-256-GCM
# ============================================================================


class AuthenticatedCipher:
    """
    AES-256-GCM with a random 16-byte IV per message.

    Payload layout (base64): IV(16) || Tag(16) || Ciphertext.
    """

    IV_LENGTH = 16
    TAG_LENGTH = 16
    HEADER_LENGTH = IV_LENGTH + TAG_LENGTH

    def __init__(self, key: bytes):
        self._aesgcm = AESGCM(_require_key(key))

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            raise EncryptionError("Cannot encrypt empty value", code="empty_plaintext")

        iv = os.urandom(self.IV_LENGTH)
        # AESGCM appends the tag to the ciphertext; stored layout puts it first.
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[: -self.TAG_LENGTH], sealed[-self.TAG_LENGTH :]
        return base64.b64encode(iv + tag + ciphertext).decode("ascii")

    def decrypt(self, payload: str) -> str:
        try:
            combined = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidPayload("Encrypted payload is not valid base64") from e

        if len(combined) <= self.HEADER_LENGTH:
            raise InvalidPayload(
                "Encrypted payload is too short",
                details={"length": len(combined)},
            )

        iv = combined[: self.IV_LENGTH]
        tag = combined[self.IV_LENGTH : self.HEADER_LENGTH]
        ciphertext = combined[self.HEADER_LENGTH :]

        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as e:
            raise AuthenticationFailure() from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidPayload("Decrypted payload is not UTF-8 text") from e


# ============================================================================
# Legacy scheme: AES-256-CBC, decrypt only
# ============================================================================


def evp_bytes_to_key(password: bytes, key_length: int = 32, iv_length: int = 16) -> tuple[bytes, bytes]:
    """OpenSSL EVP_BytesToKey with MD5, no salt and a single iteration."""
    derived = b""
    block = b""
    while len(derived) < key_length + iv_length:
        block = hashlib.md5(block + password).digest()
        derived += block
    return derived[:key_length], derived[key_length : key_length + iv_length]


class LegacyCipher:
    """
    Reads records written by the deprecated AES-256-CBC scheme.

    The CBC key and IV were derived from the credential key by OpenSSL's
    EVP_BytesToKey, so the IV is the same for every record. There is no
    integrity tag. Never used to write.
    """

    BLOCK_SIZE = 16

    def __init__(self, key: bytes):
        self._cbc_key, self._iv = evp_bytes_to_key(_require_key(key))

    def decrypt(self, hex_ciphertext: str) -> str:
        try:
            ciphertext = bytes.fromhex(hex_ciphertext)
        except (TypeError, ValueError) as e:
            raise LegacyDecryptFailure("Legacy ciphertext is not hex") from e

        if not ciphertext or len(ciphertext) % self.BLOCK_SIZE:
            raise LegacyDecryptFailure(
                "Legacy ciphertext is not a whole number of blocks",
                details={"length": len(ciphertext)},
            )

        decryptor = Cipher(algorithms.AES(self._cbc_key), modes.CBC(self._iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()

        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        try:
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except ValueError as e:
            # UnicodeDecodeError is a ValueError too
            raise LegacyDecryptFailure("Legacy ciphertext failed to unpad or decode") from e


# ============================================================================
# Format detection
# ============================================================================


def looks_like_current_format(raw_cipher_text: str) -> bool:
    """
    Best-effort guess that a stored value is a current-scheme payload.

    Any valid base64 that decodes to more than IV+Tag bytes passes, so a legacy
    hex string can be mistaken for a current payload. Not a proof.
    """
    try:
        decoded = base64.b64decode(raw_cipher_text, validate=True)
    except (binascii.Error, ValueError):
        return False
    return len(decoded) > AuthenticatedCipher.HEADER_LENGTH


# ============================================================================
# API key helpers
# ============================================================================


def get_credential_cipher() -> AuthenticatedCipher:
    """
    Current-scheme cipher keyed from the configured passphrase.

    The key is derived on every call and lives only as long as the returned
    cipher.
    """
    return AuthenticatedCipher(
        EncryptionKeyManager.derive_key(get_settings().encryption_passphrase)
    )


def encrypt_api_key(api_key: str) -> str:
    """Encrypt an integration API key for storage."""
    return get_credential_cipher().encrypt(api_key)


def decrypt_api_key(encrypted_key: str) -> str | None:
    """
    Decrypt a stored integration API key.

    Returns None when the value is not a current-scheme payload, for instance
    a record still awaiting migration. A payload that fails its integrity check
    raises AuthenticationFailure.
    """
    if not encrypted_key:
        return None
    try:
        return get_credential_cipher().decrypt(encrypted_key)
    except InvalidPayload as e:
        logger.warning("api_key_not_current_format", error_code=e.code)
        return None
