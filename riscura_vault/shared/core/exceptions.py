from typing import Optional, Dict, Any

class VaultException(Exception):
    """Base exception for all credential vault errors."""
    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

class ConfigurationError(VaultException):
    """Raised when application configuration is invalid or missing."""
    def __init__(self, message: str, code: str = "config_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)

class EncryptionError(VaultException):
    """Raised when a cipher is misused or cannot produce a result."""
    def __init__(self, message: str, code: str = "encryption_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)

class InvalidPayload(EncryptionError):
    """Raised when a current-scheme payload is structurally malformed."""
    def __init__(self, message: str = "Encrypted payload is malformed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="invalid_payload", details=details)

class AuthenticationFailure(EncryptionError):
    """Raised when the GCM tag does not verify (tampered data or wrong key)."""
    def __init__(self, message: str = "Encrypted payload failed authentication", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="authentication_failure", details=details)

class LegacyDecryptFailure(EncryptionError):
    """
    Raised when a legacy CBC ciphertext cannot be decrypted.

    Wrong key, foreign format and garbage are indistinguishable here.
    """
    def __init__(self, message: str = "Legacy ciphertext could not be decrypted", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="legacy_decrypt_failure", details=details)

class StoreError(VaultException):
    """Raised when the credential store fails a read or write."""
    def __init__(self, message: str, code: str = "store_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)
