"""
Re-encryption of integration API keys from the legacy CBC scheme to AES-GCM.

Each record moves from pending to exactly one terminal outcome:

- LEGACY_DECRYPT_OK: the legacy cipher read it; it is re-encrypted and written.
- ALREADY_CURRENT: the legacy cipher failed but the value looks like a current
  payload; nothing is written.
- UNRECOVERABLE: neither applies, or the write-back failed.

Records are independent. A failure is reported and the run moves on; records
already written stay written.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

import structlog

from riscura_vault.services.credentials.store import CredentialRecord, CredentialStore
from riscura_vault.shared.core.exceptions import (
    AuthenticationFailure,
    EncryptionError,
    InvalidPayload,
    LegacyDecryptFailure,
    StoreError,
)
from riscura_vault.shared.core.security import (
    AuthenticatedCipher,
    LegacyCipher,
    looks_like_current_format,
)

logger = structlog.get_logger()


class MigrationOutcome(str, Enum):
    LEGACY_DECRYPT_OK = "legacy_decrypt_ok"
    ALREADY_CURRENT = "already_current"
    UNRECOVERABLE = "unrecoverable"


@dataclass(frozen=True)
class RecordClassification:
    outcome: MigrationOutcome
    plaintext: str | None = None
    reason: str | None = None


def classify_cipher_text(
    cipher_text: str | None,
    legacy: LegacyCipher,
    current: AuthenticatedCipher | None = None,
) -> RecordClassification:
    """
    Decide what a stored value is without touching the store.

    When `current` is given, values the format heuristic accepts must also
    decrypt under the current scheme.
    """
    if not cipher_text:
        return RecordClassification(MigrationOutcome.UNRECOVERABLE, reason="empty_cipher_text")

    try:
        plaintext = legacy.decrypt(cipher_text)
    except LegacyDecryptFailure:
        pass
    else:
        return RecordClassification(MigrationOutcome.LEGACY_DECRYPT_OK, plaintext=plaintext)

    if not looks_like_current_format(cipher_text):
        return RecordClassification(MigrationOutcome.UNRECOVERABLE, reason="unknown_format")

    if current is not None:
        try:
            current.decrypt(cipher_text)
        except (AuthenticationFailure, InvalidPayload) as e:
            return RecordClassification(MigrationOutcome.UNRECOVERABLE, reason=e.code)

    return RecordClassification(MigrationOutcome.ALREADY_CURRENT)


@dataclass(frozen=True)
class MigrationSummary:
    success_count: int
    failure_count: int
    migrated_count: int
    already_current_count: int
    failed_record_ids: tuple[str, ...] = field(default_factory=tuple)

    @property
    def total(self) -> int:
        return self.success_count + self.failure_count

    @property
    def exit_code(self) -> int:
        return 0 if self.failure_count == 0 else 1

    def to_dict(self) -> dict[str, object]:
        return {
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "total": self.total,
            "migratedCount": self.migrated_count,
            "alreadyCurrentCount": self.already_current_count,
        }


class MigrationReporter(Protocol):
    def record_success(self, record: CredentialRecord, outcome: MigrationOutcome) -> None: ...

    def record_failure(self, record: CredentialRecord, reason: str) -> None: ...

    def finalize(self) -> MigrationSummary: ...


class LoggingMigrationReporter:
    """Counts outcomes and writes one log line per failed record."""

    def __init__(self) -> None:
        self._migrated = 0
        self._already_current = 0
        self._failed: list[str] = []

    def record_success(self, record: CredentialRecord, outcome: MigrationOutcome) -> None:
        if outcome is MigrationOutcome.LEGACY_DECRYPT_OK:
            self._migrated += 1
            logger.info(
                "credential_record_migrated",
                record_id=record.id,
                organization_id=record.organization_id,
            )
        elif outcome is MigrationOutcome.ALREADY_CURRENT:
            self._already_current += 1
            logger.debug("credential_record_already_current", record_id=record.id)
        else:
            raise ValueError(f"{outcome.value} is not a success outcome")

    def record_failure(self, record: CredentialRecord, reason: str) -> None:
        self._failed.append(record.id)
        logger.error(
            "credential_record_unrecoverable",
            record_id=record.id,
            organization_id=record.organization_id,
            reason=reason,
        )

    def finalize(self) -> MigrationSummary:
        summary = MigrationSummary(
            success_count=self._migrated + self._already_current,
            failure_count=len(self._failed),
            migrated_count=self._migrated,
            already_current_count=self._already_current,
            failed_record_ids=tuple(self._failed),
        )
        logger.info("credential_migration_finished", **summary.to_dict())
        return summary


class CredentialMigrationCoordinator:
    """Moves every stored credential to the current encryption scheme, one record at a time."""

    def __init__(
        self,
        store: CredentialStore,
        key: bytes,
        reporter: MigrationReporter | None = None,
        verify_current: bool = False,
    ) -> None:
        self._store = store
        self._legacy = LegacyCipher(key)
        self._current = AuthenticatedCipher(key)
        self._reporter = reporter or LoggingMigrationReporter()
        self._verify_current = verify_current

    def classify(self, cipher_text: str | None) -> RecordClassification:
        return classify_cipher_text(
            cipher_text,
            self._legacy,
            self._current if self._verify_current else None,
        )

    async def migrate_record(self, record: CredentialRecord) -> MigrationOutcome:
        classification = self.classify(record.cipher_text)

        if classification.outcome is MigrationOutcome.UNRECOVERABLE:
            self._reporter.record_failure(record, classification.reason or "unrecoverable")
            return MigrationOutcome.UNRECOVERABLE

        if classification.outcome is MigrationOutcome.ALREADY_CURRENT:
            self._reporter.record_success(record, MigrationOutcome.ALREADY_CURRENT)
            return MigrationOutcome.ALREADY_CURRENT

        try:
            new_cipher_text = self._current.encrypt(classification.plaintext or "")
            await self._store.update(record.id, cipher_text=new_cipher_text)
        except (EncryptionError, StoreError) as e:
            self._reporter.record_failure(record, e.code)
            return MigrationOutcome.UNRECOVERABLE

        self._reporter.record_success(record, MigrationOutcome.LEGACY_DECRYPT_OK)
        return MigrationOutcome.LEGACY_DECRYPT_OK

    async def run(self) -> MigrationSummary:
        records = await self._store.find_many(cipher_text_not_null=True)
        logger.info(
            "credential_migration_started",
            record_count=len(records),
            verify_current=self._verify_current,
        )
        try:
            for record in records:
                await self.migrate_record(record)
        finally:
            summary = self._reporter.finalize()
        return summary
