"""
Re-encrypt stored Probo integration API keys under AES-256-GCM.

Usage:
    python -m scripts.migrate_credential_encryption

Reads the passphrase from PROBO_ENCRYPTION_KEY (falling back to NEXTAUTH_SECRET)
and the database from DATABASE_URL. Safe to rerun: records already in the
current format are left untouched. Exits 0 when every record succeeded, 1
otherwise.
"""

import asyncio
import sys

import structlog
from pydantic import ValidationError

from riscura_vault.services.credentials.migration import (
    CredentialMigrationCoordinator,
    MigrationSummary,
)
from riscura_vault.services.credentials.store import open_credential_store
from riscura_vault.shared.core.config import get_settings
from riscura_vault.shared.core.exceptions import ConfigurationError
from riscura_vault.shared.core.logging import setup_logging
from riscura_vault.shared.core.security import EncryptionKeyManager

logger = structlog.get_logger()


async def migrate_credentials() -> MigrationSummary:
    settings = get_settings()
    # Resolve all configuration before any record is read.
    key = EncryptionKeyManager.derive_key(settings.encryption_passphrase)
    database_url = settings.async_database_url

    async with open_credential_store(settings, database_url=database_url) as store:
        coordinator = CredentialMigrationCoordinator(
            store,
            key,
            verify_current=settings.CREDENTIAL_MIGRATION_VERIFY_CURRENT,
        )
        return await coordinator.run()


def print_summary(summary: MigrationSummary) -> None:
    print("Credential encryption migration complete")
    print(f"  successCount: {summary.success_count}")
    print(f"  failureCount: {summary.failure_count}")
    print(f"  total:        {summary.total}")
    if summary.failed_record_ids:
        print("  failed records: " + ", ".join(summary.failed_record_ids))
        print("Re-run after investigating the failed records.")


def main() -> int:
    try:
        setup_logging()
        summary = asyncio.run(migrate_credentials())
    except ConfigurationError as e:
        logger.critical("credential_migration_config_error", code=e.code, error=e.message)
        print(f"❌ Configuration error: {e.message}")
        return 1
    except ValidationError as e:
        logger.critical("credential_migration_invalid_settings", error=str(e))
        print(f"❌ Configuration error: {e}")
        return 1
    except Exception as e:
        logger.critical("credential_migration_aborted", error=str(e), exc_info=True)
        print(f"❌ Migration aborted: {e}")
        return 1

    print_summary(summary)
    return summary.exit_code


if __name__ == "__main__":
    sys.exit(main())
