from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from riscura_vault.shared.db.base import Base


class ProboIntegration(Base):
    """
    Per-organization connection to the Probo compliance API.

    The table and column names are those of the application schema; only
    `apiKeyEncrypted` is owned by the credential vault. It holds base64
    AES-256-GCM payloads, or hex AES-256-CBC ciphertext for rows that predate
    the migration.
    """

    __tablename__ = "ProboIntegration"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: uuid4().hex
    )
    organization_id: Mapped[str] = mapped_column(
        "organizationId", String, nullable=False, unique=True, index=True
    )
    api_key_encrypted: Mapped[str | None] = mapped_column(
        "apiKeyEncrypted", Text, nullable=True
    )
    webhook_url: Mapped[str | None] = mapped_column("webhookUrl", String, nullable=True)
    is_active: Mapped[bool] = mapped_column("isActive", Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        "createdAt",
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        "updatedAt",
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
