"""Provider API key storage.

Keys are sealed with the process SecretVault before they touch the
database and opened only when a consumer (the summarizer) asks for one.
There is at most one key per (user, provider); storing again replaces
the sealed value wholesale.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from prdigest.core.encryption import SecretVault
from prdigest.db.models import ProviderKey

logger = logging.getLogger(__name__)


async def get_provider_key(
    db: AsyncSession, user_id: uuid.UUID, provider: str
) -> Optional[ProviderKey]:
    result = await db.execute(
        select(ProviderKey).where(
            ProviderKey.user_id == user_id,
            ProviderKey.provider == provider,
        )
    )
    return result.scalar_one_or_none()


async def store_provider_key(
    db: AsyncSession,
    vault: SecretVault,
    user_id: uuid.UUID,
    provider: str,
    api_key: str,
) -> ProviderKey:
    sealed = vault.seal(api_key)
    now = datetime.now(timezone.utc)

    row = await get_provider_key(db, user_id, provider)
    if row is None:
        row = ProviderKey(
            user_id=user_id,
            provider=provider,
            encrypted_key=sealed,
            verified_at=now,
        )
        db.add(row)
    else:
        row.encrypted_key = sealed
        row.verified_at = now

    await db.flush()
    logger.info("Stored %s key for user %s", provider, user_id)
    return row


async def get_decrypted_provider_key(
    db: AsyncSession,
    vault: SecretVault,
    user_id: uuid.UUID,
    provider: str,
) -> Optional[str]:
    """Return the plaintext key, or None when the user has not stored one.

    FormatError / IntegrityError from the vault propagate unchanged.
    """
    row = await get_provider_key(db, user_id, provider)
    if row is None:
        return None
    return vault.open(row.encrypted_key)
