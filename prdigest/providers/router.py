"""Provider API key endpoints.

Routes:
  PUT /providers/{provider}/key    : seal and store (or replace) a key
  GET /providers/{provider}/status : whether a key is configured

Stored keys are never returned to the client.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, Path, Request
from sqlalchemy.ext.asyncio import AsyncSession

from prdigest.auth.dependencies import get_current_user
from prdigest.core.config import get_settings
from prdigest.core.encryption import SecretVault, get_vault
from prdigest.core.limiter import limiter
from prdigest.db.session import get_db
from prdigest.providers.schemas import ProviderKeyRequest, ProviderStatusResponse
from prdigest.providers.service import get_provider_key, store_provider_key

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix="/providers", tags=["providers"])

_PROVIDER_PATTERN = r"^[a-z0-9][a-z0-9_-]{0,31}$"


@router.put("/{provider}/key", response_model=ProviderStatusResponse)
@limiter.limit(settings.provider_key_rate_limit)
async def put_provider_key(
    request: Request,
    body: ProviderKeyRequest,
    provider: str = Path(..., pattern=_PROVIDER_PATTERN),
    db: AsyncSession = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user),
    vault: SecretVault = Depends(get_vault),
) -> ProviderStatusResponse:
    row = await store_provider_key(db, vault, user_id, provider, body.api_key)
    return ProviderStatusResponse(
        provider=provider, configured=True, verified_at=row.verified_at
    )


@router.get("/{provider}/status", response_model=ProviderStatusResponse)
async def get_provider_status(
    provider: str = Path(..., pattern=_PROVIDER_PATTERN),
    db: AsyncSession = Depends(get_db),
    user_id: uuid.UUID = Depends(get_current_user),
) -> ProviderStatusResponse:
    row = await get_provider_key(db, user_id, provider)
    if row is None:
        return ProviderStatusResponse(provider=provider, configured=False)
    return ProviderStatusResponse(
        provider=provider, configured=True, verified_at=row.verified_at
    )
