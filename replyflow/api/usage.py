"""AI usage routes — today's rate-limit counters per provider."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from replyflow.deps import Services
from replyflow.schemas import ModelUsageOut, ProviderUsageOut
from replyflow.services.ai.providers.registry import PROVIDERS

router = APIRouter(prefix="/api/ai/usage", tags=["ai"])


@router.get("/{provider}")
async def provider_usage(provider: str, services: Services) -> ProviderUsageOut:
    if provider not in PROVIDERS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown AI provider")
    usage = await services.rate_limiter.get_all_usage(provider)
    return ProviderUsageOut(
        provider=provider,
        models={model: ModelUsageOut(**numbers) for model, numbers in usage.items()},
    )
