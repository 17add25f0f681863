"""AI vendor adapters."""

from replyflow.services.ai.providers.base import (  # noqa: F401
    HistoryTurn,
    ImageInput,
    ProviderAdapter,
    ProviderContext,
)
