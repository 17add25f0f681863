"""Result types passed between providers, the orchestrator and its callers."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from typing import Any


def empty_usage() -> dict[str, Any]:
    return {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0}


@dataclass
class AiResponse:
    """Normalized output of one provider call. Never raised, always returned."""
    content: str = ""
    model: str = ""
    successful: bool = True
    error: str | None = None
    confidence: float | None = None
    usage: dict[str, Any] = field(default_factory=empty_usage)
    finish_reason: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(
        cls,
        content: str,
        model: str,
        usage: dict[str, Any] | None = None,
        *,
        confidence: float | None = None,
        finish_reason: str | None = None,
        raw: dict[str, Any] | None = None,
    ) -> "AiResponse":
        return cls(
            content=content,
            model=model,
            usage={**empty_usage(), **(usage or {})},
            confidence=confidence,
            finish_reason=finish_reason,
            raw=raw or {},
        )

    @classmethod
    def failure(cls, message: str, raw: dict[str, Any] | None = None, *, model: str = "") -> "AiResponse":
        return cls(content="", model=model, successful=False, error=message, raw=raw or {})


@dataclass
class AppointmentRequest:
    """Parsed [BOOK_APPOINTMENT: ...] tag. date and time are always present."""
    date: str
    time: str
    name: str | None = None
    phone: str | None = None
    email: str | None = None
    extra: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = {"date": self.date, "time": self.time, **self.extra}
        for key in ("name", "phone", "email"):
            value = getattr(self, key)
            if value:
                data[key] = value
        return data


@dataclass
class AiAnswer:
    """A reply ready for dispatch."""
    text: str
    provider: str
    model: str
    raw_text: str = ""
    images: list[str] = field(default_factory=list)
    confidence: float | None = None
    usage: dict[str, Any] = field(default_factory=empty_usage)
    cached: bool = False
    personality_id: uuid.UUID | None = None
    personality_name: str | None = None
    agent_type: str | None = None
    appointment_request: AppointmentRequest | None = None
    degraded: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return True


class AiErrorKind(str, enum.Enum):
    NOT_CONFIGURED = "not_configured"
    AUTO_RESPOND_DISABLED = "auto_respond_disabled"
    RATE_LIMITED = "rate_limited"
    PROVIDER_ERROR = "provider_error"


@dataclass
class AiError:
    """An expected, terminal outcome for one turn. Never shown to the customer."""
    kind: AiErrorKind
    message: str
    provider: str | None = None
    model: str | None = None
    usage: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return False


AiResult = AiAnswer | AiError
