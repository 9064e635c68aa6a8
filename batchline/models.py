"""Models shared by the batch store and the delivery pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OutcomeKind(str, Enum):
    """What should happen to a batch after an upload attempt."""

    SUCCESS = "success"
    RETRIABLE = "retriable"
    TERMINAL = "terminal"


class FailureReason(str, Enum):
    """Why an upload attempt did not succeed."""

    UNKNOWN = "unknown"
    UNEXPECTED_CODE = "unexpected_code"
    SERVER_LIMITED = "server_limited"
    SERVER_REJECTED = "server_rejected"


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of exactly one upload attempt.

    Attributes:
        kind: Success, retriable failure or terminal failure.
        reason: Failure reason; None on success.
        status_code: HTTP status if one was received.
        error: Transport error if the request never completed.
    """

    kind: OutcomeKind
    reason: FailureReason | None = None
    status_code: int | None = None
    error: BaseException | None = None

    @classmethod
    def success(cls, status_code: int | None = None) -> DeliveryOutcome:
        return cls(OutcomeKind.SUCCESS, status_code=status_code)

    @classmethod
    def retriable(
        cls,
        reason: FailureReason,
        status_code: int | None = None,
        error: BaseException | None = None,
    ) -> DeliveryOutcome:
        return cls(OutcomeKind.RETRIABLE, reason, status_code, error)

    @classmethod
    def terminal(
        cls,
        reason: FailureReason,
        status_code: int | None = None,
        error: BaseException | None = None,
    ) -> DeliveryOutcome:
        return cls(OutcomeKind.TERMINAL, reason, status_code, error)

    @property
    def is_success(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @property
    def should_remove(self) -> bool:
        """True when the batch file should be deleted from the queue."""
        return self.kind is not OutcomeKind.RETRIABLE


@dataclass
class DataResult:
    """Sealed batch files handed out by ``DirectoryStore.fetch``."""

    data_files: list[Path] = field(default_factory=list)
    removable: list[Path] = field(default_factory=list)


class Settings(BaseModel):
    """Remote project settings served by the CDN."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    integrations: dict[str, Any] = Field(default_factory=dict)
    plan: dict[str, Any] | None = None
    edge_function: dict[str, Any] | None = Field(default=None, alias="edgeFunction")
    middleware_settings: dict[str, Any] | None = Field(
        default=None, alias="middlewareSettings"
    )
    metrics: dict[str, Any] | None = None
    consent_settings: dict[str, Any] | None = Field(
        default=None, alias="consentSettings"
    )
