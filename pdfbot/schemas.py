"""Pydantic DTOs shared by the queue, pipeline, store, and HTTP layer."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Union

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Structured error value returned instead of raising."""

    error: Literal[True] = True
    code: str
    message: str


class StorageLocation(BaseModel):
    """Where a storage plugin placed its copy of the document."""

    path: str
    meta: dict[str, Any] = Field(default_factory=dict)


class GenerationSuccess(BaseModel):
    """A generation attempt that rendered and stored the document."""

    id: str
    generated_at: datetime
    storage: dict[str, Any]


class GenerationFailure(BaseModel):
    """A generation attempt that failed to render or store."""

    id: str
    generated_at: datetime
    error: Literal[True] = True
    code: str
    message: str


GenerationResult = Union[GenerationFailure, GenerationSuccess]


class PingAttempt(BaseModel):
    """Outcome of a single webhook delivery."""

    id: str
    url: str
    method: str = "POST"
    payload: dict[str, Any] = Field(default_factory=dict)
    sent_at: datetime
    status: int | None = None
    response: Any = None
    error: bool = False


class Job(BaseModel):
    """Durable record of one render request and its processing history."""

    id: str
    url: str
    meta: dict[str, Any] = Field(default_factory=dict)
    options: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    completed_at: datetime | None = None
    generations: list[GenerationResult] = Field(default_factory=list)
    pings: list[PingAttempt] = Field(default_factory=list)
    storage: dict[str, Any] = Field(default_factory=dict)


class WebhookOptions(BaseModel):
    """Delivery configuration for completion notifications."""

    url: str = Field(description="Endpoint receiving the job payload")
    secret: str | None = Field(default=None, description="HMAC-SHA256 signing secret")
    header_namespace: str = Field(default="X-PDF-", description="Prefix for signature/job headers")
    headers: dict[str, str] = Field(default_factory=dict, description="Extra request headers")
    timeout_seconds: float = Field(default=10.0, gt=0)


class JobCreateRequest(BaseModel):
    """Payload clients submit to queue a render job."""

    url: Any = None
    meta: Any = None
