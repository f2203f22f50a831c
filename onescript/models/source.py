"""Knowledge source data model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class SourceType(Enum):
    FILE = "file"
    URL = "url"
    TEXT = "text"


class SourceStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    ACTIVE = "active"
    FAILED = "failed"


@dataclass
class KnowledgeSource:
    """A unit of text an organization uploads to ground its chatbot.

    ``embedding`` is only set while the source is ``active`` and
    ``error_message`` only while it is ``failed``.
    """

    id: str
    organization_id: str
    type: SourceType
    name: str
    content: str | None = None
    embedding: list[float] | None = None
    status: SourceStatus = SourceStatus.PENDING
    error_message: str | None = None
    metadata: dict = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    processed_at: datetime | None = None
