"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from app.models.api import ErrorKind, Tier, VoteType


@dataclass(frozen=True)
class ViewerContext:
    """The authenticated caller of a request."""

    user_id: UUID
    email: str | None = None


# ============================================================================
# Feed
# ============================================================================


@dataclass(frozen=True)
class FeedQuery:
    """Raw feed parameters as received from the caller."""

    cursor: str | None = None
    category: str | None = None


@dataclass(frozen=True)
class ListSnapshot:
    """Metadata of a public list needed to rank and render it."""

    id: UUID
    title: str
    slug: str
    description: str | None
    category: str
    user_id: UUID
    username: str | None
    profile_picture_url: str | None
    avatar_url: str | None
    created_at: datetime
    item_count: int
    copy_count: int


@dataclass(frozen=True)
class VoteTally:
    """Aggregated votes for a single list."""

    up: int = 0
    down: int = 0

    def __post_init__(self) -> None:
        """Validate counts."""
        if self.up < 0 or self.down < 0:
            raise ValueError(f"Vote counts cannot be negative: up={self.up}, down={self.down}")

    @property
    def net(self) -> int:
        return self.up - self.down


@dataclass(frozen=True)
class ScoredList:
    """A list with its tally and ranking score."""

    snapshot: ListSnapshot
    tally: VoteTally
    score: float


@dataclass(frozen=True)
class FeedEntry:
    """A ranked list annotated for a specific viewer."""

    scored: ScoredList
    current_user_vote: VoteType | None
    href: str


@dataclass(frozen=True)
class FeedPage:
    """One page of the discovery feed."""

    entries: tuple[FeedEntry, ...]
    next_cursor: UUID | None
    is_authenticated: bool
    current_user_id: UUID | None


# ============================================================================
# Operation Outcomes
# ============================================================================


@dataclass(frozen=True)
class VoteOutcome:
    """Result of a vote cast - never raised, always returned."""

    success: bool
    state: VoteType | None = None
    error_kind: ErrorKind | None = None
    error: str | None = None

    @classmethod
    def ok(cls, state: VoteType | None) -> "VoteOutcome":
        return cls(success=True, state=state)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "VoteOutcome":
        return cls(success=False, error_kind=kind, error=message)


@dataclass(frozen=True)
class CopyOutcome:
    """Result of copying a public list."""

    success: bool
    slug: str | None = None
    error_kind: ErrorKind | None = None
    error: str | None = None

    @classmethod
    def ok(cls, slug: str) -> "CopyOutcome":
        return cls(success=True, slug=slug)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "CopyOutcome":
        return cls(success=False, error_kind=kind, error=message)


# ============================================================================
# Entitlements
# ============================================================================


@dataclass(frozen=True)
class DowngradeNotice:
    """How many private lists were made public by a lapsed subscription."""

    privatized_count: int

    def __post_init__(self) -> None:
        """Validate notice count."""
        if self.privatized_count <= 0:
            raise ValueError(f"privatized_count must be positive: {self.privatized_count}")

    def to_payload(self) -> dict[str, int]:
        """Serialize for the JSONB column."""
        return {"privatized_count": self.privatized_count}

    @classmethod
    def from_payload(cls, payload: Any) -> "DowngradeNotice | None":
        """Parse the JSONB column; anything malformed reads as no notice."""
        if not isinstance(payload, dict):
            return None
        count = payload.get("privatized_count")
        if not isinstance(count, int) or isinstance(count, bool) or count <= 0:
            return None
        return cls(privatized_count=count)


@dataclass(frozen=True)
class ConversionPlan:
    """Split of a user's private lists into kept and converted."""

    keep: tuple[UUID, ...]
    convert: tuple[UUID, ...]


@dataclass(frozen=True)
class ReconciliationResult:
    """Outcome of a downgrade reconciliation."""

    user_id: UUID
    tier: Tier
    converted_list_ids: tuple[UUID, ...] = field(default_factory=tuple)
    notice: DowngradeNotice | None = None

    @property
    def converted_count(self) -> int:
        return len(self.converted_list_ids)
