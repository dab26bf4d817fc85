"""
Test factories shared across test modules.

Mock ORM rows, mock query results, feed snapshots and signed tokens.
"""

import os
import time
from datetime import UTC, datetime
from unittest.mock import MagicMock
from uuid import UUID, uuid4

import jwt
from sqlalchemy.dialects import postgresql
from sqlalchemy.sql import ClauseElement

from app.db.models import StudyItem, StudyList, User, Vote
from app.models.domain import ListSnapshot


def make_result(
    scalar: object = None,
    rows: list | None = None,
    scalars: list | None = None,
) -> MagicMock:
    """Build a mock SQLAlchemy Result."""
    result = MagicMock()
    result.scalar_one_or_none = MagicMock(return_value=scalar)
    result.scalar_one = MagicMock(return_value=scalar)
    result.all = MagicMock(return_value=rows or [])
    result.scalars = MagicMock(return_value=MagicMock(all=MagicMock(return_value=scalars or [])))
    return result


def compile_postgres(stmt: ClauseElement) -> tuple[str, dict]:
    """Render a statement as single-line PostgreSQL SQL plus its bound parameters."""
    compiled = stmt.compile(dialect=postgresql.dialect())
    return " ".join(str(compiled).split()), compiled.params


def make_token(
    user_id: UUID | str,
    secret: str | None = None,
    audience: str | None = "authenticated",
    expires_in: int = 3600,
    **claims: object,
) -> str:
    """Sign an HS256 access token like the auth provider does."""
    payload: dict[str, object] = {"sub": str(user_id), "exp": int(time.time()) + expires_in}
    if audience is not None:
        payload["aud"] = audience
    payload.update(claims)
    return jwt.encode(payload, secret or os.environ["AUTH_JWT_SECRET"], algorithm="HS256")


def create_mock_user(
    user_id: UUID | None = None,
    email: str = "user@example.com",
    username: str | None = "learner",
    tier: str = "free",
    lifetime_purchase: bool = False,
    stripe_customer_id: str | None = None,
    pending_downgrade_notice: dict | None = None,
) -> MagicMock:
    """Factory function to create mock User objects."""
    user = MagicMock(spec=User)
    user.id = user_id or uuid4()
    user.email = email
    user.username = username
    user.profile_picture_url = None
    user.avatar_url = None
    user.tier = tier
    user.lifetime_purchase = lifetime_purchase
    user.stripe_customer_id = stripe_customer_id
    user.pending_downgrade_notice = pending_downgrade_notice
    user.created_at = datetime.now(UTC)
    user.updated_at = datetime.now(UTC)
    return user


def create_mock_study_list(
    list_id: UUID | None = None,
    user_id: UUID | None = None,
    title: str = "Intro to Rust",
    slug: str = "intro-to-rust",
    category: str = "programming",
    is_public: bool = True,
    position: int = 0,
    copied_from_id: UUID | None = None,
) -> MagicMock:
    """Factory function to create mock StudyList objects."""
    study_list = MagicMock(spec=StudyList)
    study_list.id = list_id or uuid4()
    study_list.user_id = user_id or uuid4()
    study_list.title = title
    study_list.slug = slug
    study_list.description = "A curated path"
    study_list.category = category
    study_list.is_public = is_public
    study_list.position = position
    study_list.copied_from_id = copied_from_id
    study_list.created_at = datetime.now(UTC)
    study_list.updated_at = datetime.now(UTC)
    return study_list


def create_mock_item(study_list_id: UUID, position: int, completed: bool = True) -> MagicMock:
    """Factory function to create mock StudyItem objects."""
    item = MagicMock(spec=StudyItem)
    item.id = uuid4()
    item.study_list_id = study_list_id
    item.title = f"Chapter {position + 1}"
    item.url = f"https://example.com/{position}"
    item.notes = None
    item.position = position
    item.completed = completed
    return item


def create_mock_vote(user_id: UUID, list_id: UUID, vote_type: str) -> MagicMock:
    """Factory function to create mock Vote objects."""
    vote = MagicMock(spec=Vote)
    vote.id = uuid4()
    vote.user_id = user_id
    vote.study_list_id = list_id
    vote.type = vote_type
    return vote


def make_snapshot(
    created_at: datetime,
    list_id: UUID | None = None,
    user_id: UUID | None = None,
    copy_count: int = 0,
    category: str = "programming",
    slug: str = "a-list",
) -> ListSnapshot:
    """Feed snapshot with sensible defaults."""
    return ListSnapshot(
        id=list_id or uuid4(),
        title="A list",
        slug=slug,
        description=None,
        category=category,
        user_id=user_id or uuid4(),
        username="owner",
        profile_picture_url=None,
        avatar_url=None,
        created_at=created_at,
        item_count=3,
        copy_count=copy_count,
    )


class RecordingSubscriber:
    """Collects feed invalidation signals."""

    def __init__(self) -> None:
        self.events: list[tuple[str, UUID | None]] = []

    async def __call__(self, reason: str, list_id: UUID | None) -> None:
        self.events.append((reason, list_id))


