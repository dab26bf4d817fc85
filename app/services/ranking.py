"""
Ranking - pure scoring, ordering and cursor paging of the discovery feed.

No I/O here: FeedService loads snapshots and tallies, these functions turn
them into an ordered page.
"""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from app.models.api import CATEGORY_VALUES
from app.models.domain import ListSnapshot, ScoredList, VoteTally

SECONDS_PER_DAY = 86_400


@dataclass(frozen=True)
class ScoreWeights:
    """Weights of the ranking formula."""

    net_votes: int = 3
    copies: int = 5
    freshness_window_days: int = 14


DEFAULT_WEIGHTS = ScoreWeights()


def resolve_category(raw: str | None) -> str | None:
    """
    Return the category filter to apply, or None for no filter.

    Only exact members of the category set filter; anything else (empty,
    unknown, wrong case, hostile input) is ignored.
    """
    if raw is not None and raw in CATEGORY_VALUES:
        return raw
    return None


def days_old(created_at: datetime, now: datetime) -> float:
    """Fractional age in days."""
    return (now - created_at).total_seconds() / SECONDS_PER_DAY


def freshness_bonus(created_at: datetime, now: datetime, window_days: int = 14) -> float:
    """Linear decay from window_days at creation to 0 after window_days."""
    return max(0.0, window_days - days_old(created_at, now))


def compute_score(
    tally: VoteTally,
    copy_count: int,
    created_at: datetime,
    now: datetime,
    weights: ScoreWeights = DEFAULT_WEIGHTS,
) -> float:
    """net * 3 + copies * 5 + freshness."""
    return (
        tally.net * weights.net_votes
        + copy_count * weights.copies
        + freshness_bonus(created_at, now, weights.freshness_window_days)
    )


def rank_lists(
    snapshots: Iterable[ListSnapshot],
    tallies: Mapping[UUID, VoteTally],
    now: datetime,
    weights: ScoreWeights = DEFAULT_WEIGHTS,
) -> list[ScoredList]:
    """
    Score every snapshot and order the result.

    Order: score descending, then created_at descending, then id ascending
    by its string form. The order is total so cursor positions are stable
    between requests when nothing changes.
    """
    scored = [
        ScoredList(
            snapshot=snapshot,
            tally=tallies.get(snapshot.id, VoteTally()),
            score=compute_score(
                tallies.get(snapshot.id, VoteTally()),
                snapshot.copy_count,
                snapshot.created_at,
                now,
                weights,
            ),
        )
        for snapshot in snapshots
    ]

    # Stable sorts applied from the least to the most significant key
    scored.sort(key=lambda item: str(item.snapshot.id))
    scored.sort(key=lambda item: item.snapshot.created_at, reverse=True)
    scored.sort(key=lambda item: item.score, reverse=True)
    return scored


def paginate(
    ranked: Sequence[ScoredList],
    cursor: UUID | str | None,
    page_size: int,
) -> tuple[list[ScoredList], UUID | None]:
    """
    Slice one page after the cursor.

    An unknown or malformed cursor restarts from the top. next_cursor is the
    id of the last item on the page, or None when nothing follows it.
    """
    start = 0
    cursor_id = _parse_cursor(cursor)
    if cursor_id is not None:
        for index, item in enumerate(ranked):
            if item.snapshot.id == cursor_id:
                start = index + 1
                break

    page = list(ranked[start : start + page_size])
    has_more = start + page_size < len(ranked)
    next_cursor = page[-1].snapshot.id if page and has_more else None
    return page, next_cursor


def href_for(snapshot: ListSnapshot, viewer_id: UUID | None) -> str:
    """Owners land on their dashboard, everyone else on the share page."""
    if viewer_id is not None and snapshot.user_id == viewer_id:
        return f"/dashboard/{snapshot.slug}"
    return f"/share/{snapshot.id}"


def _parse_cursor(cursor: UUID | str | None) -> UUID | None:
    if cursor is None or isinstance(cursor, UUID):
        return cursor
    try:
        return UUID(cursor)
    except ValueError:
        return None
