"""
Vote Ledger - one vote per (user, list), kept as a toggle state machine.

The storage constraint uq_vote_user_list is the source of truth for the
one-row-per-pair invariant; this module only decides which write to issue.
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError
from structlog import get_logger

from app.db.models import StudyList, Vote
from app.models.api import ErrorKind, VoteType
from app.models.domain import ViewerContext, VoteOutcome
from app.observability.metrics import metrics
from app.observability.tracing import trace_operation
from app.services.feed_cache import FeedInvalidationBus, feed_invalidation

logger = get_logger(__name__)


class VoteState(str, Enum):
    """Stored vote of a user on a list."""

    NONE = "NONE"
    UP = "UP"
    DOWN = "DOWN"

    def to_vote_type(self) -> VoteType | None:
        return None if self is VoteState.NONE else VoteType(self.value)


class VoteAction(str, Enum):
    """Storage write implied by a transition."""

    INSERT = "insert"
    DELETE = "delete"
    UPDATE = "update"


@dataclass(frozen=True)
class VoteTransition:
    """Next state and the write that reaches it."""

    state: VoteState
    action: VoteAction


def next_vote_state(current: VoteState, cast: VoteType) -> VoteTransition:
    """
    Apply a vote cast to the current state.

    NONE --X--> X (insert), X --X--> NONE (delete), X --Y--> Y (update).
    """
    requested = VoteState(cast.value)
    if current is VoteState.NONE:
        return VoteTransition(state=requested, action=VoteAction.INSERT)
    if current is requested:
        return VoteTransition(state=VoteState.NONE, action=VoteAction.DELETE)
    return VoteTransition(state=requested, action=VoteAction.UPDATE)


def parse_list_id(raw: UUID | str) -> UUID | None:
    """Parse a list identifier, None when malformed."""
    if isinstance(raw, UUID):
        return raw
    try:
        return UUID(str(raw))
    except (ValueError, TypeError):
        return None


def parse_vote_type(raw: VoteType | str) -> VoteType | None:
    """Parse a vote direction, None unless exactly UP or DOWN."""
    if isinstance(raw, VoteType):
        return raw
    try:
        return VoteType(raw)
    except ValueError:
        return None


class VoteLedger:
    """
    Records votes and resolves concurrent first votes.

    Two requests racing to create the first vote for the same pair both
    see NONE; the loser's insert violates the unique constraint, is rolled
    back, and its cast is re-applied against the winner's row.
    """

    def __init__(
        self, session: AsyncSession, invalidator: FeedInvalidationBus | None = None
    ) -> None:
        """Initialize ledger with database session."""
        self.session = session
        self.invalidator = invalidator or feed_invalidation

    async def cast_vote(
        self,
        viewer: ViewerContext | None,
        list_id: UUID | str,
        vote_type: VoteType | str,
    ) -> VoteOutcome:
        """Cast (or toggle, or switch) the viewer's vote on a public list."""
        if viewer is None:
            metrics.record_vote_failure("unauthenticated")
            return VoteOutcome.failure(ErrorKind.AUTHENTICATION_REQUIRED, "Not authenticated")

        target_id = parse_list_id(list_id)
        if target_id is None:
            metrics.record_vote_failure("invalid_list_id")
            return VoteOutcome.failure(ErrorKind.VALIDATION_FAILED, "Invalid study list id")

        cast = parse_vote_type(vote_type)
        if cast is None:
            metrics.record_vote_failure("invalid_vote_type")
            return VoteOutcome.failure(ErrorKind.VALIDATION_FAILED, "Invalid vote type")

        with trace_operation("votes.cast", list_id=str(target_id), vote_type=cast.value):
            try:
                if not await self._is_public_list(target_id):
                    metrics.record_vote_failure("not_found")
                    return VoteOutcome.failure(ErrorKind.NOT_FOUND, "Study list not found")

                transition = await self._record(viewer.user_id, target_id, cast)
                if transition is None:
                    metrics.record_vote_failure("not_found")
                    return VoteOutcome.failure(ErrorKind.NOT_FOUND, "Study list not found")
            except (IntegrityError, StaleDataError):
                metrics.record_vote_failure("conflict")
                logger.warning(
                    "vote_conflict",
                    user_id=str(viewer.user_id),
                    list_id=str(target_id),
                )
                return VoteOutcome.failure(ErrorKind.CONFLICT, "Vote conflict, please retry")
            except SQLAlchemyError as exc:
                await self.session.rollback()
                metrics.record_vote_failure("storage")
                metrics.record_error(type(exc).__name__, "cast_vote")
                logger.error(
                    "vote_failed",
                    user_id=str(viewer.user_id),
                    list_id=str(target_id),
                    error=str(exc),
                )
                return VoteOutcome.failure(ErrorKind.INTERNAL, "Failed to record vote")

        metrics.record_vote(transition.action.value)
        logger.info(
            "vote_cast",
            user_id=str(viewer.user_id),
            list_id=str(target_id),
            cast=cast.value,
            transition=transition.action.value,
            state=transition.state.value,
        )
        await self.invalidator.publish("vote", target_id)
        return VoteOutcome.ok(transition.state.to_vote_type())

    async def _record(
        self, user_id: UUID, list_id: UUID, cast: VoteType
    ) -> VoteTransition | None:
        """
        Apply the cast, retrying once against the winner of a concurrent write.

        A lost insert race raises IntegrityError; a row removed by a concurrent
        toggle-off raises StaleDataError. Either way the state is re-read and
        the cast re-applied.

        Returns:
            The applied transition, or None when the list stopped being public
            (or was deleted) before the retry
        """
        existing = await self._find_vote(user_id, list_id)
        try:
            return await self._apply(user_id, list_id, existing, cast)
        except (IntegrityError, StaleDataError) as exc:
            logger.info(
                "vote_write_race",
                user_id=str(user_id),
                list_id=str(list_id),
                error_type=type(exc).__name__,
                error=str(getattr(exc, "orig", None) or exc),
            )
            await self.session.rollback()

        # The list may have been deleted or made private in the meantime
        if not await self._is_public_list(list_id):
            return None

        existing = await self._find_vote(user_id, list_id)
        try:
            return await self._apply(user_id, list_id, existing, cast)
        except (IntegrityError, StaleDataError):
            await self.session.rollback()
            raise

    async def _apply(
        self, user_id: UUID, list_id: UUID, existing: Vote | None, cast: VoteType
    ) -> VoteTransition:
        current = VoteState(existing.type) if existing is not None else VoteState.NONE
        transition = next_vote_state(current, cast)

        if transition.action is VoteAction.INSERT:
            self.session.add(Vote(user_id=user_id, study_list_id=list_id, type=cast.value))
        elif transition.action is VoteAction.DELETE:
            await self.session.delete(existing)
        else:
            assert existing is not None
            existing.type = cast.value

        await self.session.flush()
        await self.session.commit()
        return transition

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _is_public_list(self, list_id: UUID) -> bool:
        stmt = select(StudyList.is_public).where(StudyList.id == list_id)
        result = await self.session.execute(stmt)
        return bool(result.scalar_one_or_none())

    async def _find_vote(self, user_id: UUID, list_id: UUID) -> Vote | None:
        """Find the viewer's vote row for a list."""
        stmt = select(Vote).where(Vote.user_id == user_id, Vote.study_list_id == list_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
