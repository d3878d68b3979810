import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from scheduler.core.errors import ConflictError, ForbiddenError, InternalError, NotFoundError, SchedulingError
from scheduler.models.live_session import LiveSession
from scheduler.models.track import Track
from scheduler.models.user import ADMIN_ROLES, ROLE_COORDINATOR, ROLE_INSTRUCTOR, User

logger = logging.getLogger(__name__)


class BaseService:
    """Shared plumbing for the scheduling services: transactions and lookups."""

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def transaction(self, conflict_message: str | None = None) -> Iterator[None]:
        """Commit on success; roll back and translate persistence failures otherwise.

        ``conflict_message`` turns a unique-constraint violation into a
        ``ConflictError`` so the losing side of a race gets a meaningful answer.
        """
        try:
            yield
            self.db.commit()
        except SchedulingError:
            self.db.rollback()
            raise
        except IntegrityError as exc:
            self.db.rollback()
            if conflict_message is not None:
                logger.warning('Uniqueness violation: %s', conflict_message)
                raise ConflictError(conflict_message) from exc
            logger.exception('Integrity error during scheduling write.')
            raise InternalError() from exc
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception('Database error during scheduling write.')
            raise InternalError() from exc

    def get_track(self, track_id: int) -> Track:
        track = self.db.query(Track).filter(Track.id == track_id).first()
        if track is None:
            raise NotFoundError('Track not found.')
        return track

    def get_session(self, session_id: int, for_update: bool = False) -> LiveSession:
        query = self.db.query(LiveSession).filter(LiveSession.id == session_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        live_session = query.first()
        if live_session is None:
            raise NotFoundError('Session not found.')
        return live_session

    def can_manage_session(self, actor: User, live_session: LiveSession, track: Track | None = None) -> bool:
        if actor.role in ADMIN_ROLES:
            return True
        if actor.role == ROLE_INSTRUCTOR:
            return live_session.instructor_id == actor.id
        if actor.role == ROLE_COORDINATOR:
            track = track or self.get_track(live_session.track_id)
            return track.coordinator_id == actor.id
        return False

    def require_session_manager(self, actor: User, live_session: LiveSession, message: str) -> None:
        if not self.can_manage_session(actor, live_session):
            logger.warning('User %s denied on session %s: %s', actor.id, live_session.id, message)
            raise ForbiddenError(message)
