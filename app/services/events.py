"""
Audit/event sink and dealer activity notes.

Both writes are fire-and-forget relative to the caller: a failed append is
logged and dropped, never retried synchronously and never raised. Events are
append-only rows with no ordering guarantee across runs, so consumers must
tolerate duplicates and out-of-order arrival.
"""

from typing import Any, Callable, Dict, Optional

from sqlmodel import Session

from app.core.errors import AuditWriteFailure
from app.core.logging_config import get_logger
from app.models.platform_event import Activity, PlatformEvent

logger = get_logger(__name__)

SessionFactory = Callable[[], Session]


class EventSink:
    """
    Writes audit events and activity notes in their own short-lived sessions,
    so a failed append never poisons the caller's transaction.
    """

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    def _append(self, row: Any) -> None:
        try:
            with self._session_factory() as session:
                session.add(row)
                session.commit()
        except Exception as e:
            raise AuditWriteFailure(f"audit append failed: {e}") from e

    def emit(
        self,
        event_type: str,
        entity_type: str,
        entity_id: Any,
        dealer_profile_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Append an audit event. Returns False if the write was dropped."""
        try:
            self._append(
                PlatformEvent(
                    type=event_type,
                    entity_type=entity_type,
                    entity_id=str(entity_id),
                    dealer_profile_id=dealer_profile_id,
                    event_metadata=metadata or {},
                )
            )
        except AuditWriteFailure as e:
            logger.warning("audit event dropped", event_type=event_type, entity_id=str(entity_id), error=str(e))
            return False
        return True

    def record_activity(self, dealer_profile_id: str, title: str, description: str, activity_type: str = "AUTO") -> bool:
        """Write a human-readable dashboard note. Returns False if dropped."""
        try:
            self._append(
                Activity(
                    dealer_profile_id=dealer_profile_id,
                    title=title,
                    description=description,
                    type=activity_type,
                )
            )
        except AuditWriteFailure as e:
            logger.warning("activity note dropped", dealer_profile_id=dealer_profile_id, error=str(e))
            return False
        return True


def default_event_sink() -> EventSink:
    from app.db import engine

    return EventSink(lambda: Session(engine))
