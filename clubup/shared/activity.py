"""Shared activity log helpers"""

import logging
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ..models import Activity

logger = logging.getLogger(__name__)


def log_activity(
    db: Session,
    activity_type: str,
    description: str,
    user_id: Optional[int] = None,
    reference_id: Optional[str] = None,
    details: Optional[dict] = None,
    commit: bool = True,
) -> Activity:
    """
    Append an entry to the activity log.

    Args:
        db: Database session
        activity_type: e.g. checkout_initiated, scheduled_payout_failed
        description: Human readable summary
        user_id: User the entry belongs to (None for guest checkouts)
        reference_id: Provider session/order id or transaction id
        details: JSON-serialisable payload
        commit: Commit immediately, or leave it to the caller's unit of work
    """
    activity = Activity(
        user_id=user_id,
        type=activity_type,
        description=description,
        reference_id=reference_id,
        details=details or {},
    )
    db.add(activity)
    if commit:
        db.commit()
        db.refresh(activity)
    logger.debug(f"📝 Activity {activity_type} ({reference_id})")
    return activity


def find_activity(db: Session, reference_id: str, activity_types: Iterable[str]) -> Optional[Activity]:
    """Most recent activity of one of the given types for a reference id"""
    return (
        db.query(Activity)
        .filter(Activity.reference_id == reference_id, Activity.type.in_(list(activity_types)))
        .order_by(Activity.id.desc())
        .first()
    )
