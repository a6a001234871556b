# safetrip/Repositories/activity_event.py

from sqlalchemy.orm import Session

from safetrip.Models.activity_event import ActivityEvent


def create_activity_event(DB: Session, event: ActivityEvent, commit: bool = True) -> ActivityEvent:
    """Insert an activity event. With commit=False the caller owns the transaction."""
    DB.add(event)
    if commit:
        DB.commit()
        DB.refresh(event)
    else:
        DB.flush()
    return event
