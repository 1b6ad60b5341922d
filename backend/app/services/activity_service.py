"""User activity log."""

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import UserActivity


def record_activity(
    db: AsyncSession,
    user_id: str,
    action: str,
    description: str | None = None,
    reference_id: str | None = None,
    reference_type: str | None = None,
) -> UserActivity:
    """Add an activity row to the caller's transaction."""
    activity = UserActivity(
        user_id=user_id,
        action=action,
        description=description,
        reference_id=reference_id,
        reference_type=reference_type,
    )
    db.add(activity)
    return activity
