"""Celery tasks for recommendation profile rebuilds."""

import logging
from datetime import datetime, timezone

from sqlalchemy import select, union

from app.tasks.celery_app import celery_app
from app.models.base import SyncSessionLocal
from app.models import registry  # noqa: F401
from app.models.engagement import Bookmark, Upvote
from app.models.recommendation_profile import RecommendationProfile
from app.models.user import User
from app.models.view import View
from app.services.recommendation_service import apply_signals, signal_queries

logger = logging.getLogger(__name__)


def rebuild_profile_sync(session, user_id: str, now: datetime) -> RecommendationProfile:
    """Blocking twin of ``recommendation_service.rebuild_profile`` for worker processes."""
    profile = session.execute(
        select(RecommendationProfile).where(RecommendationProfile.user_id == user_id)
    ).scalar_one_or_none()
    if not profile:
        profile = RecommendationProfile(
            user_id=user_id, category_prefs=[], tag_prefs=[], recommended_products=[], dismissed_products=[],
        )
        session.add(profile)
        session.flush()

    rows_by_kind = {kind: session.execute(stmt).all() for kind, stmt in signal_queries(user_id).items()}
    user = session.get(User, user_id)
    apply_signals(profile, rows_by_kind, user.interests if user else None, now)
    return profile


@celery_app.task(name="app.tasks.profile_tasks.rebuild_recommendation_profiles")
def rebuild_recommendation_profiles():
    """Rebuild the profile of every user with at least one signal (runs nightly via beat)."""
    with SyncSessionLocal() as session:
        try:
            now = datetime.now(timezone.utc)
            user_ids = session.execute(
                union(
                    select(View.user_id).where(View.user_id.isnot(None)),
                    select(Upvote.user_id),
                    select(Bookmark.user_id),
                )
            ).scalars().all()

            rebuilt = 0
            for uid in user_ids:
                rebuild_profile_sync(session, uid, now)
                rebuilt += 1
                if rebuilt % 100 == 0:
                    session.commit()

            session.commit()
            logger.info("Rebuilt %d recommendation profiles", rebuilt)
            return {"rebuilt": rebuilt}

        except Exception:
            session.rollback()
            logger.exception("Failed to rebuild recommendation profiles")
            raise
