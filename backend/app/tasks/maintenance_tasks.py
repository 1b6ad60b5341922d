"""Maintenance tasks: scheduled account deletion and interaction retention."""

import logging
from datetime import datetime, timezone, timedelta

from sqlalchemy import delete, select

from app.tasks.celery_app import celery_app
from app.models.base import SyncSessionLocal
from app.models import registry  # noqa: F401
from app.models.comment import Comment
from app.models.engagement import Bookmark, Upvote
from app.models.job import Job
from app.models.product import Product
from app.models.project import Project
from app.models.recommendation_interaction import RecommendationInteraction
from app.models.recommendation_profile import RecommendationProfile
from app.models.search_history import SearchHistory
from app.models.token import RefreshToken
from app.models.user import RoleProfile, User, UserActivity
from app.models.view import View

logger = logging.getLogger(__name__)

INTERACTION_RETENTION_DAYS = 90


def _delete_user(session, user_id: str):
    """Remove a user with everything they own. Counters on other products are recomputed."""
    products = select(Product.id).where(Product.maker_id == user_id)
    touched = set(session.execute(
        select(Upvote.product_id).where(Upvote.user_id == user_id)
        .union(select(Bookmark.product_id).where(Bookmark.user_id == user_id))
        .union(select(Comment.product_id).where(Comment.user_id == user_id))
    ).scalars().all())

    for model in (Upvote, Bookmark, Comment, View, RecommendationInteraction):
        session.execute(delete(model).where(model.product_id.in_(products)))
    session.execute(delete(Upvote).where(Upvote.user_id == user_id))
    session.execute(delete(Bookmark).where(Bookmark.user_id == user_id))
    own_threads = select(Comment.id).where(Comment.user_id == user_id, Comment.parent_id.is_(None))
    session.execute(delete(Comment).where(Comment.root_id.in_(own_threads)).execution_options(synchronize_session=False))
    session.execute(delete(Comment).where(Comment.user_id == user_id))
    session.execute(delete(Product).where(Product.maker_id == user_id))
    session.execute(delete(View).where(View.user_id == user_id))
    for model in (RecommendationInteraction, RecommendationProfile, SearchHistory, UserActivity, RoleProfile):
        session.execute(delete(model).where(model.user_id == user_id))
    session.execute(delete(Project).where(Project.owner_id == user_id))
    session.execute(delete(Job).where(Job.poster_id == user_id))
    # tokens are revoked, not purged; they go with the user row
    session.execute(delete(RefreshToken).where(RefreshToken.user_id == user_id))
    session.execute(delete(User).where(User.id == user_id))

    for product_id in touched:
        product = session.get(Product, product_id)
        if product is None:
            continue
        product.upvote_count = session.query(Upvote).filter(Upvote.product_id == product_id).count()
        product.bookmark_count = session.query(Bookmark).filter(Bookmark.product_id == product_id).count()
        product.comment_count = session.query(Comment).filter(Comment.product_id == product_id).count()


@celery_app.task(name="app.tasks.maintenance_tasks.process_scheduled_deletions")
def process_scheduled_deletions():
    """Delete accounts whose deletion grace period has passed."""
    db = SyncSessionLocal()
    try:
        now = datetime.now(timezone.utc)
        due = db.execute(
            select(User.id).where(
                User.account_deletion_scheduled.isnot(None),
                User.account_deletion_scheduled <= now,
            )
        ).scalars().all()
        deleted = 0
        for user_id in due:
            try:
                _delete_user(db, user_id)
                db.commit()
                deleted += 1
            except Exception:
                db.rollback()
                logger.exception("Failed to delete account %s", user_id)
        logger.info("Deleted %d scheduled accounts", deleted)
        return {"deleted": deleted, "due": len(due)}
    finally:
        db.close()


@celery_app.task(name="app.tasks.maintenance_tasks.cleanup_recommendation_interactions")
def cleanup_recommendation_interactions():
    """Remove recommendation interaction rows older than 90 days."""
    db = SyncSessionLocal()
    try:
        cutoff = datetime.now(timezone.utc) - timedelta(days=INTERACTION_RETENTION_DAYS)
        result = db.execute(
            delete(RecommendationInteraction).where(RecommendationInteraction.created_at < cutoff)
        )
        db.commit()
        logger.info("Deleted %d old recommendation interactions", result.rowcount)
        return {"deleted": result.rowcount}
    finally:
        db.close()
