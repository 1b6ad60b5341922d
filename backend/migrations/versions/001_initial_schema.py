"""Initial schema: users, products, engagement, recommendations, projects, jobs.

Revision ID: 001
Revises:
Create Date: 2026-10-16
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _user_fk(**kwargs):
    return sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, **kwargs)


def _product_fk(**kwargs):
    return sa.Column("product_id", sa.String(36), sa.ForeignKey("products.id", ondelete="CASCADE"), nullable=False, **kwargs)


def upgrade() -> None:
    # Users and auth
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), unique=True, index=True),
        sa.Column("phone", sa.String(20), unique=True, index=True),
        sa.Column("username", sa.String(30), unique=True, nullable=False, index=True),
        sa.Column("first_name", sa.String(100)),
        sa.Column("last_name", sa.String(100)),
        sa.Column("hashed_password", sa.String(255)),
        sa.Column("role", sa.String(20), nullable=False, server_default="user"),
        sa.Column("secondary_roles", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("is_email_verified", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("is_phone_verified", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("lock_until", sa.DateTime(timezone=True)),
        sa.Column("otp_failed_attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_otp_request", sa.DateTime(timezone=True)),
        sa.Column("login_failed_attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_login_at", sa.DateTime(timezone=True)),
        sa.Column("email_verification_token", sa.String(64), index=True),
        sa.Column("email_verification_expires", sa.DateTime(timezone=True)),
        sa.Column("last_email_verification_request", sa.DateTime(timezone=True)),
        sa.Column("interests", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("account_deletion_scheduled", sa.DateTime(timezone=True)),
        *_timestamps(),
    )

    op.create_table(
        "role_profiles",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk(index=True),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("details", postgresql.JSONB, nullable=False, server_default="{}"),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "role", name="uq_role_profiles_user_role"),
    )

    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk(),
        sa.Column("token_hash", sa.String(64), unique=True, nullable=False),
        sa.Column("created_by_ip", sa.String(64)),
        sa.Column("user_agent", sa.String(512)),
        sa.Column("provider", sa.String(20), nullable=False, server_default="otp"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True)),
        sa.Column("revoked_reason", sa.String(50)),
        *_timestamps(),
    )
    op.create_index("idx_refresh_tokens_user", "refresh_tokens", ["user_id"])

    op.create_table(
        "otp_requests",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("phone", sa.String(20), unique=True, nullable=False),
        sa.Column("purpose", sa.String(20), nullable=False),
        sa.Column("last_requested_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "user_activities",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk(),
        sa.Column("action", sa.String(40), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("reference_id", sa.String(36)),
        sa.Column("reference_type", sa.String(20)),
        *_timestamps(),
    )
    op.create_index("idx_user_activities_user_created", "user_activities", ["user_id", "created_at"])

    # Products and engagement
    op.create_table(
        "products",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("slug", sa.String(220), unique=True, nullable=False, index=True),
        sa.Column("tagline", sa.String(300)),
        sa.Column("description", sa.Text),
        sa.Column("maker_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="Draft"),
        sa.Column("category", sa.String(100)),
        sa.Column("tags", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("upvote_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("bookmark_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("comment_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("view_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("unique_view_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("view_history", postgresql.JSONB, nullable=False, server_default="[]"),
        *_timestamps(),
    )
    op.create_index("idx_products_status_created", "products", ["status", "created_at"])
    op.create_index("idx_products_maker", "products", ["maker_id"])
    op.create_index("idx_products_category", "products", ["category"])

    for table in ("upvotes", "bookmarks"):
        op.create_table(
            table,
            sa.Column("id", sa.String(36), primary_key=True),
            _user_fk(index=True),
            _product_fk(index=True),
            *_timestamps(),
            sa.UniqueConstraint("user_id", "product_id", name=f"uq_{table}_user_product"),
        )

    op.create_table(
        "comments",
        sa.Column("id", sa.String(36), primary_key=True),
        _product_fk(),
        _user_fk(),
        sa.Column("parent_id", sa.String(36)),
        sa.Column("root_id", sa.String(36), index=True),
        sa.Column("replying_to_id", sa.String(36)),
        sa.Column("depth", sa.Integer, nullable=False, server_default="0"),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("liked_by", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("like_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_edited", sa.Boolean, nullable=False, server_default="false"),
        *_timestamps(),
    )
    op.create_index("idx_comments_product_created", "comments", ["product_id", "created_at"])

    op.create_table(
        "views",
        sa.Column("id", sa.String(36), primary_key=True),
        _product_fk(),
        sa.Column("user_id", sa.String(36)),
        sa.Column("session_id", sa.String(100)),
        sa.Column("viewer_key", sa.String(40), nullable=False),
        sa.Column("source", sa.String(30), nullable=False, server_default="direct"),
        sa.Column("referrer", sa.String(500)),
        sa.Column("device", sa.String(20), nullable=False, server_default="unknown"),
        sa.Column("os", sa.String(30), nullable=False, server_default="unknown"),
        sa.Column("browser", sa.String(30), nullable=False, server_default="unknown"),
        sa.Column("country", sa.String(60)),
        sa.Column("is_bot", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("view_duration", sa.Integer),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_views_product_created", "views", ["product_id", "created_at"])
    op.create_index("idx_views_user", "views", ["user_id"])

    # Recommendations
    op.create_table(
        "recommendation_profiles",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk(unique=True),
        sa.Column("category_prefs", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("tag_prefs", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("recommended_products", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("dismissed_products", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("total_interactions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_updated_at", sa.DateTime(timezone=True)),
        *_timestamps(),
    )

    op.create_table(
        "recommendation_interactions",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk(),
        _product_fk(),
        sa.Column("recommendation_type", sa.String(30), nullable=False, server_default="default"),
        sa.Column("interaction_type", sa.String(20), nullable=False),
        sa.Column("position", sa.Integer),
        sa.Column("engagement_quality", sa.Float),
        sa.Column("attributed_impression_id", sa.String(36)),
        sa.Column("extra_data", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_rec_interactions_user_type", "recommendation_interactions", ["user_id", "interaction_type"])
    op.create_index("idx_rec_interactions_product", "recommendation_interactions", ["product_id"])
    op.create_index(
        "idx_rec_interactions_user_product_created",
        "recommendation_interactions",
        ["user_id", "product_id", "created_at"],
    )

    op.create_table(
        "search_history",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk(index=True),
        sa.Column("query", sa.String(200), nullable=False),
        sa.Column("type", sa.String(20), nullable=False, server_default="all"),
        sa.Column("count", sa.Integer, nullable=False, server_default="1"),
        sa.Column("last_searched_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "query", "type", name="uq_search_history_user_query_type"),
    )

    # Projects and jobs
    op.create_table(
        "projects",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("owner_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("slug", sa.String(220), unique=True, nullable=False, index=True),
        sa.Column("description", sa.Text),
        sa.Column("category", sa.String(100)),
        sa.Column("tags", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("project_url", sa.String(500)),
        sa.Column("is_public", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("liked_by", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("like_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("share_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("click_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("view_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("share_platforms", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("click_targets", postgresql.JSONB, nullable=False, server_default="{}"),
        *_timestamps(),
    )
    op.create_index("idx_projects_owner", "projects", ["owner_id"])

    op.create_table(
        "jobs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("poster_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("skills", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("company_name", sa.String(200)),
        sa.Column("location", sa.String(255)),
        sa.Column("location_type", sa.String(20)),
        sa.Column("job_type", sa.String(30)),
        sa.Column("experience_level", sa.String(30)),
        sa.Column("salary_min", sa.Float),
        sa.Column("salary_max", sa.Float),
        sa.Column("application_url", sa.Text),
        sa.Column("status", sa.String(20), nullable=False, server_default="Published"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="true", index=True),
        sa.Column("closing_date", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    op.create_index("idx_jobs_status_created", "jobs", ["status", "created_at"])


def downgrade() -> None:
    op.drop_table("jobs")
    op.drop_table("projects")
    op.drop_table("search_history")
    op.drop_table("recommendation_interactions")
    op.drop_table("recommendation_profiles")
    op.drop_table("views")
    op.drop_table("comments")
    op.drop_table("bookmarks")
    op.drop_table("upvotes")
    op.drop_table("products")
    op.drop_table("user_activities")
    op.drop_table("otp_requests")
    op.drop_table("refresh_tokens")
    op.drop_table("role_profiles")
    op.drop_table("users")
