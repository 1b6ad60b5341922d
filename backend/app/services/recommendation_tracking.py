"""Interaction tracking helpers: strategy names, engagement quality and impression attribution."""

from datetime import datetime, timedelta

from app.services.clock import ensure_utc

CANONICAL_STRATEGIES = {
    "personalized", "trending", "new", "similar", "collaborative", "diversified",
    "history-based", "category-based", "tag-based", "hybrid", "exploratory",
    "maker", "interests", "direct", "default",
}

STRATEGY_ALIASES = {
    "personal": "personalized",
    "personalized_recs": "personalized",
    "user_based": "personalized",
    "history": "history-based",
    "historical": "history-based",
    "user_history": "history-based",
    "diverse": "diversified",
    "diversified-feed": "diversified",
    "feed": "diversified",
    "mix": "hybrid",
    "mixed": "hybrid",
    "combined": "hybrid",
    "discover": "exploratory",
    "discovery": "exploratory",
    "explore": "exploratory",
    "popular": "trending",
    "category": "category-based",
    "tag": "tag-based",
    "similar-products": "similar",
    "similar_section": "similar",
    "view_similar": "similar",
}

BASE_QUALITY = {
    "impression": 1.0,
    "view": 2.0,
    "click": 3.0,
    "bookmark": 4.0,
    "upvote": 4.0,
    "comment": 4.5,
    "conversion": 5.0,
    "remove_upvote": 0.0,
    "remove_bookmark": 0.0,
    "dismiss": 0.0,
}
DEFAULT_QUALITY = 2.0
ATTRIBUTION_WINDOW = timedelta(minutes=30)
ATTRIBUTED_TYPES = ("click", "conversion")


def normalize_strategy(name: str | None) -> str:
    key = (name or "").strip().lower()
    if not key:
        return "default"
    if key in CANONICAL_STRATEGIES:
        return key
    return STRATEGY_ALIASES.get(key, "default")


def engagement_quality(interaction_type: str, prior: float | None = None) -> float:
    """Base score for the interaction, blended 70/30 with a prior quality in (0, 10]."""
    base = BASE_QUALITY.get(interaction_type, DEFAULT_QUALITY)
    if prior is not None and 0 < prior <= 10:
        base = 0.7 * base + 0.3 * prior
    return round(max(0.0, min(10.0, base)), 3)


def nearest_impression(impressions: list[tuple[str, datetime]], event_at: datetime) -> str | None:
    """Id of the latest impression at or before ``event_at`` within the attribution window."""
    event_at = ensure_utc(event_at)
    best_id, best_at = None, None
    for impression_id, at in impressions:
        at = ensure_utc(at)
        if at > event_at or event_at - at > ATTRIBUTION_WINDOW:
            continue
        if best_at is None or at > best_at:
            best_id, best_at = impression_id, at
    return best_id
