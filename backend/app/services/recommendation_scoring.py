"""Recommendation strategies and feed composition.

Pure functions over in-memory candidates; the service layer loads the data,
applies caching and persists results. Every strategy returns scores in
[0, 1] and drops anything under ``MIN_SCORE``.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime

from app.services.clock import ensure_utc

MIN_SCORE = 0.2

TRENDING_WEIGHTS = {"views": 0.3, "upvotes": 0.5, "recency": 0.2}
TRENDING_HALF_LIFE_DAYS = 15.0
TRENDING_MIN_VIEWS = 5
TRENDING_MIN_UPVOTES = 2

NEW_MAX_AGE_DAYS = 30.0
NEW_WEIGHTS = {"recency": 0.7, "quality": 0.3}

PERSONALIZED_WEIGHTS = {"category": 0.3, "tag": 0.3, "history": 0.4}
HISTORY_MAKER_BOOST = 1.0
HISTORY_CATEGORY_BOOST = 0.8

SIMILAR_WEIGHTS = {"category": 0.2, "tag": 0.5, "maker": 0.3}
COLLABORATIVE_WEIGHTS = {"similarity": 0.6, "popularity": 0.4}
DISCOVERY_WEIGHTS = {"popularity": 0.5, "recency": 0.5}

FEED_RATIOS = {"trending": 0.3, "new": 0.2, "personalized": 0.4, "discovery": 0.1}
DIVERSITY_PENALTIES = {"category": 0.4, "maker": 0.3, "tag": 0.3}
DIVERSITY_WINDOW = 3


@dataclass
class Candidate:
    id: str
    maker_id: str
    category: str | None
    tags: list[str]
    upvotes: int
    views: int
    created_at: datetime
    status: str = "Published"
    name: str = ""
    slug: str = ""


@dataclass
class Scored:
    product_id: str
    score: float
    reason: str
    strategy: str
    category: str | None = None
    maker_id: str | None = None
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "score": round(self.score, 4),
            "reason": self.reason,
            "strategy": self.strategy,
        }


def _scored(c: Candidate, score: float, reason: str, strategy: str) -> Scored:
    return Scored(c.id, max(0.0, min(1.0, score)), reason, strategy, c.category, c.maker_id, list(c.tags or []))


def age_days(created_at: datetime, now: datetime) -> float:
    return max(0.0, (now - ensure_utc(created_at)).total_seconds() / 86400.0)


def recency_decay(created_at: datetime, now: datetime, half_life: float = TRENDING_HALF_LIFE_DAYS) -> float:
    return 0.5 ** (age_days(created_at, now) / half_life)


def jaccard(a, b) -> float:
    a, b = set(a or ()), set(b or ())
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def eligible(candidates: list[Candidate], user_id: str | None = None, exclude: set[str] | None = None) -> list[Candidate]:
    """Published, not the user's own and not dismissed/excluded."""
    exclude = exclude or set()
    return [
        c for c in candidates
        if c.status == "Published" and c.id not in exclude and (user_id is None or c.maker_id != user_id)
    ]


def _finish(items: list[Scored], limit: int | None) -> list[Scored]:
    items = [s for s in items if s.score >= MIN_SCORE]
    items.sort(key=lambda s: (-s.score, s.product_id))
    return items[:limit] if limit else items


def score_trending(candidates: list[Candidate], now: datetime, limit: int | None = None) -> list[Scored]:
    pool = [c for c in candidates if c.views >= TRENDING_MIN_VIEWS and c.upvotes >= TRENDING_MIN_UPVOTES]
    if not pool:
        return []
    max_views = max(c.views for c in pool) or 1
    max_upvotes = max(c.upvotes for c in pool) or 1
    items = []
    for c in pool:
        score = (
            TRENDING_WEIGHTS["views"] * c.views / max_views
            + TRENDING_WEIGHTS["upvotes"] * c.upvotes / max_upvotes
            + TRENDING_WEIGHTS["recency"] * recency_decay(c.created_at, now)
        )
        items.append(_scored(c, score, "Trending now", "trending"))
    return _finish(items, limit)


def new_quality(c: Candidate) -> float:
    return 0.6 * min(1.0, c.upvotes / 10.0) + 0.4 * (1.0 if c.views > 0 else 0.0)


def score_new(candidates: list[Candidate], now: datetime, limit: int | None = None) -> list[Scored]:
    items = []
    for c in candidates:
        age = age_days(c.created_at, now)
        if age > NEW_MAX_AGE_DAYS:
            continue
        score = NEW_WEIGHTS["recency"] * (1.0 - age / NEW_MAX_AGE_DAYS) + NEW_WEIGHTS["quality"] * new_quality(c)
        items.append(_scored(c, score, "Recently launched", "new"))
    return _finish(items, limit)


def score_personalized(
    candidates: list[Candidate],
    category_prefs: dict[str, float],
    tag_prefs: dict[str, float],
    liked_makers: set[str],
    liked_categories: set[str],
    limit: int | None = None,
) -> list[Scored]:
    items = []
    for c in candidates:
        category_match = category_prefs.get(c.category, 0.0) if c.category else 0.0
        tag_match = max((tag_prefs.get(t, 0.0) for t in c.tags or []), default=0.0)
        if c.maker_id in liked_makers:
            history = HISTORY_MAKER_BOOST
        elif c.category and c.category in liked_categories:
            history = HISTORY_CATEGORY_BOOST
        else:
            history = 0.0
        score = (
            PERSONALIZED_WEIGHTS["category"] * category_match
            + PERSONALIZED_WEIGHTS["tag"] * tag_match
            + PERSONALIZED_WEIGHTS["history"] * history
        )
        if category_match >= tag_match and category_match > 0:
            reason = f"Because you like {c.category}"
        elif tag_match > 0:
            reason = "Matches tags you follow"
        else:
            reason = "Based on your activity"
        items.append(_scored(c, score, reason, "personalized"))
    return _finish(items, limit)


def score_similar(target: Candidate, candidates: list[Candidate], limit: int | None = None) -> list[Scored]:
    items = []
    for c in candidates:
        if c.id == target.id:
            continue
        score = (
            SIMILAR_WEIGHTS["category"] * (1.0 if c.category and c.category == target.category else 0.0)
            + SIMILAR_WEIGHTS["tag"] * jaccard(c.tags, target.tags)
            + SIMILAR_WEIGHTS["maker"] * (1.0 if c.maker_id == target.maker_id else 0.0)
        )
        items.append(_scored(c, score, "Similar to a product you viewed", "similar"))
    return _finish(items, limit)


def score_collaborative(
    candidates: list[Candidate],
    user_upvotes: set[str],
    others_upvotes: dict[str, set[str]],
    limit: int | None = None,
) -> list[Scored]:
    """Products upvoted by users whose upvotes overlap with this user's."""
    if not user_upvotes:
        return []
    similarity = {uid: jaccard(user_upvotes, ups) for uid, ups in others_upvotes.items()}
    similarity = {uid: s for uid, s in similarity.items() if s > 0}
    total = sum(similarity.values())
    if not total:
        return []
    endorsed: dict[str, float] = {}
    for uid, sim in similarity.items():
        for pid in others_upvotes[uid]:
            endorsed[pid] = endorsed.get(pid, 0.0) + sim
    max_upvotes = max((c.upvotes for c in candidates), default=0) or 1
    items = []
    for c in candidates:
        if c.id in user_upvotes or c.id not in endorsed:
            continue
        score = (
            COLLABORATIVE_WEIGHTS["similarity"] * min(1.0, endorsed[c.id] / total)
            + COLLABORATIVE_WEIGHTS["popularity"] * c.upvotes / max_upvotes
        )
        items.append(_scored(c, score, "Liked by people with similar taste", "collaborative"))
    return _finish(items, limit)


def score_discovery(
    candidates: list[Candidate], known_categories: set[str], now: datetime, limit: int | None = None
) -> list[Scored]:
    pool = [c for c in candidates if c.category and c.category not in known_categories]
    if not pool:
        return []
    max_upvotes = max(c.upvotes for c in pool) or 1
    items = []
    for c in pool:
        score = (
            DISCOVERY_WEIGHTS["popularity"] * c.upvotes / max_upvotes
            + DISCOVERY_WEIGHTS["recency"] * recency_decay(c.created_at, now)
        )
        items.append(_scored(c, score, f"Explore {c.category}", "discovery"))
    return _finish(items, limit)


def allocate_quotas(limit: int, ratios: dict[str, float] = FEED_RATIOS) -> dict[str, int]:
    """Split ``limit`` across strategies by largest remainder."""
    exact = {name: limit * ratio for name, ratio in ratios.items()}
    quotas = {name: int(value) for name, value in exact.items()}
    leftover = limit - sum(quotas.values())
    by_remainder = sorted(ratios, key=lambda n: (-(exact[n] - quotas[n]), -ratios[n]))
    for name in by_remainder[:leftover]:
        quotas[name] += 1
    return quotas


def _penalty(item: Scored, window: list[Scored]) -> float:
    worst = 0.0
    for other in window:
        p = 0.0
        if item.category and item.category == other.category:
            p += DIVERSITY_PENALTIES["category"]
        if item.maker_id and item.maker_id == other.maker_id:
            p += DIVERSITY_PENALTIES["maker"]
        p += DIVERSITY_PENALTIES["tag"] * jaccard(item.tags, other.tags)
        worst = max(worst, p)
    return worst


def diversify(items: list[Scored]) -> list[Scored]:
    """Greedy re-rank: each pick maximizes score discounted by similarity to the last few picks."""
    remaining = sorted(items, key=lambda s: (-s.score, s.product_id))
    ordered: list[Scored] = []
    while remaining:
        window = ordered[-DIVERSITY_WINDOW:]
        best = max(remaining, key=lambda s: s.score * (1.0 - _penalty(s, window)))
        remaining.remove(best)
        ordered.append(best)
    return ordered


def compose_feed(pools: dict[str, list[Scored]], limit: int, ratios: dict[str, float] = FEED_RATIOS) -> list[Scored]:
    """Draw each strategy's quota, dedupe by product keeping the best score,
    backfill from leftovers, then diversify."""
    quotas = allocate_quotas(limit, ratios)
    chosen: dict[str, Scored] = {}
    leftovers: list[Scored] = []

    for strategy in ratios:
        taken = 0
        for item in pools.get(strategy, []):
            if item.product_id in chosen:
                current = chosen[item.product_id]
                if item.score > current.score:
                    chosen[item.product_id] = replace(current, score=item.score)
                continue
            if taken < quotas[strategy]:
                chosen[item.product_id] = replace(item, strategy=strategy)
                taken += 1
            else:
                leftovers.append(replace(item, strategy=strategy))

    if len(chosen) < limit:
        extra = [s for pool in pools.values() for s in pool]
        for item in sorted(leftovers + extra, key=lambda s: (-s.score, s.product_id)):
            if len(chosen) >= limit:
                break
            if item.product_id not in chosen:
                chosen[item.product_id] = item

    return diversify(list(chosen.values()))[:limit]
