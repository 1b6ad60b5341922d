"""Interest profile service: turns a user's interaction signals into category and tag preferences."""

from dataclasses import dataclass
from datetime import datetime

# Signal weights per interaction kind
SIGNAL_WEIGHTS = {
    "view": 0.2,
    "upvote": 1.0,
    "bookmark": 0.8,
}

INTEREST_WEIGHT = 2.0  # a strength-10 declared interest
TAG_FACTOR = 0.8  # tags receive this share of the product's weight

CATEGORY_SATURATION = 5.0
TAG_SATURATION = 4.0
MAX_CATEGORIES = 20
MAX_TAGS = 50


@dataclass
class Signal:
    kind: str
    category: str | None
    tags: list[str]
    at: datetime | None


class _Accumulator:
    def __init__(self):
        self.raw: dict[str, float] = {}
        self.count: dict[str, int] = {}
        self.last: dict[str, datetime] = {}

    def add(self, key: str | None, weight: float, at: datetime | None):
        if not key:
            return
        self.raw[key] = self.raw.get(key, 0.0) + weight
        self.count[key] = self.count.get(key, 0) + 1
        if at is not None and (key not in self.last or at > self.last[key]):
            self.last[key] = at

    def normalized(self, saturation: float, limit: int) -> list[dict]:
        ranked = sorted(self.raw.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]
        return [
            {
                "key": key,
                "score": round(min(1.0, raw / saturation), 4),
                "count": self.count[key],
                "lastInteraction": self.last[key].isoformat() if key in self.last else None,
            }
            for key, raw in ranked
        ]


def build_preferences(signals: list[Signal], interests: list[dict] | None = None) -> tuple[list[dict], list[dict]]:
    """Aggregate weighted signals into (category_prefs, tag_prefs).

    Category score = min(1, raw / 5) over the top 20; tag score = min(1, raw / 4)
    over the top 50.
    """
    categories = _Accumulator()
    tags = _Accumulator()

    for signal in signals:
        weight = SIGNAL_WEIGHTS.get(signal.kind, 0)
        if weight <= 0:
            continue
        categories.add(signal.category, weight, signal.at)
        for tag in signal.tags or []:
            tags.add(tag, weight * TAG_FACTOR, signal.at)

    for interest in interests or []:
        name = (interest.get("name") or "").strip()
        try:
            strength = float(interest.get("strength", 5))
        except (TypeError, ValueError):
            continue
        strength = max(1.0, min(10.0, strength))
        weight = strength / 10.0 * INTEREST_WEIGHT
        categories.add(name, weight, None)
        tags.add(name.lower(), weight, None)

    return (
        categories.normalized(CATEGORY_SATURATION, MAX_CATEGORIES),
        tags.normalized(TAG_SATURATION, MAX_TAGS),
    )


def prefs_to_map(prefs: list[dict] | None) -> dict[str, float]:
    return {p["key"]: float(p.get("score", 0)) for p in prefs or [] if p.get("key")}
