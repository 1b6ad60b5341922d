"""Import every model so Base.metadata is complete wherever it is used."""

from app.models.user import User, RoleProfile, UserActivity  # noqa: F401
from app.models.token import RefreshToken, OtpRequest  # noqa: F401
from app.models.product import Product  # noqa: F401
from app.models.engagement import Upvote, Bookmark  # noqa: F401
from app.models.comment import Comment  # noqa: F401
from app.models.view import View  # noqa: F401
from app.models.recommendation_profile import RecommendationProfile  # noqa: F401
from app.models.recommendation_interaction import RecommendationInteraction  # noqa: F401
from app.models.search_history import SearchHistory  # noqa: F401
from app.models.project import Project  # noqa: F401
from app.models.job import Job  # noqa: F401
