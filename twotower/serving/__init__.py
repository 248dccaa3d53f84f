"""Top-K recommendation serving."""

from .recommender import RecommendationServer, ScoredItem  # noqa: F401
