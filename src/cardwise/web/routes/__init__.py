"""Web routes for Cardwise."""

from cardwise.web.routes.cards import router as cards_router
from cardwise.web.routes.review import router as review_router
from cardwise.web.routes.stats import router as stats_router

__all__ = ["cards_router", "review_router", "stats_router"]
