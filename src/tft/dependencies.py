"""Shared FastAPI dependencies."""

from functools import lru_cache

from tft.config import get_settings
from tft.database import get_session, get_session_factory
from tft.leaderboard.ranking import RankingView
from tft.progression.ledger import ProgressionLedger
from tft.redis_client import get_redis_or_none

get_db = get_session


@lru_cache
def get_ledger() -> ProgressionLedger:
    """Process-wide ledger; its per-account locks must be shared by every request."""
    settings = get_settings()
    return ProgressionLedger(
        get_session_factory(),
        get_redis_or_none(),
        max_retries=settings.ledger_max_retries,
        timeout_seconds=settings.ledger_timeout_seconds,
    )


@lru_cache
def get_ranking_view() -> RankingView:
    """Process-wide ranking view (shares its staleness cache across requests)."""
    settings = get_settings()
    return RankingView(
        get_session_factory(),
        max_staleness_seconds=settings.ranking_max_staleness_seconds,
        page_max=settings.ranking_page_max,
        cache_max_entries=settings.ranking_cache_max_entries,
    )


def reset_dependencies() -> None:
    """Forget the cached ledger and ranking view (after re-initializing the database)."""
    get_ledger.cache_clear()
    get_ranking_view.cache_clear()
