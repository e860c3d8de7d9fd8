from tierup.services.competition_service import (
    CompetitionStats,
    create_competition, get_competition, require_competition,
    set_competition_status, get_competition_stats,
)
from tierup.services.participation_service import (
    apply, approve, reject, withdraw,
    get_participant, list_participants,
)
from tierup.services.fraud_guard import (
    Decision, FraudGuard, LedgerVelocityCounter, SlidingWindowCounter,
)
from tierup.services.vote_service import VoteReceipt, cast_vote
from tierup.services.ranking_service import (
    Leaderboard, LeaderboardEntry, TrendingEntry,
    leaderboard, trending_participants, rank_participants,
    select_winners, default_top_n,
)
from tierup.services.advancement_service import AdvancementResult, advance
from tierup.services.notification_service import Notifier, build_bot

__all__ = [
    # competitions
    "CompetitionStats",
    "create_competition", "get_competition", "require_competition",
    "set_competition_status", "get_competition_stats",
    # participation
    "apply", "approve", "reject", "withdraw",
    "get_participant", "list_participants",
    # fraud guard
    "Decision", "FraudGuard", "LedgerVelocityCounter", "SlidingWindowCounter",
    # voting
    "VoteReceipt", "cast_vote",
    # ranking
    "Leaderboard", "LeaderboardEntry", "TrendingEntry",
    "leaderboard", "trending_participants", "rank_participants",
    "select_winners", "default_top_n",
    # advancement
    "AdvancementResult", "advance",
    # notifications
    "Notifier", "build_bot",
]
