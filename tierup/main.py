"""
TierUp — tiered competition voting engine.
Entry point: operator commands (schema setup, leaderboard, stats, advancement).
"""
import argparse
import asyncio
import json
import logging
import sys

from tierup.config import settings
from tierup.errors import EngineError
from tierup.gateway import ContestGateway
from tierup.models.base import Base, engine
from tierup.services.notification_service import Notifier, build_bot

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)


async def create_tables() -> None:
    """Create all database tables."""
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables ready.")
    except Exception as e:
        logger.critical(
            "❌ Cannot connect to database!\n"
            "   URL: %s\n"
            "   Error: %s\n\n"
            "   → Locally: start PostgreSQL or use SQLite "
            "(DATABASE_URL=sqlite+aiosqlite:///./tierup.db)",
            settings.DATABASE_URL.split("@")[-1],   # hide credentials in log
            e,
        )
        sys.exit(1)


def _print(payload) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


async def cmd_init_db(gateway: ContestGateway, args) -> dict:
    await create_tables()
    return {"status": "ok"}


async def cmd_leaderboard(gateway: ContestGateway, args) -> dict:
    board = await gateway.leaderboard(args.competition_id, limit=args.limit, offset=args.offset)
    return board.to_dict()


async def cmd_stats(gateway: ContestGateway, args) -> dict:
    stats = await gateway.stats(args.competition_id)
    return stats.to_dict()


async def cmd_advance(gateway: ContestGateway, args) -> dict:
    criteria = {}
    if args.top_n is not None:
        criteria["top_n"] = args.top_n
    if args.min_votes is not None:
        criteria["min_votes"] = args.min_votes
    result = await gateway.advance(args.competition_id, args.next_tier, criteria)
    return result.to_dict()


async def run(args) -> int:
    gateway = ContestGateway(notifier=Notifier(build_bot()))
    try:
        _print(await args.func(gateway, args))
        return 0
    except EngineError as e:
        _print({"error": e.to_dict()})
        return 1
    finally:
        await gateway.close()
        await engine.dispose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tierup",
        description="Tiered competition voting engine",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init-db", help="Create database tables")
    init_parser.set_defaults(func=cmd_init_db)

    lb_parser = subparsers.add_parser("leaderboard", help="Recompute and show a leaderboard")
    lb_parser.add_argument("competition_id", type=int, help="Competition id")
    lb_parser.add_argument("--limit", type=int, default=None, help="Page size (default: LEADERBOARD_PAGE_SIZE)")
    lb_parser.add_argument("--offset", type=int, default=0, help="Page offset (default: 0)")
    lb_parser.set_defaults(func=cmd_leaderboard)

    stats_parser = subparsers.add_parser("stats", help="Show competition statistics")
    stats_parser.add_argument("competition_id", type=int, help="Competition id")
    stats_parser.set_defaults(func=cmd_stats)

    adv_parser = subparsers.add_parser("advance", help="Advance winners to the next tier")
    adv_parser.add_argument("competition_id", type=int, help="Completed competition id")
    adv_parser.add_argument("next_tier", choices=["national", "global"], help="Target tier")
    adv_parser.add_argument("--top-n", type=int, default=None, help="Leaderboard positions to take")
    adv_parser.add_argument("--min-votes", type=int, default=None, help="Minimum votes per winner")
    adv_parser.set_defaults(func=cmd_advance)

    return parser


def main() -> None:
    args = build_parser().parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
