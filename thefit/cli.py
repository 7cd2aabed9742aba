"""Command-line entry point.

Usage:
    thefit show --user-id 20 --username 박승민 --date 2025-10-21 --exercise squat
    thefit watch --user-id 20 --username 박승민 --timeout 120
    thefit upload-key --user-id 20 --username 박승민 --weight 80 --exercise squat

Environment variables:
    API_BASE_URL: Workout API base URL
    CACHE_DATABASE_URL: Local cache database (sqlite+aiosqlite)
"""

import argparse
import asyncio
import sys
import time
from datetime import date, datetime
from typing import Optional

from thefit.adapters.result_storage import ResultStorage
from thefit.adapters.workout_api import WorkoutApiClient
from thefit.core.config import get_settings
from thefit.core.database import create_cache_engine
from thefit.models.exercise import ExerciseType
from thefit.models.user import UserProfile
from thefit.observability import setup_logging
from thefit.services.analyzed_video import AnalyzedVideoService
from thefit.services.local_cache import LocalCacheStore, WorkoutSetCache
from thefit.services.upload_keys import build_timestamp14, build_upload_key
from thefit.services.workout_session import FutureDateError, WorkoutSession


def _print_day(session: WorkoutSession) -> None:
    source = session.source.value if session.source else "-"
    print(
        f"\n{session.selected_date.isoformat()} {session.selected_exercise.label} "
        f"(source: {source}, total reps: {session.total_reps})"
    )
    print("=" * 50)
    for s in session.active_sets:
        weight = f"{s.weight}kg" if s.has_weight else "-"
        reps = s.reps if s.reps is not None else "-"
        print(f"  Set {s.set_number}: {weight:>7}  reps {reps!s:>3}  [{s.state.value}]")
        if s.feedback.is_analyzed:
            print(f"      {s.memo}")


async def _with_session(args: argparse.Namespace, watch_timeout: Optional[float] = None) -> int:
    settings = get_settings()
    user = UserProfile(id=args.user_id, username=args.username, name=args.name)
    engine = create_cache_engine()
    store = LocalCacheStore(engine)
    await store.init_models()

    async with WorkoutApiClient() as api:
        session = WorkoutSession(
            user,
            api,
            WorkoutSetCache(store, min_sets=settings.min_sets_per_exercise),
            settings=settings,
            analyzed_videos=AnalyzedVideoService(
                api,
                storage=ResultStorage(settings),
                result_folder=settings.result_folder,
            ),
        )
        session.selected_exercise = ExerciseType.parse(args.exercise)
        try:
            if args.date:
                await session.select_date(date.fromisoformat(args.date))
            else:
                await session.focus()
        except FutureDateError as e:
            print(f"Error: {e}")
            await session.close()
            await engine.dispose()
            return 1

        _print_day(session)

        if watch_timeout is not None:
            deadline = time.monotonic() + watch_timeout
            while session.poller.pending_count and time.monotonic() < deadline:
                await asyncio.sleep(1)
            if session.poller.pending_count:
                print(f"\nStill waiting for {session.poller.pending_count} set(s)")
            _print_day(session)

        await session.close()

    await engine.dispose()
    return 0


def _upload_key(args: argparse.Namespace) -> int:
    settings = get_settings()
    user = UserProfile(id=args.user_id, username=args.username, name=args.name)
    timestamp14 = args.timestamp or build_timestamp14(datetime.now())
    print(
        build_upload_key(
            user,
            args.weight,
            args.exercise,
            timestamp14,
            folder=settings.upload_folder,
        )
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="thefit", description="TheFit workout log client")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_user_args(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--user-id", type=int, required=True, help="User ID")
        sub.add_argument("--username", help="Username used in storage keys")
        sub.add_argument("--name", help="Display name, used when username is missing")
        sub.add_argument(
            "--exercise",
            default=ExerciseType.SQUAT.value,
            choices=[e.value for e in ExerciseType],
            help="Exercise type",
        )

    show = subparsers.add_parser("show", help="Resolve and print one day")
    add_user_args(show)
    show.add_argument("--date", help="YYYY-MM-DD (default: today)")

    watch = subparsers.add_parser("watch", help="Poll until no set awaits analysis")
    add_user_args(watch)
    watch.add_argument("--date", help="YYYY-MM-DD (default: today)")
    watch.add_argument("--timeout", type=float, default=300.0, help="Seconds to wait")

    upload_key = subparsers.add_parser("upload-key", help="Print the upload key for a set video")
    add_user_args(upload_key)
    upload_key.add_argument("--weight", required=True, help="Weight in kg")
    upload_key.add_argument("--timestamp", help="YYYYMMDDHHmmss (default: now)")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging()

    if args.command == "upload-key":
        return _upload_key(args)
    if args.command == "watch":
        return asyncio.run(_with_session(args, watch_timeout=args.timeout))
    return asyncio.run(_with_session(args))


if __name__ == "__main__":
    sys.exit(main())
