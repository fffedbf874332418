import argparse
import logging
import time
from typing import List, Optional

from auto_save import AutoSaveBridge
from client import TrackerClient
from config import load_settings
from db import LocalStorageRepository
from events import LoggingNotifier
from scheduler import IntervalScheduler, ManualClock, ManualScheduler
from settings_schema import SettingsSchema
from timer_persistence import TimerPersistence
from timer_registry import TimerRegistry, run_inline


def format_seconds(seconds: int) -> str:
    minutes, secs = divmod(max(0, int(seconds)), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def build_registry(
    settings: SettingsSchema,
    db_path: Optional[str] = None,
    live: bool = False,
    client=None,
) -> TimerRegistry:
    """Registry over the configured SQLite storage.

    One-shot commands get a scheduler that never fires; their timers are
    brought up to date with :meth:`TimerRegistry.refresh` instead.
    """
    persistence = TimerPersistence(
        LocalStorageRepository(db_path or settings.storage_path)
    )
    notifier = LoggingNotifier()
    bridge = AutoSaveBridge(
        client or TrackerClient(settings.api_url, settings.api_token),
        persistence,
        notifier,
    )
    scheduler = IntervalScheduler() if live else ManualScheduler(ManualClock())
    return TimerRegistry(
        persistence,
        scheduler=scheduler,
        auto_save=bridge,
        notifier=notifier,
        background=run_inline,
        rest_seconds=settings.rest_timer_seconds,
        tick_interval=settings.tick_interval,
    )


def status_lines(registry: TimerRegistry) -> List[str]:
    lines = []
    for timer in registry.get_active_timers():
        state = "running" if timer.is_running else "paused"
        lines.append(
            f"{timer.id}  {timer.workout_name} / {timer.exercise_name}  "
            f"{format_seconds(timer.elapsed)}  {state}"
        )
    for rest in registry.get_rest_timers():
        lines.append(
            f"{rest.id}  rest after {rest.exercise_name}  "
            f"{format_seconds(rest.time_left)} left"
        )
    if not lines:
        lines.append("No active timers")
    lines.append(f"Active today: {format_seconds(registry.get_total_active_time())}")
    return lines


def print_status(registry: TimerRegistry) -> None:
    for line in status_lines(registry):
        print(line)


def watch(registry: TimerRegistry, seconds: Optional[int] = None) -> None:
    started = time.time()
    try:
        while seconds is None or time.time() - started < seconds:
            print_status(registry)
            print()
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        registry.close()


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Workout timer commands")
    parser.add_argument("--config", default="settings.yaml")
    parser.add_argument("--db", default=None)
    sub = parser.add_subparsers(dest="cmd", required=True)

    start = sub.add_parser("start")
    start.add_argument("workout")
    start.add_argument("exercise")

    for name in ("pause", "resume", "stop", "complete", "stop-rest"):
        cmd = sub.add_parser(name)
        cmd.add_argument("timer_id")

    rest = sub.add_parser("rest")
    rest.add_argument("workout")
    rest.add_argument("exercise")

    sub.add_parser("status")
    sub.add_parser("reset-total")

    clear = sub.add_parser("clear")
    clear.add_argument("--session", action="store_true")

    wat = sub.add_parser("watch")
    wat.add_argument("--seconds", type=int, default=None)

    args = parser.parse_args(argv)

    settings = load_settings(args.config)
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    registry = build_registry(settings, args.db, live=args.cmd == "watch")

    if args.cmd == "start":
        print(registry.start_exercise_timer(args.workout, args.exercise))
    elif args.cmd == "pause":
        registry.refresh()
        registry.pause_timer(args.timer_id)
    elif args.cmd == "resume":
        registry.resume_timer(args.timer_id)
    elif args.cmd == "stop":
        registry.refresh()
        registry.stop_timer(args.timer_id)
    elif args.cmd == "complete":
        registry.refresh()
        registry.complete_exercise(args.timer_id)
    elif args.cmd == "rest":
        print(registry.start_rest_timer(args.workout, args.exercise))
    elif args.cmd == "stop-rest":
        registry.stop_rest_timer(args.timer_id)
    elif args.cmd == "status":
        registry.refresh()
        print_status(registry)
    elif args.cmd == "reset-total":
        registry.reset_daily_total()
    elif args.cmd == "clear":
        if args.session:
            registry.clear_all_timers_and_session()
        else:
            registry.clear_all_timers()
    elif args.cmd == "watch":
        watch(registry, args.seconds)


if __name__ == "__main__":
    main()
