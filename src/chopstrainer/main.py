"""CLI entrypoint for compound-based guitar practice recommendations."""

from __future__ import annotations

import argparse
import logging
from collections.abc import Callable, Sequence
from pathlib import Path

from . import __version__
from .compound import compound_id
from .models import Compound, CompoundStats
from .service import PracticeService
from .settings import load_settings
from .streaks import StreakInfo

PrintFn = Callable[[str], None]
DEFAULT_DB_PATH = Path(".chopstrainer") / "progress.db"
DEFAULT_PROFILE = "default"


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(prog="chopstrainer", description="Compound-based guitar practice recommendations")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--db", type=Path, default=DEFAULT_DB_PATH, help="progress database path")
    parser.add_argument("--settings", type=Path, default=None, help="JSON settings override file")
    parser.add_argument("--profile", default=DEFAULT_PROFILE, help="profile name (created on first use)")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("next", help="suggest the next exercise")
    log_parser = commands.add_parser("log", help="log an attempt at the pending suggestion")
    log_parser.add_argument("bpm", type=float, help="tempo reached, in beats per minute")
    history_parser = commands.add_parser("history", help="show recent practice")
    history_parser.add_argument("--limit", type=int, default=20)
    commands.add_parser("stats", help="show compound statistics")
    commands.add_parser("struggling", help="show compounds you are struggling with")
    commands.add_parser("achievements", help="show achievements and progress")
    proficient_parser = commands.add_parser("proficient", help="list, declare or withdraw proficiencies")
    proficient_parser.add_argument("action", nargs="?", choices=("list", "add", "remove"), default="list")
    proficient_parser.add_argument("dimension", nargs="?", default=None)
    proficient_parser.add_argument("value", nargs="?", default=None)
    commands.add_parser("recalc", help="rebuild statistics from practice history")
    export_parser = commands.add_parser("export", help="export profile to JSON")
    export_parser.add_argument("path", type=Path)
    import_parser = commands.add_parser("import", help="import profile from JSON")
    import_parser.add_argument("path", type=Path)
    import_parser.add_argument("--name", default=None, help="name for the imported profile")
    return parser


def _service(args: argparse.Namespace) -> PracticeService:
    """Create app service from parsed arguments."""
    return PracticeService(db_path=args.db, settings=load_settings(args.settings))


def run(
    argv: Sequence[str] | None = None,
    print_fn: PrintFn = print,
    service_factory: Callable[[argparse.Namespace], PracticeService] = _service,
) -> int:
    """Run the CLI application."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        service = service_factory(args)
    except (OSError, ValueError) as exc:
        print_fn(f"Error: {exc}")
        return 1
    try:
        return _dispatch(service, args, print_fn)
    except (KeyError, LookupError, ValueError) as exc:
        print_fn(f"Error: {exc}")
        return 1
    finally:
        service.close()


def _dispatch(service: PracticeService, args: argparse.Namespace, print_fn: PrintFn) -> int:
    """Run one subcommand."""
    if args.command == "import":
        return _import_flow(service, args.path, args.name, print_fn)

    profile = service.ensure_profile(args.profile)
    if args.command == "next":
        _next_flow(service, profile.id, print_fn)
    elif args.command == "log":
        _log_flow(service, profile.id, args.bpm, print_fn)
    elif args.command == "history":
        _history_flow(service, profile.id, args.limit, print_fn)
    elif args.command == "stats":
        _stats_flow(service, profile.id, print_fn)
    elif args.command == "struggling":
        _struggling_flow(service, profile.id, print_fn)
    elif args.command == "recalc":
        count = service.recalculate(profile.id)
        print_fn(f"Recalculated statistics from {count} attempts.")
    elif args.command == "achievements":
        _achievements_flow(service, profile.id, print_fn)
    elif args.command == "proficient":
        _proficient_flow(service, profile.id, args.action, args.dimension, args.value, print_fn)
    elif args.command == "export":
        return _export_flow(service, profile.id, args.path, print_fn)
    return 0


def describe_compound(compound: Compound) -> str:
    """Return a one-line description of a compound."""
    parts = [
        f"{compound.scale.replace('_', ' ')} scale",
        f"{compound.position}-shape",
        f"{compound.rhythm} ({compound.rhythm_pattern})",
    ]
    if compound.note_pattern is not None:
        parts.append(f"{compound.note_pattern} pattern")
    if compound.articulation is not None:
        parts.append(compound.articulation)
    return ", ".join(parts)


def _next_flow(service: PracticeService, profile_id: int, print_fn: PrintFn) -> None:
    """Generate and print the next suggestion."""
    suggestion = service.next_suggestion(profile_id)
    print_fn("\n=== Next Exercise ===")
    print_fn(f"Key: {suggestion.key}")
    print_fn(f"Exercise: {describe_compound(suggestion.compound)}")
    print_fn(f"Why: {suggestion.reasoning}")
    print_fn("Log your tempo with: chopstrainer log <bpm>")


def _log_flow(service: PracticeService, profile_id: int, bpm: float, print_fn: PrintFn) -> None:
    """Log the pending suggestion and print the outcome."""
    outcome = service.log_last_suggestion(profile_id, bpm)
    stats = outcome.stats
    entry = outcome.entry
    print_fn(f"Logged {entry.bpm:g} bpm ({entry.npm:g} npm, {service.speed_tier(entry.npm)}).")
    print_fn(f"Attempts: {stats.attempts}  Best: {stats.best_npm:g} npm  EMA: {stats.ema_npm:.1f} npm")
    if outcome.newly_expanded:
        print_fn("Expanded! Neighboring exercises are now available.")
    if outcome.newly_mastered:
        print_fn("Mastered! This exercise will no longer be suggested.")
    for name in outcome.unlocked:
        print_fn(f"New dimension unlocked: {name}")
    goal = service.next_goal(stats)
    if goal is not None:
        milestone, goal_bpm = goal
        print_fn(f"Goal: {goal_bpm:g} bpm to {milestone}.")
    if outcome.streak is not None:
        print_fn(_streak_line(outcome.streak))
    for achievement in outcome.achievements:
        print_fn(f"Achievement unlocked: {achievement.name} - {achievement.description}")


def _history_flow(service: PracticeService, profile_id: int, limit: int, print_fn: PrintFn) -> None:
    """Print recent practice entries."""
    entries = service.history(profile_id, limit=limit)
    print_fn("\n=== Practice History ===")
    if not entries:
        print_fn("No practice logged yet.")
        return
    rows = [
        (
            entry.logged_at[:16].replace("T", " "),
            entry.key,
            compound_id(entry.compound),
            f"{entry.bpm:g}",
            f"{entry.npm:g}",
        )
        for entry in entries
    ]
    _print_table(("When", "Key", "Compound", "BPM", "NPM"), rows, print_fn)


def _stats_rows(stats: list[CompoundStats], service: PracticeService) -> list[tuple[str, ...]]:
    """Build display rows for compound statistics."""
    rows: list[tuple[str, ...]] = []
    for item in stats:
        if item.is_mastered:
            state = "mastered"
        elif item.has_expanded:
            state = "expanded"
        else:
            state = "practicing"
        rows.append(
            (
                compound_id(item.compound),
                str(item.attempts),
                f"{item.best_npm:g}",
                f"{item.ema_npm:.1f}",
                service.speed_tier(item.ema_npm),
                state,
            )
        )
    return rows


def _stats_flow(service: PracticeService, profile_id: int, print_fn: PrintFn) -> None:
    """Print compound statistics and unlocked dimensions."""
    stats = service.compound_stats(profile_id)
    print_fn("\n=== Compound Stats ===")
    if not stats:
        print_fn("No compounds practiced yet.")
    else:
        _print_table(("Compound", "Attempts", "Best", "EMA", "Tier", "State"), _stats_rows(stats, service), print_fn)
    unlocks = service.unlocks(profile_id)
    if unlocks:
        names = ", ".join(f"{item.dimension} (session {item.unlocked_at_session})" for item in unlocks)
        print_fn(f"Unlocked dimensions: {names}")
    streak = service.streak(profile_id)
    if streak.last_practice_date is not None:
        print_fn(_streak_line(streak))
    earned = [item.achievement.name for item in service.achievements(profile_id) if item.earned]
    if earned:
        print_fn(f"Achievements: {', '.join(earned)}")


def _struggling_flow(service: PracticeService, profile_id: int, print_fn: PrintFn) -> None:
    """Print compounds with an active struggling streak."""
    stats = service.struggling(profile_id)
    print_fn("\n=== Struggling ===")
    if not stats:
        print_fn("Nothing to worry about.")
        return
    rows = [(compound_id(item.compound), str(item.struggling_streak), f"{item.last_npm:g}") for item in stats]
    _print_table(("Compound", "Streak", "Last NPM"), rows, print_fn)
    reviews = service.struggling_proficiencies(profile_id)
    if reviews:
        print_fn("Declared proficiencies worth reviewing:")
        for review in reviews:
            print_fn(f"- {review.dimension} {review.value} (in {review.compound_id}, streak {review.streak})")


def _streak_line(streak: StreakInfo) -> str:
    """Format a streak summary line."""
    line = f"Streak: {streak.current_streak} day(s) (longest {streak.longest_streak})"
    if streak.streak_freezes:
        line += f", {streak.streak_freezes} freeze(s) banked"
    return line


def _achievements_flow(service: PracticeService, profile_id: int, print_fn: PrintFn) -> None:
    """Print every achievement with its progress."""
    statuses = service.achievements(profile_id)
    print_fn("\n=== Achievements ===")
    rows = [
        (
            "x" if item.earned else " ",
            item.achievement.name,
            item.achievement.category,
            f"{item.progress * 100:.0f}%",
            item.achievement.description,
        )
        for item in statuses
    ]
    _print_table(("", "Name", "Category", "Progress", "Description"), rows, print_fn)
    earned = sum(1 for item in statuses if item.earned)
    print_fn(f"Earned {earned} of {len(statuses)}.")


def _proficient_flow(
    service: PracticeService,
    profile_id: int,
    action: str,
    dimension: str | None,
    value: str | None,
    print_fn: PrintFn,
) -> None:
    """List, declare or withdraw dimension proficiencies."""
    if action == "list":
        items = [item for item in service.proficiencies(profile_id) if dimension is None or item.dimension == dimension]
        print_fn("\n=== Proficiencies ===")
        if not items:
            print_fn("No proficiencies declared.")
            return
        _print_table(("Dimension", "Value"), [(item.dimension, item.value) for item in items], print_fn)
        return
    if dimension is None or value is None:
        raise ValueError(f"proficient {action} needs a dimension and a value")
    if action == "add":
        added = service.declare_proficiency(profile_id, dimension, value)
        if not added:
            print_fn(f"Already proficient in {dimension} {value}.")
            return
        print_fn(f"Declared {dimension} proficiency: {', '.join(added)}")
        return
    if service.remove_proficiency(profile_id, dimension, value):
        print_fn(f"Removed {dimension} proficiency: {value}")
    else:
        print_fn(f"No {dimension} proficiency declared for {value}.")


def _export_flow(service: PracticeService, profile_id: int, path: Path, print_fn: PrintFn) -> int:
    """Export the current profile to a JSON file."""
    try:
        summary = service.export_profile(profile_id, path)
    except (OSError, ValueError) as exc:
        print_fn(f"Export failed: {exc}")
        return 1
    print_fn(f"Exported profile '{summary.profile_name}' to {path} ({summary.practice_rows} attempts).")
    return 0


def _import_flow(service: PracticeService, path: Path, name: str | None, print_fn: PrintFn) -> int:
    """Import a profile from a JSON file."""
    try:
        summary = service.import_profile(path, name)
    except (OSError, ValueError) as exc:
        print_fn(f"Import failed: {exc}")
        return 1
    print_fn(
        f"Imported profile '{summary.profile_name}' "
        f"({summary.practice_rows} attempts, {summary.unlock_rows} unlocks, "
        f"{summary.achievement_rows} achievements, {summary.proficiency_rows} proficiencies)."
    )
    return 0


def _print_table(header: Sequence[str], rows: Sequence[Sequence[str]], print_fn: PrintFn) -> None:
    """Print left-aligned columns sized to their widest cell."""
    widths = [max(len(header[index]), *(len(row[index]) for row in rows)) for index in range(len(header))]
    line = " ".join(f"{title:<{width}}" for title, width in zip(header, widths, strict=True))
    print_fn(line)
    print_fn("-" * len(line))
    for row in rows:
        print_fn(" ".join(f"{cell:<{width}}" for cell, width in zip(row, widths, strict=True)))


def main_entry() -> None:
    """Console script entrypoint."""
    raise SystemExit(run())


if __name__ == "__main__":  # pragma: no cover
    main_entry()
