"""Command-line entry for happenings_engine.

By default this starts the HTTP server. ``--preview`` prints a definition's
recurrence label and next occurrences instead, which is handy when checking
a stored schedule by hand.
"""

from __future__ import annotations

import argparse
import sys
from typing import NoReturn, Optional

from . import _init_logging, run_server
from .domain.exceptions import ExpansionBoundsError


def _positive_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected a whole number, got {text!r}") from exc
    if value < 1:
        raise argparse.ArgumentTypeError("must be at least 1")
    return value


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for happenings_engine CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="happenings-engine",
        description="Happenings Engine - recurring event occurrence server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m happenings_engine                          # Start server on default port (8080)
  python -m happenings_engine --port 3000              # Start server on port 3000
  python -m happenings_engine --data ./events.json     # Use a specific event store
  python -m happenings_engine --preview open-mic       # Print upcoming dates for one event
        """,
    )

    parser.add_argument(
        "--port",
        type=int,
        metavar="PORT",
        help="Port number for the web server (default: 8080, or from HAPPENINGS_WEB_PORT env var)",
    )
    parser.add_argument(
        "--data",
        metavar="PATH",
        help="Path to the JSON event store (default: HAPPENINGS_DATA_PATH or package-local happenings.json)",
    )
    parser.add_argument(
        "--preview",
        metavar="DEFINITION_ID",
        help="Print the recurrence label and upcoming occurrences for one definition, then exit",
    )
    parser.add_argument(
        "--days",
        type=_positive_int,
        default=None,
        metavar="DAYS",
        help="Window size in days for --preview (default: HAPPENINGS_WINDOW_DAYS or 90)",
    )

    return parser


def preview_definition(
    definition_id: str, data_path: Optional[str] = None, days: Optional[int] = None
) -> list[str]:
    """Render a plain-text preview of one definition's upcoming occurrences.

    Raises:
        KeyError: if the store has no such definition
        ExpansionBoundsError: if ``days`` exceeds the maximum window
    """
    from .core.config_manager import ConfigManager, get_config_value
    from .core.date_keys import format_date_key
    from .domain.expander import ExpansionCaps
    from .domain.humanizer import format_short_weekday_date, format_time_display
    from .domain.pipeline import OccurrencePipeline, ResolutionContext
    from .store import JsonEventStore

    cfg = ConfigManager().load_full_config()
    store = JsonEventStore(data_path or get_config_value(cfg, "data_path"))
    definition = store.get_definition(definition_id)
    if definition is None:
        raise KeyError(definition_id)

    caps = ExpansionCaps.from_settings(cfg)
    context = ResolutionContext.for_window(
        days=days or caps.default_window_days,
        include_unpublished=True,
        definition_ids=[definition_id],
    )
    snapshot = store.snapshot(context.window_start, context.window_end)
    result = OccurrencePipeline(caps).resolve(snapshot.definitions, snapshot.overrides, context)

    lines = [definition.title or definition_id]
    for unknown in result.unknown_definitions:
        lines.append(f"  schedule error: {unknown.reason}")
    for issue in result.issues.get(definition_id, ()):
        lines.append(f"  warning: {issue.message}")

    label_text = result.labels.get(definition_id)
    if label_text:
        lines.append(f"  {label_text}")

    occurrences = result.upcoming(include_cancelled=True)
    for occ in occurrences:
        flags = []
        if occ.is_cancelled:
            flags.append("cancelled")
        if occ.is_rescheduled:
            flags.append(f"moved from {format_date_key(occ.date_key)}")
        suffix = f" ({', '.join(flags)})" if flags else ""
        time_text = format_time_display(occ.effective.start_time)
        when = format_short_weekday_date(occ.display_date_key)
        lines.append(f"  {when}{' ' + time_text if time_text else ''} [{occ.verification_state.value}]{suffix}")
    if not occurrences and not result.unknown_definitions:
        lines.append("  no occurrences in window")
    return lines


def main() -> NoReturn:
    """Run the happenings_engine CLI."""
    parser = _create_parser()
    args = parser.parse_args()

    if args.preview:
        _init_logging("WARNING")
        try:
            lines = preview_definition(args.preview, args.data, args.days)
        except KeyError:
            print(f"Unknown definition: {args.preview}", file=sys.stderr)
            sys.exit(1)
        except ExpansionBoundsError as exc:
            print(f"Invalid preview window: {exc}", file=sys.stderr)
            sys.exit(2)
        print("\n".join(lines))
        sys.exit(0)

    run_server(args)
    sys.exit(0)


if __name__ == "__main__":
    main()
