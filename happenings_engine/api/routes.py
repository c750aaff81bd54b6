"""HTTP routes for happenings_engine.

Every read route resolves occurrences through the shared
``OccurrencePipeline`` from one store snapshot, so the timeline, series
cards, digest, detail page and calendar export always agree.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Callable
from typing import Any, Optional

from aiohttp import web

from ..core.config_manager import get_config_value
from ..core.date_keys import format_date_key, parse_date_key
from ..core.timezone_utils import get_site_timezone, today_key
from ..domain.digest import build_weekly_digest
from ..domain.exceptions import (
    ExpansionBoundsError,
    OverridePatchError,
    StoreError,
)
from ..domain.models import EventDefinition
from ..domain.override_writer import validate_override_write
from ..domain.pipeline import OccurrencePipeline, ResolutionContext, ResolutionResult, digest_window
from ..domain.series_view import group_series_by_weekday
from ..store import JsonEventStore
from .ics_export import build_calendar

logger = logging.getLogger(__name__)

_TRUTHY = ("1", "true", "yes", "on")

# Top-level keys accepted in an override write body
_OVERRIDE_BODY_FIELDS = frozenset(
    {
        "date_key",
        "status",
        "patch",
        "override_start_time",
        "override_cover_image_url",
        "override_notes",
    }
)


def _error(message: str, status: int, details: Any = None) -> web.Response:
    return web.json_response({"error": message, "details": details}, status=status)


class _BadQuery(Exception):
    """Malformed query parameter; rendered as 400."""


def _query_date(request: web.Request, name: str, default: datetime.date) -> datetime.date:
    raw = request.query.get(name)
    if not raw:
        return default
    try:
        return parse_date_key(raw)
    except ValueError as exc:
        raise _BadQuery(f"{name} must be YYYY-MM-DD, got {raw!r}") from exc


def _query_int(request: web.Request, name: str, default: Optional[int]) -> Optional[int]:
    raw = request.query.get(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise _BadQuery(f"{name} must be an integer, got {raw!r}") from exc
    if value < 1:
        raise _BadQuery(f"{name} must be at least 1")
    return value


def _query_flag(request: web.Request, name: str) -> bool:
    return request.query.get(name, "").strip().lower() in _TRUTHY


def _definition_summary(definition: EventDefinition, result: ResolutionResult) -> dict[str, Any]:
    unknown = next((u for u in result.unknown_definitions if u.definition_id == definition.id), None)
    return {
        "definition_id": definition.id,
        "title": definition.title,
        "status": definition.status,
        "label": result.labels.get(definition.id),
        "schedule_error": unknown.reason if unknown else None,
        "issues": [
            {"code": issue.code.value, "message": issue.message} for issue in result.issues.get(definition.id, ())
        ],
    }


def register_api_routes(
    app: web.Application,
    config: Any,
    store: JsonEventStore,
    pipeline: OccurrencePipeline,
    time_provider: Callable[[], datetime.datetime],
) -> None:
    """Register the occurrence API routes.

    Args:
        app: aiohttp web application
        config: Application configuration (dict or object)
        store: Definition and override store
        pipeline: Shared occurrence pipeline
        time_provider: Callable returning the current aware UTC time
    """
    default_days = int(get_config_value(config, "default_window_days", pipeline.caps.default_window_days))

    def _today() -> datetime.date:
        return today_key(time_provider())

    def _resolve(
        start: datetime.date,
        days: int,
        *,
        today: datetime.date,
        definition_ids: Optional[set[str]] = None,
        include_unpublished: bool = False,
    ) -> ResolutionResult:
        context = ResolutionContext.for_window(
            start,
            days,
            today=today,
            include_unpublished=include_unpublished,
            definition_ids=definition_ids,
        )
        snapshot = store.snapshot(context.window_start, context.window_end)
        return pipeline.resolve(snapshot.definitions, snapshot.overrides, context)

    def _window_payload(result: ResolutionResult) -> dict[str, Any]:
        return {
            "start": format_date_key(result.context.window_start),
            "end": format_date_key(result.context.window_end),
            "today": format_date_key(result.context.today),
        }

    async def health_check(_request: web.Request) -> web.Response:
        """Health check endpoint for monitoring."""
        now = time_provider()
        snapshot = store.snapshot()
        return web.json_response(
            {
                "status": "ok",
                "server_time_iso": now.isoformat(),
                "site_timezone": get_site_timezone(),
                "today": format_date_key(today_key(now)),
                "definition_count": len(snapshot.definitions),
                "override_count": len(snapshot.overrides),
            }
        )

    async def timeline(request: web.Request) -> web.Response:
        """Occurrences grouped by display date."""
        today = _today()
        try:
            start = _query_date(request, "start", today)
            days = _query_int(request, "days", default_days) or default_days
            include_cancelled = _query_flag(request, "include_cancelled")
            result = _resolve(start, days, today=today)
        except _BadQuery as exc:
            return _error(str(exc), 400)
        except ExpansionBoundsError as exc:
            return _error("invalid window", 400, str(exc))

        return web.json_response(
            {
                "window": _window_payload(result),
                "days": [day.to_api() for day in result.timeline(include_cancelled=include_cancelled)],
                "metrics": result.metrics.to_api(),
                "warnings": result.warnings,
            }
        )

    async def series(request: web.Request) -> web.Response:
        """Recurring series cards grouped by weekday."""
        today = _today()
        try:
            start = _query_date(request, "start", today)
            days = _query_int(request, "days", default_days) or default_days
            limit = _query_int(request, "limit", None)
            result = _resolve(start, days, today=today)
        except _BadQuery as exc:
            return _error(str(exc), 400)
        except ExpansionBoundsError as exc:
            return _error("invalid window", 400, str(exc))

        entries = result.series(per_series_limit=limit)
        sections = group_series_by_weekday(entries, today)
        return web.json_response(
            {
                "window": _window_payload(result),
                "sections": [
                    {"heading": section.heading, "series": [entry.to_api() for entry in section.series]}
                    for section in sections
                ],
                "warnings": result.warnings,
            }
        )

    async def weekly_digest(_request: web.Request) -> web.Response:
        """Seven-day digest starting today."""
        today = _today()
        start, _end = digest_window(today)
        result = _resolve(start, 7, today=today)
        return web.json_response(
            {
                "window": _window_payload(result),
                "days": [day.to_api() for day in build_weekly_digest(result)],
            }
        )

    async def event_detail(request: web.Request) -> web.Response:
        """One definition with a single occurrence or its next occurrences."""
        definition_id = request.match_info["definition_id"]
        definition = store.get_definition(definition_id)
        if definition is None:
            return _error(f"unknown definition {definition_id}", 404)

        today = _today()
        try:
            slot = _query_date(request, "date", today) if request.query.get("date") else None
            if slot is not None:
                result = _resolve(slot, 1, today=today, definition_ids={definition_id}, include_unpublished=True)
                occurrence = result.find(definition_id, slot)
                if occurrence is None:
                    return _error(f"definition {definition_id} has no occurrence on {format_date_key(slot)}", 404)
                return web.json_response(
                    {"definition": _definition_summary(definition, result), "occurrence": occurrence.to_api()}
                )

            result = _resolve(today, default_days, today=today, definition_ids={definition_id}, include_unpublished=True)
        except _BadQuery as exc:
            return _error(str(exc), 400)

        window_overrides = store.list_overrides(definition_id, result.context.window_start, result.context.window_end)
        return web.json_response(
            {
                "definition": _definition_summary(definition, result),
                "occurrences": [occ.to_api() for occ in result.upcoming(include_cancelled=True)],
                "overrides": [override.model_dump(mode="json") for override in window_overrides],
            }
        )

    async def event_calendar(request: web.Request) -> web.Response:
        """iCalendar export of one definition's occurrences."""
        definition_id = request.match_info["definition_id"]
        definition = store.get_definition(definition_id)
        if definition is None:
            return _error(f"unknown definition {definition_id}", 404)

        today = _today()
        result = _resolve(today, default_days, today=today, definition_ids={definition_id}, include_unpublished=True)
        body = build_calendar(
            result.upcoming(include_cancelled=True),
            name=definition.title or definition_id,
            dtstamp=time_provider(),
        )
        return web.Response(
            body=body,
            content_type="text/calendar",
            charset="utf-8",
            headers={"Content-Disposition": f'attachment; filename="{definition_id}.ics"'},
        )

    async def post_override(request: web.Request) -> web.Response:
        """Create, update, or revert the override for one occurrence."""
        definition_id = request.match_info["definition_id"]
        definition = store.get_definition(definition_id)
        if definition is None:
            return _error(f"unknown definition {definition_id}", 404)

        try:
            data = await request.json()
        except Exception:
            return _error("invalid json", 400)
        if not isinstance(data, dict):
            return _error("request body must be an object", 400)

        unknown = sorted(set(data) - _OVERRIDE_BODY_FIELDS)
        if unknown:
            return _error("unknown fields in request body", 400, {"rejected_fields": unknown})

        try:
            slot = parse_date_key(data.get("date_key"))
        except ValueError:
            return _error("date_key must be YYYY-MM-DD", 400, {"rejected_fields": ["date_key"]})

        today = _today()
        try:
            write = validate_override_write(
                definition,
                slot,
                today=today,
                status=data.get("status", "normal"),
                patch=data.get("patch"),
                override_start_time=data.get("override_start_time"),
                override_cover_image_url=data.get("override_cover_image_url"),
                override_notes=data.get("override_notes"),
                existing=store.get_override(definition_id, slot),
                now=time_provider(),
            )
            stored = store.apply_override_write(write)
        except OverridePatchError as exc:
            return _error(str(exc), 400, {"rejected_fields": exc.rejected_fields})
        except StoreError:
            logger.exception("Failed to store override for %s on %s", definition_id, slot)
            return _error("failed to store override", 500)

        result = _resolve(slot, 1, today=today, definition_ids={definition_id}, include_unpublished=True)
        occurrence = result.find(definition_id, slot)
        return web.json_response(
            {
                "action": write.action.value,
                "override": stored.model_dump(mode="json") if stored else None,
                "occurrence": occurrence.to_api() if occurrence else None,
            }
        )

    async def delete_override(request: web.Request) -> web.Response:
        """Revert one occurrence to its base values."""
        definition_id = request.match_info["definition_id"]
        if store.get_definition(definition_id) is None:
            return _error(f"unknown definition {definition_id}", 404)
        try:
            slot = parse_date_key(request.match_info["date_key"])
        except ValueError:
            return _error("date_key must be YYYY-MM-DD", 400)

        try:
            removed = store.delete_override(definition_id, slot)
        except StoreError:
            logger.exception("Failed to delete override for %s on %s", definition_id, slot)
            return _error("failed to delete override", 500)
        if not removed:
            return _error(f"no override for {definition_id} on {format_date_key(slot)}", 404)
        return web.json_response({"deleted": True, "definition_id": definition_id, "date_key": format_date_key(slot)})

    async def orphaned_overrides(request: web.Request) -> web.Response:
        """Host audit: overrides whose dates no definition produces."""
        today = _today()
        try:
            start = _query_date(request, "start", today)
            days = _query_int(request, "days", default_days) or default_days
            result = _resolve(start, days, today=today, include_unpublished=True)
        except _BadQuery as exc:
            return _error(str(exc), 400)
        except ExpansionBoundsError as exc:
            return _error("invalid window", 400, str(exc))

        return web.json_response(
            {
                "window": _window_payload(result),
                "orphaned_overrides": [miss.to_api() for miss in result.orphaned_overrides],
                "unknown_definitions": [unknown.to_api() for unknown in result.unknown_definitions],
                "issues": {
                    definition_id: [{"code": issue.code.value, "message": issue.message} for issue in issues]
                    for definition_id, issues in result.issues.items()
                },
            }
        )

    app.router.add_get("/api/health", health_check)
    app.router.add_get("/api/timeline", timeline)
    app.router.add_get("/api/series", series)
    app.router.add_get("/api/digest/weekly", weekly_digest)
    app.router.add_get("/api/events/{definition_id}", event_detail)
    app.router.add_get("/api/events/{definition_id}/calendar.ics", event_calendar)
    app.router.add_post("/api/events/{definition_id}/overrides", post_override)
    app.router.add_delete("/api/events/{definition_id}/overrides/{date_key}", delete_override)
    app.router.add_get("/api/audit/orphaned-overrides", orphaned_overrides)
