"""Calendar sync runs: fetch, normalize, reconcile, and aggregate."""

from __future__ import annotations

import asyncio
import calendar
import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from uuid import UUID

from opentelemetry import trace

from questsync.config import SyncConfig
from questsync.core.locks import KeyedLocks
from questsync.core.logging import set_sync_context
from questsync.core.telemetry import get_tracer, record_span_error
from questsync.errors import (
    EventScopedError,
    FetchFailedError,
    NoCalendarsSelectedError,
    NoConnectionError,
    RunFatalError,
)
from questsync.models import (
    CalendarInfo,
    Connection,
    EntityKind,
    ImportMode,
    ProviderEvent,
    ReconcileAction,
    SyncResult,
)
from questsync.normalize import normalize_event, resolve_timezone
from questsync.providers.base import CalendarProvider
from questsync.reconcile import DestinationContext, ReconcileOutcome, Reconciler
from questsync.store import SyncStore
from questsync.tokens import TokenManager

logger = logging.getLogger(__name__)

SYNC_RUN_SPAN = "questsync.sync_run"


def add_months(value: datetime, months: int) -> datetime:
    """Shift *value* by calendar months, clamping to the target month's last day."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def sync_window(
    now: datetime,
    *,
    lookback_days: int,
    lookahead_months: int,
) -> tuple[datetime, datetime]:
    """Return ``(time_min, time_max)`` for a run starting at *now*."""
    return now - timedelta(days=lookback_days), add_months(now, lookahead_months)


class CalendarSyncEngine:
    """Runs import cycles for one provider.

    Runs for the same user are serialized; calendars may be fetched
    concurrently but events are reconciled one at a time in selected-calendar
    order.
    """

    def __init__(
        self,
        *,
        provider: CalendarProvider,
        store: SyncStore,
        config: SyncConfig | None = None,
        token_manager: TokenManager | None = None,
        clock: Callable[[], datetime] | None = None,
        tracer: trace.Tracer | None = None,
    ) -> None:
        self._provider = provider
        self._store = store
        self._config = config or SyncConfig()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._tokens = token_manager or TokenManager(
            provider=provider,
            store=store,
            refresh_margin=timedelta(seconds=self._config.token_refresh_margin_seconds),
            clock=self._clock,
        )
        self._tracer = tracer or get_tracer()
        self._run_locks = KeyedLocks()

    @property
    def provider(self) -> CalendarProvider:
        return self._provider

    async def _load_connection(self, user_id: UUID) -> Connection:
        connection = await self._store.get_connection(user_id, self._provider.name)
        if connection is None:
            raise NoConnectionError(user_id=user_id, provider=self._provider.name)
        return connection

    async def list_calendars(self, user_id: UUID) -> tuple[Connection, list[CalendarInfo]]:
        """Return the user's connection and the calendars its account can read."""
        connection = await self._load_connection(user_id)
        access_token = await self._tokens.get_valid_access_token(connection)
        calendars = await self._provider.list_calendars(access_token)
        return connection, calendars

    async def run_sync(self, user_id: UUID, timezone: str = "UTC") -> SyncResult:
        """Import the selected calendars of *user_id* into tasks and schedule entries.

        Raises
        ------
        NoConnectionError, NoCalendarsSelectedError, TokenUnavailableError
            Before any event is fetched. Calendar and event failures are
            reported in ``SyncResult.errors`` instead.
        """
        async with self._run_locks.hold(user_id):
            set_sync_context(user_id)
            try:
                with self._tracer.start_as_current_span(SYNC_RUN_SPAN) as span:
                    span.set_attribute("questsync.user_id", str(user_id))
                    span.set_attribute("questsync.provider", self._provider.name)
                    try:
                        result = await self._run(user_id, timezone)
                    except RunFatalError as exc:
                        record_span_error(span, exc)
                        raise
                    span.set_attribute("questsync.events_processed", result.events_processed)
                    span.set_attribute("questsync.created", result.created)
                    span.set_attribute("questsync.updated", result.updated)
                    span.set_attribute("questsync.errors", len(result.errors))
                    return result
            finally:
                set_sync_context(None)

    async def _run(self, user_id: UUID, timezone: str) -> SyncResult:
        connection = await self._load_connection(user_id)
        if not connection.selected_calendars:
            raise NoCalendarsSelectedError()

        access_token = await self._tokens.get_valid_access_token(connection)
        now = self._clock()
        tz_name = str(resolve_timezone(timezone))
        result = SyncResult()

        quest_id = connection.target_quest_id
        if quest_id is None and connection.import_as in (ImportMode.TASKS, ImportMode.SMART):
            try:
                quest_id = await self._resolve_default_quest(user_id)
            except Exception:
                logger.exception("Could not resolve a destination quest for user=%s", user_id)
                result.errors.append("Failed to resolve destination quest")

        mappings = await self._store.load_mappings(user_id, self._provider.name)
        lookup = {mapping.external_uid: mapping for mapping in mappings}
        reconciler = Reconciler(
            lookup=lookup,
            writer=self._store,
            context=DestinationContext(
                user_id=user_id,
                provider=self._provider.name,
                uid_prefix=self._provider.uid_prefix,
                import_as=connection.import_as,
                connection_id=connection.id,
                quest_id=quest_id,
            ),
        )

        time_min, time_max = sync_window(
            now,
            lookback_days=self._config.lookback_days,
            lookahead_months=self._config.lookahead_months,
        )
        logger.info(
            "Sync run started: provider=%s calendars=%d window=[%s, %s] mappings=%d",
            self._provider.name,
            len(connection.selected_calendars),
            time_min.isoformat(),
            time_max.isoformat(),
            len(lookup),
        )

        fetched = await self._fetch_calendars(
            connection.selected_calendars,
            access_token=access_token,
            time_min=time_min,
            time_max=time_max,
        )
        for calendar_id, events in fetched:
            if isinstance(events, FetchFailedError):
                result.errors.append(f"Failed to fetch calendar: {calendar_id}")
                continue
            result.calendars_processed += 1
            for event in events:
                result.events_processed += 1
                await self._process_event(event, reconciler, result, tz_name)

        await self._store.mark_synced(connection.id, now)
        result.last_synced_at = now
        logger.info(
            "Sync run finished: created=%d updated=%d skipped=%d errors=%d",
            result.created,
            result.updated,
            result.events_skipped,
            len(result.errors),
        )
        return result

    async def _resolve_default_quest(self, user_id: UUID) -> UUID:
        quest_id = await self._store.find_oldest_quest(user_id)
        if quest_id is None:
            quest_id = await self._store.create_quest(user_id, self._config.default_quest_title)
        return quest_id

    async def _fetch_calendars(
        self,
        calendar_ids: Sequence[str],
        *,
        access_token: str,
        time_min: datetime,
        time_max: datetime,
    ) -> list[tuple[str, list[ProviderEvent] | FetchFailedError]]:
        semaphore = asyncio.Semaphore(max(1, self._config.fetch_concurrency))

        async def _fetch_one(calendar_id: str) -> list[ProviderEvent] | FetchFailedError:
            async with semaphore:
                try:
                    return await self._provider.fetch_events(
                        calendar_id,
                        time_min=time_min,
                        time_max=time_max,
                        access_token=access_token,
                    )
                except FetchFailedError as exc:
                    return exc
                except Exception as exc:
                    logger.exception("Unexpected fetch failure for calendar=%s", calendar_id)
                    return FetchFailedError(calendar_id, reason=exc.__class__.__name__)

        results = await asyncio.gather(*(_fetch_one(cid) for cid in calendar_ids))
        return list(zip(calendar_ids, results, strict=True))

    async def _process_event(
        self,
        event: ProviderEvent,
        reconciler: Reconciler,
        result: SyncResult,
        timezone: str,
    ) -> None:
        try:
            normalized = normalize_event(event, timezone)
            outcome = await reconciler.reconcile(normalized)
        except EventScopedError as exc:
            result.errors.append(str(exc))
            return
        except Exception:
            logger.exception(
                "Error processing event id=%s calendar=%s", event.id, event.calendar_id
            )
            result.errors.append(f"Error processing: {event.title}")
            return
        _fold_outcome(result, outcome)


def _fold_outcome(result: SyncResult, outcome: ReconcileOutcome) -> None:
    if outcome.action is ReconcileAction.SKIPPED:
        result.events_skipped += 1
        return
    is_task = outcome.entity_kind is EntityKind.TASK
    if outcome.action is ReconcileAction.CREATED:
        if is_task:
            result.tasks_created += 1
        else:
            result.schedule_entries_created += 1
    elif is_task:
        result.tasks_updated += 1
    else:
        result.schedule_entries_updated += 1
