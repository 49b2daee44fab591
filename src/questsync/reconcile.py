"""Per-event skip / create / update decisions against existing import mappings."""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import time
from uuid import UUID

from questsync.errors import DestinationUnavailableError, EntityWriteError
from questsync.models import (
    EntityKind,
    ImportedEventMapping,
    ImportMode,
    NormalizedEvent,
    ReconcileAction,
)
from questsync.normalize import resolve_destination, synthesize_time_range
from questsync.store import ImportWriter

logger = logging.getLogger(__name__)

ALL_DAY_ENTRY_START = time(9, 0)
ALL_DAY_ENTRY_END = time(10, 0)


@dataclass(frozen=True)
class DestinationContext:
    """Where a run's imports go and who owns them."""

    user_id: UUID
    provider: str
    uid_prefix: str
    import_as: ImportMode
    connection_id: UUID | None = None
    quest_id: UUID | None = None


@dataclass(frozen=True)
class ReconcileOutcome:
    action: ReconcileAction
    external_uid: str
    entity_kind: EntityKind | None = None
    mapping: ImportedEventMapping | None = None


def build_external_uid(prefix: str, calendar_id: str, event_id: str) -> str:
    return f"{prefix}:{calendar_id}:{event_id}"


def content_hash(event: NormalizedEvent) -> str:
    """Hash of the provider-owned fields: title, date and start time.

    End time and every locally-owned field (priority, completion) are
    excluded so local edits never look like upstream changes.
    """
    start = event.start_time.strftime("%H:%M") if event.start_time is not None else ""
    serialized = json.dumps(
        [event.title, event.event_date.isoformat(), start],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def _entry_times(event: NormalizedEvent) -> tuple[time, time]:
    if event.all_day or event.start_time is None:
        return ALL_DAY_ENTRY_START, ALL_DAY_ENTRY_END
    return synthesize_time_range(event.start_time, event.end_time)


class Reconciler:
    """Applies normalized events for one sync run.

    *lookup* is the run's mapping index keyed by external uid; it is
    extended in place as events are created so repeats within a run are
    skipped.
    """

    def __init__(
        self,
        *,
        lookup: dict[str, ImportedEventMapping],
        writer: ImportWriter,
        context: DestinationContext,
    ) -> None:
        self._lookup = lookup
        self._writer = writer
        self._context = context

    async def reconcile(self, event: NormalizedEvent) -> ReconcileOutcome:
        uid = build_external_uid(self._context.uid_prefix, event.calendar_id, event.event_id)
        version = content_hash(event)
        existing = self._lookup.get(uid)

        if existing is None:
            return await self._create(event, uid=uid, version=version)

        if existing.content_hash == version:
            return ReconcileOutcome(
                action=ReconcileAction.SKIPPED,
                external_uid=uid,
                entity_kind=existing.created_as,
                mapping=existing,
            )

        return await self._update(event, existing, version=version)

    async def _create(self, event: NormalizedEvent, *, uid: str, version: str) -> ReconcileOutcome:
        ctx = self._context
        kind = resolve_destination(ctx.import_as, event.all_day)

        if kind is EntityKind.TASK:
            if ctx.quest_id is None:
                raise DestinationUnavailableError(f"Failed to create task: {event.title}")
            try:
                mapping = await self._writer.create_task_import(
                    user_id=ctx.user_id,
                    provider=ctx.provider,
                    connection_id=ctx.connection_id,
                    external_uid=uid,
                    content_hash=version,
                    quest_id=ctx.quest_id,
                    title=event.title,
                    due_date=event.event_date,
                    scheduled_time=event.start_time,
                )
            except Exception as exc:
                logger.warning("Task create failed for uid=%s: %s", uid, exc)
                raise EntityWriteError(f"Failed to create task: {event.title}") from exc
        else:
            start_time, end_time = _entry_times(event)
            try:
                mapping = await self._writer.create_schedule_import(
                    user_id=ctx.user_id,
                    provider=ctx.provider,
                    connection_id=ctx.connection_id,
                    external_uid=uid,
                    content_hash=version,
                    title=event.title,
                    entry_date=event.event_date,
                    start_time=start_time,
                    end_time=end_time,
                )
            except Exception as exc:
                logger.warning("Schedule entry create failed for uid=%s: %s", uid, exc)
                raise EntityWriteError(f"Failed to create schedule entry: {event.title}") from exc

        self._lookup[uid] = mapping
        logger.debug("Created %s for uid=%s", kind, uid)
        return ReconcileOutcome(
            action=ReconcileAction.CREATED,
            external_uid=uid,
            entity_kind=kind,
            mapping=mapping,
        )

    async def _update(
        self,
        event: NormalizedEvent,
        existing: ImportedEventMapping,
        *,
        version: str,
    ) -> ReconcileOutcome:
        # The entity kind recorded at import time wins over the current mode.
        kind = existing.created_as
        try:
            if kind is EntityKind.TASK:
                await self._writer.update_task_import(
                    existing,
                    content_hash=version,
                    title=event.title,
                    due_date=event.event_date,
                    scheduled_time=event.start_time,
                )
            else:
                start_time, end_time = _entry_times(event)
                await self._writer.update_schedule_import(
                    existing,
                    content_hash=version,
                    title=event.title,
                    entry_date=event.event_date,
                    start_time=start_time,
                    end_time=end_time,
                )
        except Exception as exc:
            label = "task" if kind is EntityKind.TASK else "schedule entry"
            logger.warning("Update of %s failed for uid=%s: %s", label, existing.external_uid, exc)
            raise EntityWriteError(f"Failed to update {label}: {event.title}") from exc

        updated = existing.model_copy(update={"content_hash": version})
        self._lookup[existing.external_uid] = updated
        logger.debug("Updated %s for uid=%s", kind, existing.external_uid)
        return ReconcileOutcome(
            action=ReconcileAction.UPDATED,
            external_uid=existing.external_uid,
            entity_kind=kind,
            mapping=updated,
        )
