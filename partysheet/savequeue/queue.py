"""Debounced, single-flight save queue for dashboard field edits.

Lifecycle of an edit:

    edit(key, value)      field → dirty, (re)start its debounce timer
    timer fires           field → queued, item appended to the FIFO
                          (or held in the switch buffer while a switch runs)
    worker sends item     field → in_flight; one request outstanding at most
    server acks           field → idle (unless a newer edit arrived meanwhile)
    send fails            field → failed; parked and retried once after
                          ``retry_delay``; a second failure flags unsaved
                          changes and raises the alert once

Repeated edits to one field inside the debounce window collapse into one
request carrying the last value. Different fields are sent strictly one after
another with ``send_delay`` between requests.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol

from .states import FieldEvent, FieldState, transition
from .transport import FieldKey, TransportError

logger = logging.getLogger(__name__)

SIMPLE_DEBOUNCE = 1.2
LIST_DEBOUNCE = 2.0
SEND_DELAY = 0.1
RETRY_DELAY = 5.0
FLUSH_TIMEOUT = 5.0
FLUSH_POLL = 0.05

UNSAVED_ALERT = (
    "Some changes could not be saved. Check your connection; "
    "edits will be retried on the next save."
)


class SaveTransport(Protocol):
    async def save_field(self, key: FieldKey, value: Any) -> dict[str, Any]: ...

    def send_unload(self, character: str, updates: list[dict[str, Any]]) -> dict[str, Any]: ...


@dataclass
class _Field:
    state: FieldState = FieldState.IDLE
    value: Any = None
    version: int = 0


@dataclass
class _Item:
    key: FieldKey
    value: Any
    version: int
    retries: int = 0


class SaveQueue:
    """Collects field edits and sends them to the server one at a time.

    Args:
        transport:       Object with ``save_field`` / ``send_unload``.
        character:       The character currently being edited.
        debounce:        Quiet period for plain fields, seconds.
        list_debounce:   Quiet period for list-item fields (index set).
        send_delay:      Pause between consecutive requests.
        retry_delay:     Wait before the single parked retry.
        max_retries:     Parked retries per item before giving up.
        on_status:       ``(message, kind)`` callback for the status indicator.
        on_alert:        ``(message)`` callback, called once per failure streak.
    """

    def __init__(
        self,
        transport: SaveTransport,
        character: str = "",
        debounce: float = SIMPLE_DEBOUNCE,
        list_debounce: float = LIST_DEBOUNCE,
        send_delay: float = SEND_DELAY,
        retry_delay: float = RETRY_DELAY,
        max_retries: int = 1,
        on_status: Callable[[str, str], None] | None = None,
        on_alert: Callable[[str], None] | None = None,
    ) -> None:
        self.transport = transport
        self.character = character
        self.section: str | None = None
        self.debounce = debounce
        self.list_debounce = list_debounce
        self.send_delay = send_delay
        self.retry_delay = retry_delay
        self.max_retries = max_retries
        self._on_status = on_status
        self._on_alert = on_alert

        self._fields: dict[FieldKey, _Field] = {}
        self._timers: dict[FieldKey, asyncio.TimerHandle] = {}
        self._queue: deque[_Item] = deque()
        self._buffer: list[_Item] = []
        self._parked: dict[int, asyncio.TimerHandle] = {}
        self._worker: asyncio.Task | None = None
        self._in_flight: _Item | None = None
        self._switching = False
        self.has_unsaved_changes = False
        self.alert_shown = False
        self.edits_since_backup = False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def state(self, key: FieldKey) -> FieldState:
        entry = self._fields.get(key)
        return entry.state if entry else FieldState.IDLE

    def dirty_fields(self) -> dict[FieldKey, Any]:
        """Latest value of every field the server has not acknowledged."""
        return {k: f.value for k, f in self._fields.items() if f.state is not FieldState.IDLE}

    @property
    def in_flight(self) -> bool:
        return self._in_flight is not None

    @property
    def switching(self) -> bool:
        return self._switching

    def is_idle(self) -> bool:
        """No timers, queued items or request outstanding."""
        worker_busy = self._worker is not None and not self._worker.done()
        return not (self._timers or self._queue or self._in_flight or worker_busy)

    # ------------------------------------------------------------------
    # Edits and debounce
    # ------------------------------------------------------------------

    def edit(self, key: FieldKey, value: Any) -> None:
        """Record a new value for ``key`` and restart its debounce timer."""
        entry = self._fields.setdefault(key, _Field())
        entry.state = transition(entry.state, FieldEvent.EDIT)
        entry.value = value
        entry.version += 1
        self.edits_since_backup = True

        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        delay = self.list_debounce if key.index is not None else self.debounce
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(delay, self._fire, key)

    def _fire(self, key: FieldKey) -> None:
        self._timers.pop(key, None)
        entry = self._fields[key]
        entry.state = transition(entry.state, FieldEvent.DEBOUNCE_FIRED)
        self._submit(_Item(key, entry.value, entry.version))

    def _submit(self, item: _Item) -> None:
        if self._switching:
            self._buffer.append(item)
            return
        self._queue.append(item)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._drain())

    def fire_pending(self) -> int:
        """Force every pending debounce timer to fire now. Returns the count."""
        keys = list(self._timers)
        for key in keys:
            self._timers.pop(key).cancel()
            self._fire(key)
        return len(keys)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _is_current(self, item: _Item) -> bool:
        entry = self._fields.get(item.key)
        return entry is not None and entry.version == item.version

    async def _drain(self) -> None:
        self._status("Saving...", "loading")
        while self._queue:
            item = self._queue.popleft()
            if not self._is_current(item):
                continue
            entry = self._fields[item.key]
            entry.state = transition(entry.state, FieldEvent.SENT)
            self._in_flight = item
            try:
                ok, error = await self._send(item)
            finally:
                self._in_flight = None
            if ok:
                if self._is_current(item):
                    entry.state = transition(entry.state, FieldEvent.ACKED)
            else:
                self._handle_failure(item, error)
            if self._queue:
                await asyncio.sleep(self.send_delay)
        self._drained()

    async def _send(self, item: _Item) -> tuple[bool, str]:
        try:
            result = await self.transport.save_field(item.key, item.value)
        except TransportError as e:
            return False, str(e)
        if not result.get("success"):
            return False, str(result.get("error") or "save rejected")
        return True, ""

    def _handle_failure(self, item: _Item, error: str) -> None:
        if not self._is_current(item):
            # a newer value for this field is already on its way
            return
        entry = self._fields[item.key]
        entry.state = transition(entry.state, FieldEvent.FAILED)
        if item.retries < self.max_retries:
            item.retries += 1
            logger.warning("Save of %s failed (%s); retrying in %.1fs", item.key, error, self.retry_delay)
            self._status("Save failed, retrying...", "warning")
            loop = asyncio.get_running_loop()
            self._parked[id(item)] = loop.call_later(self.retry_delay, self._retry, item)
            return
        logger.error("Save of %s failed permanently: %s", item.key, error)
        self.has_unsaved_changes = True
        self._status("Unsaved changes", "error")
        if not self.alert_shown:
            self.alert_shown = True
            if self._on_alert:
                self._on_alert(UNSAVED_ALERT)

    def _retry(self, item: _Item) -> None:
        self._parked.pop(id(item), None)
        if not self._is_current(item):
            return
        entry = self._fields[item.key]
        if entry.state is not FieldState.FAILED:
            return
        entry.state = transition(entry.state, FieldEvent.RETRY)
        self._submit(item)

    def _drained(self) -> None:
        if self._parked or any(f.state is FieldState.FAILED for f in self._fields.values()):
            return
        if self.has_unsaved_changes:
            logger.info("Save queue drained; clearing unsaved-changes flag")
        self.has_unsaved_changes = False
        self.alert_shown = False
        self._status("All changes saved", "success")

    def _status(self, message: str, kind: str) -> None:
        if self._on_status:
            self._on_status(message, kind)

    # ------------------------------------------------------------------
    # Flush / switch / unload
    # ------------------------------------------------------------------

    async def flush(self, timeout: float = FLUSH_TIMEOUT) -> bool:
        """Fire pending timers and wait for the queue to empty.

        Returns False if the queue was still busy when ``timeout`` expired.
        Parked retries are not waited for.
        """
        self.fire_pending()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not self.is_idle():
            if loop.time() >= deadline:
                logger.warning("Save queue still busy after %.1fs flush", timeout)
                return False
            await asyncio.sleep(FLUSH_POLL)
        return True

    @asynccontextmanager
    async def switch(self) -> AsyncIterator[bool]:
        """Flush, then hold new saves until the block exits.

        Yields whether the flush completed in time.
        """
        drained = await self.flush()
        self._switching = True
        try:
            yield drained
        finally:
            self._switching = False
            buffered, self._buffer = self._buffer, []
            for item in buffered:
                self._submit(item)

    async def switch_character(
        self,
        character: str,
        load: Callable[[str], Awaitable[Any]] | None = None,
    ) -> bool:
        """Save everything for the current character, then move to another."""
        async with self.switch() as drained:
            self._tear_down(self.character)
            self.character = character
            if load is not None:
                await load(character)
        return drained

    async def switch_section(
        self,
        section: str,
        load: Callable[[str], Awaitable[Any]] | None = None,
    ) -> bool:
        async with self.switch() as drained:
            self.section = section
            if load is not None:
                await load(section)
        return drained

    def _tear_down(self, character: str) -> None:
        """Forget acknowledged fields of a character that is no longer shown.

        Failed fields stay tracked so unload and the unsaved flag still see them.
        """
        for key in [k for k, f in self._fields.items() if k.character == character]:
            entry = self._fields[key]
            if entry.state is FieldState.IDLE:
                entry.state = transition(entry.state, FieldEvent.TORN_DOWN)
                del self._fields[key]

    async def unload(self, timeout: float = FLUSH_TIMEOUT) -> list[dict[str, Any]]:
        """Flush, then push whatever is still unsaved in one blocking request per character."""
        await self.flush(timeout)
        by_character: dict[str, list[dict[str, Any]]] = {}
        for key, value in self.dirty_fields().items():
            by_character.setdefault(key.character, []).append(key.as_update(value))
        results = []
        for character, updates in by_character.items():
            try:
                results.append(self.transport.send_unload(character, updates))
            except TransportError as e:
                logger.error("Unload save for %s failed: %s", character, e)
                results.append({"success": False, "error": str(e)})
        return results

    def close(self) -> None:
        """Cancel timers and parked retries without sending anything."""
        for handle in [*self._timers.values(), *self._parked.values()]:
            handle.cancel()
        self._timers.clear()
        self._parked.clear()
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
