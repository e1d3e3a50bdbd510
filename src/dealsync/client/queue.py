"""Durable queue of user actions awaiting remote confirmation.

This module provides:
- PendingAction: A deferred mutation with a retry counter
- PendingActionQueue: FIFO list persisted through the KV store, drained
  against a remote effector

Drain rules:
- Actions are attempted in enqueue order; one failure never blocks the rest
- An effector call that returns is terminal: the action is removed
- An effector call that raises (or times out) is a transient failure:
  the action is kept with `retry_count + 1` while that stays within
  `max_retries`, otherwise it is dropped as a poison action
- At most one drain runs at a time; a concurrent call returns the current
  queue without attempting anything
- Actions enqueued while a drain is running are kept for the next drain

Persistence:
    The whole queue is rewritten on every change. If the store fails the
    queue keeps working in memory and the failure is logged.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import TYPE_CHECKING, Any

from dealsync.client.kvstore import PENDING_ACTIONS_KEY, KVStoreError
from dealsync.client.retry import DEFAULT_REQUEST_TIMEOUT, DrainAborted, call_with_timeout
from dealsync.core.clock import SystemClock, ensure_utc
from dealsync.core.types import ActionType

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator

    from dealsync.client.kvstore import KVStore
    from dealsync.core.clock import Clock

    Effector = Callable[["PendingAction"], Awaitable[object]]

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3


@dataclass
class PendingAction:
    """A mutation recorded while it could not be confirmed remotely.

    Attributes:
        id: Opaque identifier generated at enqueue time.
        type: Kind of mutation (favorite, redeem, review).
        payload: Opaque JSON payload forwarded to the effector.
        created_at: When the action was enqueued.
        retry_count: Failed attempts so far.
    """

    id: str
    type: ActionType
    payload: dict[str, Any]
    created_at: datetime
    retry_count: int = 0

    @classmethod
    def create(
        cls,
        action_type: ActionType | str,
        payload: dict[str, Any] | None = None,
        created_at: datetime | None = None,
    ) -> PendingAction:
        return cls(
            id=uuid.uuid4().hex[:12],
            type=ActionType(action_type),
            payload=dict(payload or {}),
            created_at=created_at or SystemClock().now(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
            "retry_count": self.retry_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PendingAction:
        return cls(
            id=data["id"],
            type=ActionType(data["type"]),
            payload=data.get("payload") or {},
            created_at=ensure_utc(datetime.fromisoformat(data["created_at"])),
            retry_count=int(data.get("retry_count", 0)),
        )

    def __repr__(self) -> str:
        return f"PendingAction({self.type.value}, id={self.id}, retries={self.retry_count})"


@dataclass
class DrainReport:
    """What a single drain pass did."""

    succeeded: list[PendingAction] = field(default_factory=list)
    retried: list[PendingAction] = field(default_factory=list)
    dropped: list[PendingAction] = field(default_factory=list)
    skipped: bool = False


class PendingActionQueue:
    """Persisted FIFO of pending actions.

    Usage:
        queue = PendingActionQueue(store)
        await queue.load()
        await queue.enqueue(ActionType.FAVORITE, {"vendor_id": "v1"})
        remaining = await queue.drain(client.apply)
    """

    def __init__(
        self,
        store: KVStore,
        clock: Clock | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        key: str = PENDING_ACTIONS_KEY,
    ) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._max_retries = max_retries
        self._timeout = timeout
        self._key = key
        self._actions: list[PendingAction] = []
        self._write_lock = asyncio.Lock()
        self._draining = False
        self.last_report = DrainReport()

    @property
    def actions(self) -> list[PendingAction]:
        """Snapshot of the queue in FIFO order."""
        return list(self._actions)

    @property
    def is_draining(self) -> bool:
        return self._draining

    def __len__(self) -> int:
        return len(self._actions)

    def __iter__(self) -> Iterator[PendingAction]:
        return iter(list(self._actions))

    def __bool__(self) -> bool:
        return bool(self._actions)

    async def load(self) -> list[PendingAction]:
        """Restore the queue from storage."""
        try:
            raw = await self._store.get(self._key)
        except KVStoreError as e:
            logger.warning("Failed to load pending actions: %s", e)
            return self.actions
        if not raw:
            return self.actions
        try:
            self._actions = [PendingAction.from_dict(d) for d in json.loads(raw)]
        except (ValueError, TypeError, KeyError) as e:
            logger.warning("Discarding malformed pending actions: %s", e)
            self._actions = []
        if self._actions:
            logger.info("Loaded %d pending actions from storage", len(self._actions))
        return self.actions

    async def _persist(self) -> None:
        async with self._write_lock:
            # Serialize whatever is current once the lock is ours
            payload = json.dumps([a.to_dict() for a in self._actions]).encode()
            try:
                await self._store.set(self._key, payload)
            except KVStoreError as e:
                logger.warning("Failed to persist pending actions: %s", e)

    async def enqueue(
        self,
        action_type: ActionType | str,
        payload: dict[str, Any] | None = None,
    ) -> PendingAction:
        """Append a new action with retry_count 0 and persist the queue."""
        action = PendingAction.create(action_type, payload, created_at=self._clock.now())
        self._actions.append(action)
        logger.debug("Queued %r (queue size: %d)", action, len(self._actions))
        await self._persist()
        return action

    async def remove(self, action_id: str) -> PendingAction | None:
        for action in self._actions:
            if action.id == action_id:
                self._actions.remove(action)
                await self._persist()
                return action
        return None

    async def clear(self) -> int:
        """Remove all actions.

        Returns:
            Number of actions removed
        """
        count = len(self._actions)
        self._actions = []
        await self._persist()
        logger.info("Cleared %d pending actions", count)
        return count

    async def drain(
        self,
        effector: Effector,
        max_retries: int | None = None,
        abort: asyncio.Event | None = None,
    ) -> list[PendingAction]:
        """Attempt every queued action once.

        Args:
            effector: Coroutine function applying one action remotely.
                Returning means done; raising means transient failure.
            max_retries: Retry ceiling (defaults to the queue's).
            abort: When set (e.g. connectivity lost), the in-flight action
                counts as failed and the rest of the pass is skipped.

        Returns:
            The surviving queue, as persisted.
        """
        if self._draining:
            logger.debug("Drain already in progress, skipping")
            self.last_report = DrainReport(skipped=True)
            return self.actions

        ceiling = self._max_retries if max_retries is None else max_retries
        report = DrainReport()
        self._draining = True
        try:
            batch = list(self._actions)
            outcome: dict[str, PendingAction | None] = {}

            for action in batch:
                if abort is not None and abort.is_set():
                    break
                try:
                    await call_with_timeout(effector(action), self._timeout, abort)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    if action.retry_count + 1 <= ceiling:
                        retried = replace(action, retry_count=action.retry_count + 1)
                        outcome[action.id] = retried
                        report.retried.append(retried)
                        logger.warning(
                            "Pending %r failed (%s), attempt %d/%d",
                            action,
                            e,
                            retried.retry_count,
                            ceiling,
                        )
                    else:
                        outcome[action.id] = None
                        report.dropped.append(action)
                        logger.error(
                            "Dropping poison action %r after %d retries: %s",
                            action,
                            action.retry_count,
                            e,
                        )
                    if isinstance(e, DrainAborted):
                        break
                else:
                    outcome[action.id] = None
                    report.succeeded.append(action)
                    logger.debug("Applied %r", action)

            # Rebuild from the live list so actions enqueued meanwhile survive
            survivors: list[PendingAction] = []
            for action in self._actions:
                if action.id not in outcome:
                    survivors.append(action)
                elif outcome[action.id] is not None:
                    survivors.append(outcome[action.id])  # type: ignore[arg-type]
            self._actions = survivors
            await self._persist()
        finally:
            self._draining = False

        self.last_report = report
        if batch:
            logger.info(
                "Drain complete: %d applied, %d to retry, %d dropped, %d pending",
                len(report.succeeded),
                len(report.retried),
                len(report.dropped),
                len(self._actions),
            )
        return self.actions
