"""Transactional unit of work spanning every table the escrow core writes.

A dispute freezing escrow, a ledger refund and the dispute's own stage change
must commit together or not at all, so services never commit on their own.
They enter the unit of work; only the outermost ``async with`` commits.

Calls to the outside world that cannot be rolled back (gateway refunds) are
queued with ``before_commit`` and run as the last step of the outermost block,
after the final flush. If anything earlier fails they never run; if they fail
the transaction rolls back.

Domain events are staged while the transaction is open and published only
after the commit succeeds. A failed publish is logged and does not undo the
write: state truth lives in the database, not in the event stream.

Usage:
    async with uow:
        request = await uow.requests.get_by_id(request_id)
        ...
        await uow.record("customization_request", request.id, EventType.FUNDS_HELD, ...)
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from marketplace_escrow.infrastructure.database.repositories import (
    CustomizationRequestRepository,
    DisputeRepository,
    EarningsRepository,
    EventRepository,
    OrderRepository,
    StrikeRepository,
)
from marketplace_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from types import TracebackType

    from sqlalchemy.ext.asyncio import AsyncSession

    from marketplace_escrow.domain.enums import EventType
    from marketplace_escrow.domain.protocols import EventBus

logger = get_logger(__name__)


def to_jsonable(value: Any) -> Any:
    """Convert Decimal/UUID/enum/datetime values (recursively) to JSON-safe types."""
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [to_jsonable(v) for v in value]
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, Decimal | uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class UnitOfWork:
    """One database transaction plus the events it will publish on commit."""

    def __init__(self, session: AsyncSession, events: EventBus) -> None:
        self.session = session
        self._events = events
        self._depth = 0
        self._staged: list[tuple[str, dict[str, Any]]] = []
        self._before_commit: list[Callable[[], Awaitable[None]]] = []

        self.requests = CustomizationRequestRepository(session)
        self.orders = OrderRepository(session)
        self.disputes = DisputeRepository(session)
        self.strikes = StrikeRepository(session)
        self.earnings = EarningsRepository(session)
        self.audit = EventRepository(session)

    async def __aenter__(self) -> UnitOfWork:
        self._depth += 1
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._depth -= 1
        if self._depth > 0:
            # Nested block: the outermost owner decides commit vs rollback.
            return

        if exc_type is not None:
            self._discard()
            await self.session.rollback()
            return

        try:
            await self.session.flush()
            await self._run_before_commit()
            await self.session.commit()
        except Exception:
            self._discard()
            await self.session.rollback()
            raise
        await self._publish()

    def before_commit(self, action: Callable[[], Awaitable[None]]) -> None:
        """Queue ``action`` to run just before the outermost block commits.

        Actions run in the order they were queued and may still ``record``
        events. An action that raises rolls the whole transaction back.
        """
        self._before_commit.append(action)

    async def _run_before_commit(self) -> None:
        actions, self._before_commit = self._before_commit, []
        for action in actions:
            await action()

    def _discard(self) -> None:
        self._staged.clear()
        self._before_commit.clear()

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def record(
        self,
        entity_type: str,
        entity_id: uuid.UUID,
        event_type: EventType,
        old_status: str | None = None,
        new_status: str | None = None,
        actor: str = "SYSTEM",
        **payload: Any,
    ) -> None:
        """Append an audit row in this transaction and stage its domain event."""
        body = to_jsonable(payload)
        await self.audit.record(
            entity_type=entity_type,
            entity_id=entity_id,
            event_type=event_type,
            old_status=str(old_status) if old_status is not None else None,
            new_status=str(new_status) if new_status is not None else None,
            actor=str(actor),
            metadata=body or None,
        )
        self.stage(
            event_type.value,
            {
                f"{entity_type}_id": str(entity_id),
                "old_status": to_jsonable(old_status),
                "new_status": to_jsonable(new_status),
                "actor": str(actor),
                **body,
            },
        )

    def stage(self, event_name: str, payload: dict[str, Any]) -> None:
        """Queue an event that has no audit row of its own (e.g. account.suspended)."""
        self._staged.append((event_name, to_jsonable(payload)))

    async def _publish(self) -> None:
        staged, self._staged = self._staged, []
        for event_name, payload in staged:
            try:
                await self._events.emit(event_name, payload)
            except Exception:
                logger.exception("events.emit_failed", event_name=event_name)
