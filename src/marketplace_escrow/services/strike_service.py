"""Strike Service: append-only penalties issued by dispute resolution."""

from __future__ import annotations

from typing import TYPE_CHECKING

from marketplace_escrow.config import get_settings
from marketplace_escrow.domain.enums import EventType, PartyRole
from marketplace_escrow.infrastructure.database.orm_models import Strike
from marketplace_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from marketplace_escrow.config import Settings
    from marketplace_escrow.infrastructure.database.unit_of_work import UnitOfWork

logger = get_logger(__name__)


class StrikeService:
    """Records strikes and announces when a profile crosses the suspension threshold."""

    def __init__(self, uow: UnitOfWork, settings: Settings | None = None) -> None:
        self._uow = uow
        self._threshold = (settings or get_settings()).dispute_strike_threshold

    async def issue_strike(
        self,
        party_id: uuid.UUID,
        party_role: PartyRole,
        dispute_id: uuid.UUID,
        reason: str,
        issued_by: uuid.UUID | None = None,
    ) -> Strike:
        async with self._uow:
            strike = await self._uow.strikes.create(
                Strike(
                    party_id=party_id,
                    party_role=party_role.value,
                    dispute_id=dispute_id,
                    reason=reason,
                    issued_by=issued_by,
                )
            )
            total = await self._uow.strikes.count_for(party_id, party_role)
            suspended = total >= self._threshold

            await self._uow.record(
                "dispute",
                dispute_id,
                EventType.STRIKE_ISSUED,
                actor=str(issued_by or "SYSTEM"),
                party_id=party_id,
                party_role=party_role,
                reason=reason,
                total_strikes=total,
                suspended=suspended,
            )
            # Exactly one strike makes the count equal the threshold.
            if total == self._threshold:
                self._uow.stage(
                    EventType.ACCOUNT_SUSPENDED.value,
                    {
                        "party_id": party_id,
                        "party_role": party_role,
                        "strike_count": total,
                        "reason": (
                            f"Account suspended due to {total} strikes. Last strike: {reason}"
                        ),
                    },
                )
                logger.warning(
                    "strike.threshold_reached",
                    party_id=party_id,
                    party_role=party_role,
                    strikes=total,
                )

            logger.info(
                "strike.issued",
                party_id=party_id,
                party_role=party_role,
                dispute_id=dispute_id,
                total_strikes=total,
            )
            return strike

    async def count_strikes(self, party_id: uuid.UUID, party_role: PartyRole) -> int:
        async with self._uow:
            return await self._uow.strikes.count_for(party_id, party_role)
