"""
Hold manager: short-lived exclusive claims on slots.

hold() moves a slot from free (or expired hold) to held for HOLD_TTL_MINUTES
and records a Hold keyed by (slot_id, requester_id). A listed slot that the
maintenance worker has not materialized yet is created on its first hold,
from the provider, service and start it was listed with. Expiry is lazy: any
reader compares held_until to now, and the maintenance worker sweeps
expired holds back to free.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from booking.errors import ConcurrentModification, NotFound, SlotUnavailable
from booking.models import Hold, Slot, SlotStatus, utc_now
from booking.services.availability_service import build_candidates, load_catalog
from booking.slots import slot_key
from booking.store.base import BookingStore, StoreTransaction
from shared.config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class HoldResult:
    slot_id: str
    held_until: datetime


async def free_slot(tx: StoreTransaction, slot_id: str, now: datetime) -> bool:
    """
    Reset a slot to free and drop its hold records, inside an open transaction.

    Returns:
        True if the slot changed, False if it was already free

    Raises:
        NotFound: slot does not exist
    """
    slot = await tx.get_slot(slot_id, for_update=True)
    if slot is None:
        raise NotFound(f"Slot {slot_id} not found", details={"slot_id": slot_id})

    await tx.delete_holds(slot_id)
    if slot.status == SlotStatus.FREE and slot.held_until is None:
        return False

    if slot.status == SlotStatus.BOOKED:
        logger.warning(f"Releasing booked slot {slot_id}", extra={"slot_id": slot_id})

    slot.status = SlotStatus.FREE
    slot.held_until = None
    slot.updated_at = now
    await tx.save_slot(slot)
    return True


async def create_listed_slot(
    tx: StoreTransaction,
    slot_id: str,
    provider_id: str,
    service_id: str,
    start: datetime,
    now: datetime,
) -> None:
    """
    Persist a free slot for a candidate the availability listing offers.

    The slot must be one of the provider's working-hour candidates for that
    service; anything else is reported as not found.

    Raises:
        NotFound: unknown provider/service, or not a listed candidate
        SlotUnavailable: start already passed
    """
    provider, service = await load_catalog(tx, provider_id, service_id)
    if start <= now:
        raise SlotUnavailable("Slot has already started", details={"slot_id": slot_id})

    day = start.astimezone(ZoneInfo(provider.timezone)).date()
    candidate = next(
        (c for c in build_candidates(provider, service, [day], now, []) if c.slot_id == slot_id),
        None,
    )
    if slot_key(provider_id, service_id, start) != slot_id or candidate is None:
        raise NotFound(f"Slot {slot_id} not found", details={"slot_id": slot_id})

    await tx.insert_slot_if_absent(
        Slot(
            id=slot_id,
            tenant_id=provider.tenant_id,
            provider_id=provider_id,
            service_id=service_id,
            start_time=candidate.start,
            end_time=candidate.end,
            status=SlotStatus.FREE,
            updated_at=now,
        )
    )
    logger.info(f"Slot {slot_id} created on first hold", extra={"slot_id": slot_id})


class HoldService:
    def __init__(
        self,
        store: BookingStore,
        hold_ttl: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.hold_ttl = hold_ttl or timedelta(minutes=get_settings().HOLD_TTL_MINUTES)
        self.clock = clock

    async def hold(
        self,
        slot_id: str,
        requester_id: str,
        provider_id: Optional[str] = None,
        service_id: Optional[str] = None,
        start: Optional[datetime] = None,
    ) -> HoldResult:
        """
        Place a hold on a slot for one requester.

        Args:
            slot_id: Deterministic slot key
            requester_id: Temporary id of the requester (browser session)
            provider_id, service_id, start: Listing coordinates of the slot,
                used to create it when it has not been materialized yet

        Returns:
            HoldResult with the held_until instant for the caller's countdown

        Raises:
            NotFound: slot does not exist and cannot be created
            SlotUnavailable: slot is booked, under a live hold, or already started
        """
        now = self.clock()
        held_until = now + self.hold_ttl

        try:
            async with self.store.transaction() as tx:
                slot = await tx.get_slot(slot_id, for_update=True)
                if slot is None and provider_id and service_id and start is not None:
                    await create_listed_slot(tx, slot_id, provider_id, service_id, start, now)
                    slot = await tx.get_slot(slot_id, for_update=True)
                if slot is None:
                    raise NotFound(f"Slot {slot_id} not found", details={"slot_id": slot_id})

                if slot.is_claimed(now):
                    raise SlotUnavailable(
                        "Slot is no longer available",
                        details={"slot_id": slot_id, "status": slot.status.value},
                    )
                if slot.start_time <= now:
                    raise SlotUnavailable(
                        "Slot has already started", details={"slot_id": slot_id}
                    )

                # Slots of other services of the same provider share its time
                neighbours = await tx.list_slots(slot.provider_id, slot.start_time, slot.end_time)
                if any(s.id != slot_id and s.is_claimed(now) for s in neighbours):
                    raise SlotUnavailable(
                        "Slot overlaps another reservation", details={"slot_id": slot_id}
                    )

                # Hold records of an expired claim
                await tx.delete_holds(slot_id)

                slot.status = SlotStatus.HELD
                slot.held_until = held_until
                slot.updated_at = now
                await tx.save_slot(slot)
                await tx.save_hold(
                    Hold(
                        slot_id=slot_id,
                        requester_id=requester_id,
                        tenant_id=slot.tenant_id,
                        expires_at=held_until,
                        created_at=now,
                    )
                )
        except ConcurrentModification as e:
            logger.info(
                f"Concurrent hold on slot {slot_id} lost the race",
                extra={"slot_id": slot_id},
            )
            raise SlotUnavailable(
                "Slot is no longer available", details={"slot_id": slot_id}
            ) from e

        logger.info(
            f"Slot {slot_id} held by {requester_id} until {held_until.isoformat()}",
            extra={"slot_id": slot_id},
        )
        return HoldResult(slot_id=slot_id, held_until=held_until)

    async def release(self, slot_id: str) -> bool:
        """
        Unconditionally reset a slot to free. No-op if already free.

        Returns:
            True if the slot changed state
        """
        async with self.store.transaction() as tx:
            changed = await free_slot(tx, slot_id, self.clock())

        if changed:
            logger.info(f"Slot {slot_id} released", extra={"slot_id": slot_id})
        return changed

    async def abandon(self, slot_id: str, requester_id: str) -> bool:
        """
        Give up a hold. Only the requester owning the current hold can free the slot.

        Returns:
            True if the requester's hold was released, False if there was none
        """
        async with self.store.transaction() as tx:
            slot = await tx.get_slot(slot_id, for_update=True)
            if slot is None:
                raise NotFound(f"Slot {slot_id} not found", details={"slot_id": slot_id})

            hold = await tx.get_hold(slot_id, requester_id)
            if hold is None or slot.status != SlotStatus.HELD:
                return False

            await free_slot(tx, slot_id, self.clock())

        logger.info(
            f"Hold on slot {slot_id} abandoned by {requester_id}",
            extra={"slot_id": slot_id},
        )
        return True
