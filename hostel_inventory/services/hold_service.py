"""Time-bounded bed holds and their lifecycle transitions."""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from threading import Lock
from typing import Any, Iterable, Iterator, Optional

from hostel_inventory.domain.constraints import (
    ensure_transition,
    validate_bed_selection,
    validate_stay_interval,
)
from hostel_inventory.domain.errors import (
    CategoryNotEligible,
    EntryNotFound,
    HoldConflict,
    HoldExpired,
    HoldNotFound,
    HoldStateError,
    InsufficientAvailability,
    PricingError,
    RoomNotFound,
)
from hostel_inventory.domain.models import EntryOrigin, EntryStatus, LedgerEntry
from hostel_inventory.domain.policies import is_room_eligible
from hostel_inventory.repository.ledger_repository import LedgerRepository
from hostel_inventory.services.availability_service import (
    AvailabilityService,
    parse_category,
    utc_now,
)
from hostel_inventory.services.pricing_service import PricingService, quantize_money
from hostel_inventory.utils.config import Settings, get_settings
from hostel_inventory.utils.logger import get_logger


logger = get_logger(__name__)

PAYMENT_FAILED = "payment_failed"
PAID_IN_FULL = "paid_in_full"
DEPOSIT_PAID = "deposit_paid"
UNDERPAID = "underpaid"


class RoomLockRegistry:
    """One in-process lock per room; shared by every writer of that room's beds."""

    def __init__(self) -> None:
        self._locks: dict[str, Lock] = {}
        self._guard = Lock()

    def lock_for(self, room_id: str) -> Lock:
        with self._guard:
            lock = self._locks.get(room_id)
            if lock is None:
                lock = Lock()
                self._locks[room_id] = lock
            return lock

    @contextmanager
    def hold(self, room_id: str) -> Iterator[None]:
        with self.lock_for(room_id):
            yield


@dataclass(frozen=True)
class PaymentReconciliation:
    entry: LedgerEntry
    status: str
    paid_amount: Optional[Decimal]
    expected_deposit: Optional[Decimal]
    expected_total: Optional[Decimal]

    @property
    def outstanding(self) -> Optional[Decimal]:
        if self.expected_total is None or self.paid_amount is None:
            return None
        return max(Decimal("0.00"), quantize_money(self.expected_total - self.paid_amount))

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "paid_amount": str(self.paid_amount) if self.paid_amount is not None else None,
            "expected_deposit": (
                str(self.expected_deposit) if self.expected_deposit is not None else None
            ),
            "expected_total": str(self.expected_total) if self.expected_total is not None else None,
            "outstanding": str(self.outstanding) if self.outstanding is not None else None,
            "entry": self.entry.to_dict(),
        }


class HoldService:
    """Creates, confirms, releases and expires holds without ever double-selling a bed."""

    def __init__(
        self,
        repository: Optional[LedgerRepository] = None,
        availability_service: Optional[AvailabilityService] = None,
        pricing_service: Optional[PricingService] = None,
        settings: Optional[Settings] = None,
        locks: Optional[RoomLockRegistry] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or LedgerRepository(self._settings)
        self._availability = availability_service or AvailabilityService(
            self._repository, self._settings
        )
        self._pricing = pricing_service or PricingService(self._repository, self._settings)
        self._locks = locks or RoomLockRegistry()

    @property
    def locks(self) -> RoomLockRegistry:
        return self._locks

    def create_hold(
        self,
        room_id: str,
        bed_indices: Iterable[int],
        check_in: date,
        check_out: date,
        requested_category: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LedgerEntry:
        current = now or utc_now()
        interval = validate_stay_interval(
            check_in,
            check_out,
            today=current.date(),
            past_grace_days=self._settings.past_grace_days,
        )
        category = parse_category(requested_category)
        room = self._repository.get_room(room_id)
        if room is None:
            raise RoomNotFound(f"room {room_id} not found")
        beds = validate_bed_selection(room, bed_indices)
        pricing = self._pricing.price_selection(room, len(beds), interval).snapshot

        with self._locks.hold(room_id), self._repository.transaction() as conn:
            active = [
                entry
                for entry in self._repository.list_active_entries(
                    interval, current, room_id=room_id, conn=conn
                )
                if entry.is_active(current)
            ]
            if not is_room_eligible(room, category, interval, current, active):
                raise CategoryNotEligible(
                    f"room {room_id} does not accept {category.value} guests for these dates"
                )

            taken = {bed for entry in active for bed in entry.bed_indices}
            conflicting = taken.intersection(beds)
            if conflicting:
                raise HoldConflict(
                    f"beds {sorted(conflicting)} in room {room_id} are no longer available",
                    conflicting_beds=conflicting,
                )

            buffer = int(self._settings.safety_buffer_beds.get(room_id, 0))
            remaining = room.capacity - len(taken) - len(beds)
            if remaining < buffer:
                raise InsufficientAvailability(
                    f"room {room_id} must keep {buffer} beds unsold; {remaining} would remain"
                )

            entry = LedgerEntry(
                entry_id=uuid.uuid4().hex,
                room_id=room_id,
                bed_indices=beds,
                interval=interval,
                origin=EntryOrigin.HOLD,
                status=EntryStatus.HOLD,
                created_at=current,
                updated_at=current,
                requested_category=category,
                expires_at=current + timedelta(seconds=self._settings.hold_ttl_seconds),
                guest_count=len(beds),
                pricing=pricing,
            )
            self._repository.insert_entry(entry, conn=conn)

        self._availability.invalidate()
        logger.info(
            "Hold created | hold_id=%s | room_id=%s | beds=%s | check_in=%s | check_out=%s | expires_at=%s",
            entry.entry_id,
            room_id,
            list(beds),
            interval.check_in.isoformat(),
            interval.check_out.isoformat(),
            entry.expires_at.isoformat() if entry.expires_at else None,
        )
        return entry

    def confirm_hold(
        self,
        hold_id: str,
        paid_amount: Optional[Decimal] = None,
        now: Optional[datetime] = None,
    ) -> LedgerEntry:
        current = now or utc_now()
        expired = False
        with self._repository.transaction() as conn:
            entry = self._repository.get_entry(hold_id, conn=conn)
            if entry is None:
                raise HoldNotFound(f"hold {hold_id} not found")
            if entry.status == EntryStatus.EXPIRED:
                expired = True
            elif entry.status != EntryStatus.HOLD:
                ensure_transition(entry.status, EntryStatus.CONFIRMED)
            elif not self._repository.transition_status(
                hold_id,
                EntryStatus.HOLD,
                EntryStatus.CONFIRMED,
                current,
                unexpired_only=True,
                paid_amount=paid_amount,
                conn=conn,
            ):
                self._repository.transition_status(
                    hold_id, EntryStatus.HOLD, EntryStatus.EXPIRED, current, conn=conn
                )
                expired = True

        self._availability.invalidate()
        if expired:
            logger.info("Hold confirmation rejected | hold_id=%s | reason=expired", hold_id)
            raise HoldExpired(f"hold {hold_id} has expired")

        confirmed = self._repository.get_entry(hold_id)
        logger.info(
            "Hold confirmed | hold_id=%s | room_id=%s | paid_amount=%s",
            hold_id,
            confirmed.room_id if confirmed else None,
            paid_amount,
        )
        return confirmed

    def release_hold(self, hold_id: str, now: Optional[datetime] = None) -> LedgerEntry:
        """Release a live hold; repeat releases return the RELEASED entry, stale holds raise HoldExpired."""
        current = now or utc_now()
        expired = False
        with self._repository.transaction() as conn:
            entry = self._repository.get_entry(hold_id, conn=conn)
            if entry is None:
                raise HoldNotFound(f"hold {hold_id} not found")
            if entry.status == EntryStatus.RELEASED:
                return entry
            if entry.status == EntryStatus.EXPIRED:
                expired = True
            elif entry.status != EntryStatus.HOLD:
                ensure_transition(entry.status, EntryStatus.RELEASED)
            elif not self._repository.transition_status(
                hold_id,
                EntryStatus.HOLD,
                EntryStatus.RELEASED,
                current,
                unexpired_only=True,
                conn=conn,
            ):
                self._repository.transition_status(
                    hold_id, EntryStatus.HOLD, EntryStatus.EXPIRED, current, conn=conn
                )
                expired = True

        self._availability.invalidate()
        if expired:
            logger.info("Hold release rejected | hold_id=%s | reason=expired", hold_id)
            raise HoldExpired(f"hold {hold_id} has expired")

        logger.info("Hold released | hold_id=%s | room_id=%s", hold_id, entry.room_id)
        return self._repository.get_entry(hold_id)

    def expire_holds(self, now: Optional[datetime] = None) -> int:
        """Sweep stale holds to EXPIRED; running it twice expires nothing the second time."""
        current = now or utc_now()
        with self._repository.transaction() as conn:
            expired_ids = self._repository.expire_stale_holds(current, conn=conn)
        if expired_ids:
            self._availability.invalidate()
            logger.info("Holds expired | count=%s | hold_ids=%s", len(expired_ids), expired_ids)
        return len(expired_ids)

    def apply_payment_result(
        self,
        hold_id: str,
        succeeded: bool,
        paid_amount: Optional[Decimal] = None,
        now: Optional[datetime] = None,
    ) -> PaymentReconciliation:
        """React to the payment collaborator's verdict for a hold."""
        if not succeeded:
            entry = self.release_hold(hold_id, now=now)
            logger.info("Payment failed | hold_id=%s | hold released", hold_id)
            return PaymentReconciliation(
                entry=entry,
                status=PAYMENT_FAILED,
                paid_amount=None,
                expected_deposit=entry.pricing.deposit_amount if entry.pricing else None,
                expected_total=entry.pricing.total if entry.pricing else None,
            )

        if paid_amount is None:
            raise PricingError("paid_amount is required for a successful payment")
        amount = quantize_money(Decimal(paid_amount))
        entry = self.confirm_hold(hold_id, paid_amount=amount, now=now)

        pricing = entry.pricing
        if pricing is None or amount >= pricing.total:
            status = PAID_IN_FULL
        elif amount >= pricing.deposit_amount:
            status = DEPOSIT_PAID
        else:
            status = UNDERPAID
            logger.warning(
                "Payment below deposit | hold_id=%s | paid=%s | deposit=%s",
                hold_id,
                amount,
                pricing.deposit_amount,
            )
        return PaymentReconciliation(
            entry=entry,
            status=status,
            paid_amount=amount,
            expected_deposit=pricing.deposit_amount if pricing else None,
            expected_total=pricing.total if pricing else None,
        )

    def cancel_entry(self, entry_id: str, now: Optional[datetime] = None) -> LedgerEntry:
        current = now or utc_now()
        entry = self._repository.get_entry(entry_id)
        if entry is None:
            raise EntryNotFound(f"entry {entry_id} not found")
        if entry.status == EntryStatus.CANCELLED:
            return entry
        ensure_transition(entry.status, EntryStatus.CANCELLED)

        if not self._repository.transition_status(
            entry_id, EntryStatus.CONFIRMED, EntryStatus.CANCELLED, current
        ):
            raise HoldStateError(f"entry {entry_id} is no longer confirmed")

        self._availability.invalidate()
        logger.info("Entry cancelled | entry_id=%s | room_id=%s", entry_id, entry.room_id)
        return self._repository.get_entry(entry_id)
