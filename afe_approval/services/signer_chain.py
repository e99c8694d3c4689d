"""Ordering rules of an AFE's signer slots.

Nothing here touches the database: :class:`SignerChain` wraps the slots already loaded
for one AFE and answers "whose turn is it", "who comes next" and "may this user act".
The transactional side of each transition lives in :mod:`afe_approval.services.workflow`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence
from uuid import UUID

from afe_approval.core.exceptions import AuthorizationError, StateError, ValidationError
from afe_approval.models.afe import SIGNABLE_STATUSES, TERMINAL_STATUSES, AfeStatus, SignerStatus


class SlotLike(Protocol):
    user_id: UUID
    signing_order: int
    status: SignerStatus


@dataclass(frozen=True)
class SignerAssignment:
    user_id: UUID
    signing_order: int


def validate_assignments(assignments: Sequence[SignerAssignment]) -> list[SignerAssignment]:
    """Check the shape of a signer list and return it sorted by signing order."""
    if not assignments:
        raise ValidationError("At least one signer is required")
    orders = [item.signing_order for item in assignments]
    if any(order < 1 for order in orders):
        raise ValidationError("Signing order must be a positive integer")
    if len(set(orders)) != len(orders):
        raise ValidationError("Signing orders must be unique")
    users = [item.user_id for item in assignments]
    if len(set(users)) != len(users):
        raise ValidationError("A user can only hold one signer slot per AFE")
    return sorted(assignments, key=lambda item: item.signing_order)


def initial_statuses(assignments: Sequence[SignerAssignment]) -> dict[int, SignerStatus]:
    """The lowest order starts ACTIVE, everybody else waits."""
    ordered = validate_assignments(assignments)
    first = ordered[0].signing_order
    return {
        item.signing_order: SignerStatus.ACTIVE if item.signing_order == first else SignerStatus.PENDING
        for item in ordered
    }


class SignerChain:
    def __init__(self, slots: Iterable[SlotLike]) -> None:
        self.slots: list[SlotLike] = sorted(slots, key=lambda slot: slot.signing_order)

    def active_slot(self) -> SlotLike | None:
        for slot in self.slots:
            if slot.status == SignerStatus.ACTIVE:
                return slot
        return None

    def slot_for_user(self, user_id: UUID) -> SlotLike | None:
        for slot in self.slots:
            if slot.user_id == user_id:
                return slot
        return None

    def next_after(self, slot: SlotLike) -> SlotLike | None:
        """Next slot by signing order; gaps in the numbering are allowed."""
        for candidate in self.slots:
            if candidate.signing_order > slot.signing_order:
                return candidate
        return None

    def check_can_act(self, afe_status: AfeStatus, user_id: UUID) -> SlotLike:
        """Return the caller's slot if they may sign or reject now.

        Terminal statuses are reported before anything about the caller, so a signer
        acting on a cancelled AFE learns that it is cancelled rather than that it is not
        their turn.
        """
        if afe_status in TERMINAL_STATUSES:
            raise StateError(f"AFE is {afe_status.value} and can no longer be signed")

        slot = self.slot_for_user(user_id)
        if slot is None:
            raise AuthorizationError("You are not a signer on this AFE")
        if slot.status != SignerStatus.ACTIVE:
            raise AuthorizationError(f"Your signer slot is {slot.status.value}, not ACTIVE")
        for earlier in self.slots:
            if earlier.signing_order < slot.signing_order and earlier.status != SignerStatus.SIGNED:
                raise AuthorizationError("It is not your turn to sign")

        if afe_status not in SIGNABLE_STATUSES:
            raise StateError(f"AFE is {afe_status.value} and is not open for signatures")
        return slot

    def check_invariants(self, afe_status: AfeStatus) -> None:
        """Raise StateError when the slots contradict the sequential-activation rules."""
        active = [slot for slot in self.slots if slot.status == SignerStatus.ACTIVE]
        if len(active) > 1:
            raise StateError("More than one signer slot is ACTIVE")
        if afe_status in SIGNABLE_STATUSES and not active:
            raise StateError("An open AFE must have exactly one ACTIVE signer")
        if active:
            current = active[0]
            for slot in self.slots:
                if slot.signing_order < current.signing_order and slot.status != SignerStatus.SIGNED:
                    raise StateError("A signer ahead of the ACTIVE slot has not signed")
                if slot.signing_order > current.signing_order and slot.status != SignerStatus.PENDING:
                    raise StateError("A signer after the ACTIVE slot is no longer PENDING")
        if afe_status == AfeStatus.FULLY_SIGNED and any(
            slot.status != SignerStatus.SIGNED for slot in self.slots
        ):
            raise StateError("A fully signed AFE has unsigned slots")
