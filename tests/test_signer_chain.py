from dataclasses import dataclass
from uuid import UUID, uuid4

import pytest

from afe_approval.core.exceptions import AuthorizationError, StateError, ValidationError
from afe_approval.models.afe import AfeStatus, SignerStatus
from afe_approval.services.signer_chain import (
    SignerAssignment,
    SignerChain,
    initial_statuses,
    validate_assignments,
)


@dataclass
class Slot:
    user_id: UUID
    signing_order: int
    status: SignerStatus


def _chain(*statuses: SignerStatus, orders=None) -> SignerChain:
    orders = orders or list(range(1, len(statuses) + 1))
    return SignerChain(Slot(uuid4(), order, status) for order, status in zip(orders, statuses))


def test_initial_statuses_activate_lowest_order() -> None:
    assignments = [
        SignerAssignment(uuid4(), 3),
        SignerAssignment(uuid4(), 1),
        SignerAssignment(uuid4(), 2),
    ]

    statuses = initial_statuses(assignments)

    assert statuses == {1: SignerStatus.ACTIVE, 2: SignerStatus.PENDING, 3: SignerStatus.PENDING}


def test_initial_statuses_with_gap_in_orders() -> None:
    statuses = initial_statuses([SignerAssignment(uuid4(), 5), SignerAssignment(uuid4(), 10)])

    assert statuses == {5: SignerStatus.ACTIVE, 10: SignerStatus.PENDING}


@pytest.mark.parametrize(
    "assignments",
    [
        [],
        [SignerAssignment(uuid4(), 1), SignerAssignment(uuid4(), 1)],
        [SignerAssignment(uuid4(), 0)],
    ],
)
def test_invalid_assignments(assignments) -> None:
    with pytest.raises(ValidationError):
        validate_assignments(assignments)


def test_same_user_twice_is_rejected() -> None:
    user = uuid4()
    with pytest.raises(ValidationError):
        validate_assignments([SignerAssignment(user, 1), SignerAssignment(user, 2)])


def test_active_slot_may_act() -> None:
    chain = _chain(SignerStatus.SIGNED, SignerStatus.ACTIVE, SignerStatus.PENDING)
    active = chain.slots[1]

    assert chain.check_can_act(AfeStatus.PARTIALLY_SIGNED, active.user_id) is active
    assert chain.next_after(active) is chain.slots[2]
    assert chain.next_after(chain.slots[2]) is None


def test_pending_slot_is_turn_violation() -> None:
    chain = _chain(SignerStatus.ACTIVE, SignerStatus.PENDING, SignerStatus.PENDING)

    with pytest.raises(AuthorizationError):
        chain.check_can_act(AfeStatus.PENDING, chain.slots[2].user_id)


def test_stranger_is_not_authorized() -> None:
    chain = _chain(SignerStatus.ACTIVE)

    with pytest.raises(AuthorizationError):
        chain.check_can_act(AfeStatus.PENDING, uuid4())


@pytest.mark.parametrize("status", [AfeStatus.REJECTED, AfeStatus.CANCELLED, AfeStatus.FULLY_SIGNED])
def test_terminal_status_is_reported_before_turn(status: AfeStatus) -> None:
    chain = _chain(SignerStatus.REJECTED, SignerStatus.PENDING)

    with pytest.raises(StateError):
        chain.check_can_act(status, chain.slots[1].user_id)
    with pytest.raises(StateError):
        chain.check_can_act(status, uuid4())


def test_lower_slot_not_signed_blocks_active_slot() -> None:
    # corrupted chain: an ACTIVE slot behind an unsigned one
    chain = _chain(SignerStatus.PENDING, SignerStatus.ACTIVE)

    with pytest.raises(AuthorizationError):
        chain.check_can_act(AfeStatus.PENDING, chain.slots[1].user_id)


def test_draft_status_is_not_signable() -> None:
    chain = _chain(SignerStatus.ACTIVE)

    with pytest.raises(StateError):
        chain.check_can_act(AfeStatus.DRAFT, chain.slots[0].user_id)


def test_invariants_hold_for_valid_chain() -> None:
    _chain(SignerStatus.SIGNED, SignerStatus.ACTIVE, SignerStatus.PENDING).check_invariants(
        AfeStatus.PARTIALLY_SIGNED
    )
    _chain(SignerStatus.SIGNED, SignerStatus.SIGNED).check_invariants(AfeStatus.FULLY_SIGNED)


@pytest.mark.parametrize(
    "statuses,afe_status",
    [
        ((SignerStatus.ACTIVE, SignerStatus.ACTIVE), AfeStatus.PENDING),
        ((SignerStatus.PENDING, SignerStatus.ACTIVE), AfeStatus.PENDING),
        ((SignerStatus.SIGNED, SignerStatus.PENDING), AfeStatus.PARTIALLY_SIGNED),
        ((SignerStatus.ACTIVE, SignerStatus.SIGNED), AfeStatus.PENDING),
        ((SignerStatus.SIGNED, SignerStatus.ACTIVE), AfeStatus.FULLY_SIGNED),
    ],
)
def test_invariant_violations(statuses, afe_status) -> None:
    with pytest.raises(StateError):
        _chain(*statuses).check_invariants(afe_status)
