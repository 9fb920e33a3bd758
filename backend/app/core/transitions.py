"""
Status transition tables.

WHAT: Pure functions enforcing the legal state graph of every status
domain (requests, proposals, stages, amendments).

WHY: Each entity kind owns one fixed adjacency table. Terminal states map
to empty sets. Keeping the tables here, with no database access, lets the
services check a transition before touching the session and lets tests
cover the graphs exhaustively.

HOW: `can_transition` answers, `assert_transition` raises
InvalidStateTransitionError. Proposal acceptance is deliberately absent
from the proposal table: ACCEPTED is only reachable through the dual
signature path in app.services.signature_service.
"""

from enum import Enum
from typing import Dict, FrozenSet, Mapping, Type

from app.core.exceptions import InvalidStateTransitionError
from app.models.amendment import AmendmentStatus
from app.models.project_request import RequestStatus
from app.models.project_stage import StageStatus
from app.models.proposal import ProposalStatus


class EntityKind(str, Enum):
    REQUEST = "request"
    PROPOSAL = "proposal"
    STAGE = "stage"
    AMENDMENT = "amendment"


REQUEST_TRANSITIONS: Mapping[RequestStatus, FrozenSet[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({RequestStatus.REVIEWED, RequestStatus.CANCELLED}),
    RequestStatus.REVIEWED: frozenset({RequestStatus.SCHEDULED, RequestStatus.CANCELLED}),
    RequestStatus.SCHEDULED: frozenset(
        {RequestStatus.ACTIVE, RequestStatus.COMPLETED, RequestStatus.CANCELLED}
    ),
    RequestStatus.ACTIVE: frozenset({RequestStatus.COMPLETED, RequestStatus.CANCELLED}),
    RequestStatus.COMPLETED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
}

PROPOSAL_TRANSITIONS: Mapping[ProposalStatus, FrozenSet[ProposalStatus]] = {
    ProposalStatus.DRAFT: frozenset({ProposalStatus.SENT}),
    ProposalStatus.SENT: frozenset(
        {ProposalStatus.VIEWED, ProposalStatus.REJECTED, ProposalStatus.EXPIRED}
    ),
    ProposalStatus.VIEWED: frozenset({ProposalStatus.REJECTED, ProposalStatus.EXPIRED}),
    ProposalStatus.ACCEPTED: frozenset(),
    ProposalStatus.REJECTED: frozenset(),
    ProposalStatus.EXPIRED: frozenset(),
}

STAGE_TRANSITIONS: Mapping[StageStatus, FrozenSet[StageStatus]] = {
    StageStatus.NOT_STARTED: frozenset(
        {StageStatus.IN_PROGRESS, StageStatus.ON_HOLD, StageStatus.COMPLETED}
    ),
    StageStatus.IN_PROGRESS: frozenset({StageStatus.ON_HOLD, StageStatus.COMPLETED}),
    StageStatus.ON_HOLD: frozenset({StageStatus.IN_PROGRESS, StageStatus.COMPLETED}),
    StageStatus.COMPLETED: frozenset(),
}

AMENDMENT_TRANSITIONS: Mapping[AmendmentStatus, FrozenSet[AmendmentStatus]] = {
    AmendmentStatus.PENDING: frozenset({AmendmentStatus.APPROVED, AmendmentStatus.REJECTED}),
    AmendmentStatus.APPROVED: frozenset({AmendmentStatus.UNDER_REVIEW}),
    AmendmentStatus.UNDER_REVIEW: frozenset({AmendmentStatus.COMPLETED}),
    AmendmentStatus.REJECTED: frozenset(),
    AmendmentStatus.COMPLETED: frozenset(),
}

_TABLES: Dict[EntityKind, Mapping] = {
    EntityKind.REQUEST: REQUEST_TRANSITIONS,
    EntityKind.PROPOSAL: PROPOSAL_TRANSITIONS,
    EntityKind.STAGE: STAGE_TRANSITIONS,
    EntityKind.AMENDMENT: AMENDMENT_TRANSITIONS,
}

_STATUS_TYPES: Dict[EntityKind, Type[Enum]] = {
    EntityKind.REQUEST: RequestStatus,
    EntityKind.PROPOSAL: ProposalStatus,
    EntityKind.STAGE: StageStatus,
    EntityKind.AMENDMENT: AmendmentStatus,
}


def _check_exhaustive() -> None:
    # Every status of every domain must own a row, terminal or not.
    for kind, table in _TABLES.items():
        missing = set(_STATUS_TYPES[kind]) - set(table)
        if missing:
            raise RuntimeError(
                f"Transition table for {kind.value} is missing {sorted(m.value for m in missing)}"
            )


_check_exhaustive()


def allowed_transitions(kind: EntityKind, current: Enum) -> FrozenSet:
    """Return the set of statuses reachable from `current` in one step."""
    return _TABLES[kind].get(current, frozenset())


def can_transition(kind: EntityKind, current: Enum, next_status: Enum) -> bool:
    """
    Check whether `current -> next_status` is an edge of the state graph.

    Args:
        kind: Entity kind whose table applies
        current: Current status
        next_status: Requested status

    Returns:
        True if the transition is legal
    """
    return next_status in allowed_transitions(kind, current)


def assert_transition(kind: EntityKind, current: Enum, next_status: Enum) -> None:
    """
    Raise unless `current -> next_status` is legal.

    Raises:
        InvalidStateTransitionError: If the transition is not in the table
    """
    if not can_transition(kind, current, next_status):
        allowed = sorted(s.value for s in allowed_transitions(kind, current))
        raise InvalidStateTransitionError(
            message=f"Cannot move {kind.value} from {current.value} to {next_status.value}",
            entity=kind.value,
            current_state=current.value,
            requested_state=next_status.value,
            allowed_states=allowed,
        )


def is_terminal(kind: EntityKind, status: Enum) -> bool:
    return not allowed_transitions(kind, status)

