from __future__ import annotations

from enum import Enum

from slotshare.core.errors import DomainValidationError, InvalidStateTransitionError


class SubscriptionRequestStatus(str, Enum):
    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class SelectionPolicy(str, Enum):
    # Order candidates by fewest remaining slots first, consolidating members onto fuller accounts.
    FULLEST_FIRST = "fullest_first"
    # Order candidates by most remaining slots first, spreading members across accounts.
    EMPTIEST_FIRST = "emptiest_first"


_ALLOWED_TRANSITIONS: dict[SubscriptionRequestStatus, frozenset[SubscriptionRequestStatus]] = {
    SubscriptionRequestStatus.PENDING: frozenset(
        {
            SubscriptionRequestStatus.ASSIGNED,
            SubscriptionRequestStatus.REJECTED,
            SubscriptionRequestStatus.CANCELLED,
        }
    ),
    SubscriptionRequestStatus.ASSIGNED: frozenset(),
    SubscriptionRequestStatus.REJECTED: frozenset(),
    SubscriptionRequestStatus.CANCELLED: frozenset(),
}

_ROLE_ORDER: dict[UserRole, int] = {
    UserRole.USER: 1,
    UserRole.ADMIN: 2,
}


def ensure_request_transition(
    current: SubscriptionRequestStatus | str, target: SubscriptionRequestStatus | str
) -> SubscriptionRequestStatus:
    # Terminal statuses never move; PENDING may move to any terminal status.
    current_status = SubscriptionRequestStatus(current)
    target_status = SubscriptionRequestStatus(target)
    if target_status not in _ALLOWED_TRANSITIONS[current_status]:
        raise InvalidStateTransitionError(current_status.value, target_status.value)
    return target_status


def parse_selection_policy(value: SelectionPolicy | str) -> SelectionPolicy:
    try:
        return SelectionPolicy(str(value).strip().lower())
    except ValueError as exc:
        raise DomainValidationError(f"Unsupported selection policy: {value}") from exc


def normalize_role(role: UserRole | str) -> UserRole:
    # Enforce a stable, lowercased role vocabulary for RBAC checks.
    try:
        return UserRole(str(role).strip().lower())
    except ValueError as exc:
        raise DomainValidationError(f"Unsupported role: {role}") from exc


def role_allows(*, role: UserRole | str, minimum_role: UserRole | str) -> bool:
    # Compare roles using numeric ordering for least-privilege enforcement.
    try:
        return _ROLE_ORDER[UserRole(role)] >= _ROLE_ORDER[UserRole(minimum_role)]
    except ValueError:
        return False
