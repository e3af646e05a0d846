from __future__ import annotations


class SlotShareError(Exception):
    """Base error for SlotShare."""


class DomainValidationError(SlotShareError):
    """Input rejected by domain validation before touching storage."""


class NotFoundError(SlotShareError):
    """Referenced provider, country, subscription, slot, request or user is absent."""

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        label = resource.replace("_", " ").capitalize()
        super().__init__(f"{label} not found")


class AlreadyAssignedError(SlotShareError):
    """User already holds an active slot for the service provider."""

    def __init__(self, user_id: str, service_provider_id: str) -> None:
        self.user_id = user_id
        self.service_provider_id = service_provider_id
        super().__init__("You already have a slot assigned for this service provider")


class ConflictError(SlotShareError):
    """State changed underneath the caller (duplicate key, lost race, already released)."""


class ReservationLostError(ConflictError):
    """Conditional decrement affected zero rows; a concurrent caller took the last slot."""


class InvalidStateTransitionError(SlotShareError):
    """Subscription request lifecycle transition out of a terminal state."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot transition request from {current} to {target}")


class UnsupportedCountryError(SlotShareError):
    """Country is inactive or not offered by the service provider."""


class PersistenceError(SlotShareError):
    """Datastore read/write failure."""
