"""Exceptions raised by the migration sequencer and its adapters."""

from __future__ import annotations


class MigrationError(Exception):
    """Base exception for vmigrate."""

    pass


class ValidationError(MigrationError):
    """Raised when the batch input or configuration is malformed."""

    pass


class MigrationConnectionError(MigrationError, ConnectionError):
    """Raised when a required external system cannot be reached."""

    def __init__(self, system: str, endpoint: str, reason: str) -> None:
        self.system = system
        self.endpoint = endpoint
        super().__init__(f"Cannot connect to {system} '{endpoint}': {reason}")


class EntityNotFoundError(MigrationError, LookupError):
    """Raised when an expected named entity does not exist."""

    def __init__(self, kind: str, name: str, where: str | None = None) -> None:
        self.kind = kind
        self.name = name
        location = f" on {where}" if where else ""
        super().__init__(f"{kind} '{name}' not found{location}")


class PreconditionError(MigrationError):
    """Raised when one or more units are not in the state a step requires."""

    def __init__(self, violations: dict[str, str]) -> None:
        self.violations = dict(violations)
        details = "; ".join(f"{name}: {reason}" for name, reason in self.violations.items())
        super().__init__(f"{len(self.violations)} unit(s) failed precondition checks ({details})")


class OperationError(MigrationError):
    """Raised when a mutating call against an external system fails."""

    pass


class MountError(OperationError):
    """Raised when a target volume cannot be mounted as a datastore."""

    def __init__(self, location: str, reason: str) -> None:
        self.location = location
        super().__init__(f"Cannot mount '{location}': {reason}")


class RegistrationError(OperationError):
    """Raised when a VM cannot be registered on the target."""

    def __init__(self, unit: str, reason: str) -> None:
        self.unit = unit
        super().__init__(f"Cannot register '{unit}': {reason}")


class ReplicationTimeoutError(OperationError, TimeoutError):
    """Raised when a polled condition does not hold before the deadline."""

    def __init__(self, description: str, timeout: float) -> None:
        self.description = description
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:.0f}s waiting for {description}")


class OperationCancelled(MigrationError):
    """Raised when a wait is cancelled by the operator."""

    pass
