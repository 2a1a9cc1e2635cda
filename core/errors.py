"""
core/errors.py -- Error taxonomy for the discovery and reconciliation engine.

Every failure the engine reports derives from DiscoveryError so callers can
catch the whole family at a boundary (a bulk worker, an HTTP handler) while
still branching on the concrete type for display.

  CollectionError           target unreachable, access denied, timed out
    CollectionCancelledError  the caller cancelled an in-flight collection
  ValidationError           record failed field validation before any write
  DuplicateHostnameError    Add against a hostname that already has a live record
  ChangeReasonRequiredError Update/Delete/bulk run without a reason
  PersistenceError          transaction failed and was rolled back
    DeviceNotFoundError       no live record for the given hostname or id
"""


class DiscoveryError(Exception):
    """Base class for all engine errors."""


class CollectionError(DiscoveryError):
    """The target could not be reached or queried at all."""

    def __init__(self, target: str, message: str) -> None:
        super().__init__(f"{target}: {message}")
        self.target = target
        self.message = message


class CollectionCancelledError(CollectionError):
    def __init__(self, target: str) -> None:
        super().__init__(target, "collection cancelled")


class ValidationError(DiscoveryError):
    """A record field holds a value that must never reach the store."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class DuplicateHostnameError(DiscoveryError):
    def __init__(self, hostname: str) -> None:
        super().__init__(f"A device with hostname '{hostname}' already exists")
        self.hostname = hostname


class ChangeReasonRequiredError(DiscoveryError):
    def __init__(self, operation: str) -> None:
        super().__init__(f"A change reason is required for {operation}")
        self.operation = operation


class PersistenceError(DiscoveryError):
    """The store transaction failed. Nothing from it was committed."""


class DeviceNotFoundError(PersistenceError):
    def __init__(self, key) -> None:
        super().__init__(f"No device found for '{key}'")
        self.key = key
