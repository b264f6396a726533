"""Error taxonomy for the kit tracker.

Every failure the core can signal is one of these types. The HTTP layer maps
them to status codes in main.py; the core itself never translates or
swallows them.

- NotFoundError        - unknown kit id, or the kit did not exist at the queried time
- ValidationError      - malformed input: bad date, missing field, unknown field
- NoChangesError       - a save with no field diffs (recoverable, not a fault)
- VersionConflictError - optimistic concurrency check failed
- PersistenceError     - storage or transaction failure, corrupt stored history
"""


class KitTrackerError(Exception):
    """Base class for all kit tracker errors.

    Args:
        message: Human-readable description of the failure.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(KitTrackerError):
    """Raised when a kit (or user) does not exist, now or at a queried time.

    Args:
        resource: Resource type name, e.g. "Kit".
        resource_id: Identifier that was looked up.
        message: Optional override for the default message.
    """

    def __init__(self, resource: str, resource_id: object, message: str | None = None) -> None:
        super().__init__(message or f"{resource} {resource_id} not found")
        self.resource = resource
        self.resource_id = resource_id


class ValidationError(KitTrackerError):
    """Raised for malformed caller input.

    Args:
        message: Description of the problem.
        field: Name of the offending field, when one applies.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class UnknownFieldError(ValidationError):
    """Raised when a field name is not part of the kit schema."""

    def __init__(self, field: str) -> None:
        super().__init__(f"Unknown kit field: {field!r}", field=field)


class NoChangesError(KitTrackerError):
    """Raised when a save carries no field diffs.

    This is a "nothing to do" signal rather than a fault: no version is
    consumed and no history is written.
    """

    def __init__(self, kit_id: int) -> None:
        super().__init__(f"No changes to save for kit {kit_id}")
        self.kit_id = kit_id


class VersionConflictError(KitTrackerError):
    """Raised when an update was prepared against a stale kit version.

    Args:
        kit_id: The kit being updated.
        expected_version: Version the caller based its edit on.
        current_version: Version currently stored.
    """

    def __init__(self, kit_id: int, expected_version: int, current_version: int) -> None:
        super().__init__(
            f"Kit {kit_id} is at version {current_version}, "
            f"update was based on version {expected_version}"
        )
        self.kit_id = kit_id
        self.expected_version = expected_version
        self.current_version = current_version


class PersistenceError(KitTrackerError):
    """Raised when storage fails or stored history cannot be interpreted."""
