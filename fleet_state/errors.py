"""
Error taxonomy for the fleet state core.

Read paths never raise on missing data; absence resolves to "unknown",
False or an empty list. Write paths raise PersistenceError when the store
does not acknowledge a write. Report generation raises DependencyError when
any collaborator call fails, and never returns a partial report.
"""


class FleetStateError(Exception):
    """Base class for all fleet state errors."""


class PersistenceError(FleetStateError):
    """The key-value store did not acknowledge a write."""

    def __init__(self, key: str):
        super().__init__(f"unable to set {key}")
        self.key = key


class NotFoundError(FleetStateError):
    """A referenced group or instance does not exist."""


class GroupNotFoundError(NotFoundError):
    def __init__(self, group_name: str):
        super().__init__(f"Group {group_name} not found, failed to generate report")
        self.group_name = group_name


class UnsupportedTypeError(FleetStateError):
    """The entity lacks the typing required for the requested operation."""


class UnsupportedGroupTypeError(UnsupportedTypeError):
    def __init__(self, group_name: str):
        super().__init__(f"Group {group_name} has no type, only typed groups are supported for report generation")
        self.group_name = group_name


class DependencyError(FleetStateError):
    """An external collaborator call failed while serving a request."""
