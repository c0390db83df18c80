"""Exception types raised while planning and executing cluster changes."""


class ManagerError(Exception):
    """Base class for every failure the manager reports to its caller."""


class PlanningError(ManagerError):
    """A planning precondition did not hold; no Operation was produced."""


class NodeNotFoundError(ManagerError):
    """A node reference could not be matched to exactly one known node."""

    def __init__(self, reference: str, message: str | None = None):
        self.reference = reference
        super().__init__(message or f"Could not find a node matching '{reference}'")


class ConnectivityError(ManagerError):
    """The coordination service or a cluster node could not be reached."""


class ManagementApiError(ManagerError):
    """The cluster management API rejected a request."""

    def __init__(self, message: str, status: int | None = None, response: dict | None = None):
        self.status = status
        self.response = response or {}
        super().__init__(message)


class SafetyViolation(ManagerError):
    """An execution-time safety check refused a mutation."""


class InvalidRequest(ManagerError):
    """A request combined fields that do not apply to its command."""


def root_cause(error: BaseException) -> BaseException:
    """Follow explicit then implicit chaining down to the originating exception."""
    seen = set()
    current = error
    while id(current) not in seen:
        seen.add(id(current))
        nested = current.__cause__
        if nested is None and not current.__suppress_context__:
            nested = current.__context__
        if nested is None:
            break
        current = nested
    return current
