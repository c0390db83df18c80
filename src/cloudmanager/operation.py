"""Ordered, composable groups of Actions."""

import logging
from typing import TYPE_CHECKING, Any, Iterable, Iterator

from prometheus_client import Counter

from cloudmanager.actions import Action

if TYPE_CHECKING:
    from cloudmanager.manager import ClusterManager

logger = logging.getLogger(__name__)

ACTIONS_EXECUTED = Counter(
    "cloudmanager_actions_total",
    "Actions executed against the cluster",
    ["kind", "outcome"],
)

OPERATIONS_EXECUTED = Counter(
    "cloudmanager_operations_total",
    "Operations executed against the cluster",
    ["outcome"],
)


class Operation:
    """
    An ordered sequence of Actions.

    Operations concatenate with +, which keeps order, is associative, and has
    the empty Operation as identity on both sides. Executing runs each Action
    in turn and stops at the first one that fails: later actions often depend
    on earlier ones (add before delete when migrating).
    """

    __slots__ = ("_actions",)

    def __init__(self, actions: Iterable[Action] = ()):
        self._actions = tuple(actions)

    @classmethod
    def empty(cls) -> "Operation":
        return cls()

    @classmethod
    def concat(cls, operations: Iterable["Operation"]) -> "Operation":
        result = cls.empty()
        for operation in operations:
            result = result + operation
        return result

    @property
    def actions(self) -> tuple[Action, ...]:
        return self._actions

    @property
    def non_empty(self) -> bool:
        return bool(self._actions)

    @property
    def is_empty(self) -> bool:
        return not self._actions

    def __add__(self, other: "Operation") -> "Operation":
        if not isinstance(other, Operation):
            return NotImplemented
        return Operation(self._actions + other._actions)

    def __len__(self) -> int:
        return len(self._actions)

    def __bool__(self) -> bool:
        return self.non_empty

    def __iter__(self) -> Iterator[Action]:
        return iter(self._actions)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Operation):
            return NotImplemented
        return self._actions == other._actions

    def __hash__(self) -> int:
        return hash(self._actions)

    def __repr__(self) -> str:
        return f"Operation({list(self._actions)!r})"

    def pretty_print(self) -> str:
        """Numbered, ordered preview of every planned action."""
        if not self._actions:
            return "Operation: nothing to do"
        lines = [f"Operation ({len(self._actions)} actions):"]
        width = len(str(len(self._actions)))
        for i, action in enumerate(self._actions, 1):
            lines.append(f"  {i:>{width}}. {action}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {"actions": [a.to_dict() for a in self._actions]}

    def execute(self, manager: "ClusterManager") -> bool:
        """Run every action in order; False as soon as one fails."""
        total = len(self._actions)
        for i, action in enumerate(self._actions, 1):
            logger.info("(%d/%d) %s", i, total, action)
            try:
                succeeded = action.execute(manager)
            except Exception:
                ACTIONS_EXECUTED.labels(kind=action.kind, outcome="error").inc()
                OPERATIONS_EXECUTED.labels(outcome="error").inc()
                raise

            ACTIONS_EXECUTED.labels(kind=action.kind, outcome="success" if succeeded else "failure").inc()
            if not succeeded:
                remaining = total - i
                if remaining:
                    logger.warning("Stopping: %d remaining action(s) were not run", remaining)
                OPERATIONS_EXECUTED.labels(outcome="failure").inc()
                return False

        OPERATIONS_EXECUTED.labels(outcome="success").inc()
        return True
