"""
Action tables: flat action to handler lookup for one dispatcher.
"""

from typing import Any, Awaitable, Callable, Iterator, Mapping, Optional, Union

from estate_rpc.errors import DuplicateActionError

Handler = Callable[[dict[str, Any]], Union[dict[str, Any], Awaitable[dict[str, Any]]]]


class ActionTable(Mapping[str, Handler]):
    def __init__(self, name: str, handlers: Optional[Mapping[str, Handler]] = None):
        self.name = name
        self._handlers: dict[str, Handler] = {}
        for action, handler in (handlers or {}).items():
            self.add(action, handler)

    def add(self, action: str, handler: Handler) -> None:
        if not action:
            raise ValueError("action must be a non-empty string")
        if action in self._handlers:
            raise DuplicateActionError(action, [self.name])
        self._handlers[action] = handler

    def register(self, action: str) -> Callable[[Handler], Handler]:
        """Decorator form of add()."""
        def decorator(handler: Handler) -> Handler:
            self.add(action, handler)
            return handler
        return decorator

    def __getitem__(self, action: str) -> Handler:
        return self._handlers[action]

    def __iter__(self) -> Iterator[str]:
        return iter(self._handlers)

    def __len__(self) -> int:
        return len(self._handlers)

    def __repr__(self) -> str:
        return f"ActionTable(name={self.name!r}, actions={sorted(self._handlers)!r})"


def ensure_disjoint(*tables: ActionTable) -> None:
    """Raise DuplicateActionError if any action appears in more than one table."""
    owners: dict[str, list[str]] = {}
    for table in tables:
        for action in table:
            owners.setdefault(action, []).append(table.name)
    for action, names in owners.items():
        if len(names) > 1:
            raise DuplicateActionError(action, names)
