"""Operation gateway — routes named UI requests to the sync coordinator."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from vaultsync.sync.coordinator import SyncCoordinator

logger = logging.getLogger(__name__)


class UnknownOperationError(LookupError):
    """Raised when a request names an operation the gateway does not route."""

    def __init__(self, verb: str) -> None:
        self.verb = verb
        super().__init__(f"Unknown operation: '{verb}'")


class OperationGateway:
    """Dispatch surface between the UI layer and ``SyncCoordinator``.

    Every request carries the originating window id; the coordinator
    resolves it to a vault.
    """

    def __init__(self, coordinator: SyncCoordinator) -> None:
        self.coordinator = coordinator
        self._routes: dict[str, Callable[..., Awaitable[Any]]] = {
            "list-tree": coordinator.list_tree,
            "read-file": coordinator.read_file,
            "exists": coordinator.exists,
            "is-directory": coordinator.is_directory,
            "write-file": coordinator.write_file,
            "create-file": coordinator.create_file,
            "create-directory": coordinator.create_directory,
            "delete": coordinator.delete,
            "rename": coordinator.rename,
            "move": coordinator.move,
            "list-directory": coordinator.list_directory,
            "reindex": coordinator.reindex,
            "paths-as-entries": coordinator.paths_as_entries,
        }

    @property
    def verbs(self) -> list[str]:
        return sorted(self._routes)

    async def dispatch(self, window_id: str, verb: str, *args: Any, **kwargs: Any) -> Any:
        route = self._routes.get(verb)
        if route is None:
            raise UnknownOperationError(verb)
        logger.debug("Window %s → %s %s", window_id, verb, args)
        return await route(window_id, *args, **kwargs)
