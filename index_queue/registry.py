"""Document loader registry."""

from collections.abc import Callable
from typing import Any, Dict, Optional


class LoaderRegistry:
    """
    Registry of document loaders, one per record type.

    A loader is an async callable taking a list of record ids and returning
    a mapping of id to the document to index. Ids absent from the mapping
    are records that no longer exist; they are removed from the index.
    """

    def __init__(self):
        self._loaders: Dict[str, Callable] = {}
        self._id_types: Dict[str, Callable[[str], Any]] = {}

    def loader(self, record_type: str, id_type: Callable[[str], Any] = str):
        """
        Decorator to register a document loader.

        ``id_type`` converts queued ids (always stored as text) back to the
        record's primary key type before the loader sees them.

        Usage:
            @registry.loader("Post", id_type=int)
            async def load_posts(ids):
                ...
        """

        def decorator(func: Callable):
            self.register(record_type, func, id_type=id_type)
            return func

        return decorator

    def register(
        self, record_type: str, func: Callable, id_type: Callable[[str], Any] = str
    ) -> None:
        self._loaders[record_type] = func
        self._id_types[record_type] = id_type

    def get_loader(self, record_type: str) -> Optional[Callable]:
        """Get a loader by record type."""
        return self._loaders.get(record_type)

    def convert_id(self, record_type: str, record_id: str) -> Any:
        return self._id_types.get(record_type, str)(record_id)

    def all_loaders(self) -> Dict[str, Callable]:
        """Get all registered loaders."""
        return self._loaders.copy()


# Global registry instance
loader_registry = LoaderRegistry()
