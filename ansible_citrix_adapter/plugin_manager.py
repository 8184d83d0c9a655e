import importlib.metadata
import logging
from typing import Dict, List, Optional, Type

from .interfaces.resource import BaseKind

# The unique name of our resource kind entry point group.
ENTRY_POINT_GROUP = "ansible_citrix_adapter.resources"

logger = logging.getLogger(__name__)


class ResourceRegistry:
    """Discovers, loads, and holds all available resource kinds via entry points."""

    def __init__(self):
        self.kinds: Dict[str, Type[BaseKind]] = {}
        self._load_kinds()

    def _load_kinds(self):
        """
        Discovers and loads resource kinds using importlib.metadata.
        """
        entry_points = importlib.metadata.entry_points(group=ENTRY_POINT_GROUP)

        for entry_point in entry_points:
            try:
                kind_class = entry_point.load()
                if not (
                    isinstance(kind_class, type) and issubclass(kind_class, BaseKind)
                ):
                    raise TypeError(f"{kind_class!r} is not a resource kind")
                type_name = kind_class.type_name
                if type_name in self.kinds:
                    logger.warning(
                        "Resource kind '%s' from '%s' shadows an earlier registration",
                        type_name,
                        entry_point.name,
                    )
                self.kinds[type_name] = kind_class
                logger.info(
                    "Registered resource kind '%s' for type: '%s'",
                    entry_point.name,
                    type_name,
                )

            except Exception as e:
                logger.warning(
                    "Could not load resource kind '%s': %s", entry_point.name, e
                )

    def get_kind(self, type_name: str) -> Optional[Type[BaseKind]]:
        """Returns the registered kind for a given type name."""
        return self.kinds.get(type_name)

    def type_names(self) -> List[str]:
        return sorted(self.kinds)
