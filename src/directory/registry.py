"""
Directory Registry - Discovery and registration of directory backends.

Built-in backends are registered by name; third-party backends are
discovered via the 'groupsync.directories' entry point group.
"""

import logging
from dataclasses import asdict, is_dataclass
from importlib.metadata import entry_points
from typing import Any, Dict, Optional, Type

from directory.base import DirectoryService

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "groupsync.directories"


class DirectoryRegistry:
    """
    Central registry for directory backends.

    Maps backend names (the ``directory.backend`` config value) to
    DirectoryService subclasses and builds configured instances.
    """

    def __init__(self):
        self._backends: Dict[str, Type[DirectoryService]] = {}

    def register_backend(
        self, name: str, backend_class: Type[DirectoryService]
    ) -> None:
        """
        Register a backend class under a name.

        Args:
            name: The backend name used in configuration
            backend_class: The DirectoryService subclass to register
        """
        if name in self._backends:
            logger.warning(f"Overwriting existing directory backend: {name}")

        self._backends[name] = backend_class
        logger.debug(f"Registered directory backend: {name}")

    def has_backend(self, name: str) -> bool:
        """Check if a backend is registered."""
        return name in self._backends

    def list_backends(self) -> list[str]:
        """List all registered backend names."""
        return list(self._backends.keys())

    def create(self, name: str, config: Any) -> DirectoryService:
        """
        Instantiate a backend from configuration.

        Args:
            name: The backend name to instantiate
            config: DirectoryConfig dataclass or plain dict

        Returns:
            A DirectoryService instance

        Raises:
            ValueError: If the backend name is not registered or the
                configuration is incomplete
        """
        if name not in self._backends:
            available = ", ".join(self._backends.keys()) or "none"
            raise ValueError(
                f"Unknown directory backend: {name}. Available backends: {available}"
            )

        settings = asdict(config) if is_dataclass(config) else dict(config)
        directory = self._backends[name].from_config(settings)
        logger.info(f"Using directory backend: {name}")
        return directory


# Global registry instance
_registry: Optional[DirectoryRegistry] = None


def get_registry() -> DirectoryRegistry:
    """Get the global directory registry singleton."""
    global _registry
    if _registry is None:
        _registry = DirectoryRegistry()
        register_builtin_backends(_registry)
    return _registry


def reset_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None


def register_builtin_backends(registry: DirectoryRegistry) -> None:
    """
    Register the backends that ship with groupsync, then discover any
    installed third-party backends via entry points.
    """
    from directory.active_directory import ActiveDirectory
    from directory.memory import InMemoryDirectory

    registry.register_backend("ldap", ActiveDirectory)
    registry.register_backend("memory", InMemoryDirectory)

    for ep in entry_points(group=ENTRY_POINT_GROUP):
        try:
            registry.register_backend(ep.name, ep.load())
        except Exception as e:
            logger.warning(f"Could not load directory backend {ep.name}: {e}")
