"""
Load Generation Controller - FastAPI Dependencies

Provides dependency injection for controller components.
"""

from typing import Optional

from loadgen.runtime.controller import GeneratorController, LoadMaintainer
from loadgen.runtime.local_host import InMemoryHost
from loadgen.runtime.store import GeneratorStore

# Global components (initialized at startup)
_host: Optional[InMemoryHost] = None
_controller: Optional[GeneratorController] = None
_maintainer: Optional[LoadMaintainer] = None
_store: Optional[GeneratorStore] = None


def set_host(host: InMemoryHost) -> None:
    """Set the global host instance."""
    global _host
    _host = host


def get_host() -> Optional[InMemoryHost]:
    """Get the global host instance."""
    return _host


def set_controller(controller: GeneratorController) -> None:
    """Set the global controller instance."""
    global _controller
    _controller = controller


def get_controller() -> Optional[GeneratorController]:
    """Get the global controller instance."""
    return _controller


def set_maintainer(maintainer: LoadMaintainer) -> None:
    """Set the global load maintainer instance."""
    global _maintainer
    _maintainer = maintainer


def get_maintainer() -> Optional[LoadMaintainer]:
    """Get the global load maintainer instance."""
    return _maintainer


def set_store(store: GeneratorStore) -> None:
    """Set the global generator store instance."""
    global _store
    _store = store


def get_store() -> Optional[GeneratorStore]:
    """Get the global generator store instance."""
    return _store


def clear_all() -> None:
    """Clear all global instances during shutdown."""
    global _host, _controller, _maintainer, _store
    _host = None
    _controller = None
    _maintainer = None
    _store = None
