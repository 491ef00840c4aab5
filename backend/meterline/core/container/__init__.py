"""Dependency Injection Container Module.

Usage:
------
    # Initialize at startup (call once from main.py)
    from meterline.core.container import initialize_container
    from meterline.core.config import settings
    initialize_container(settings)

    # In FastAPI deps.py
    def get_container() -> Container:
        return container

    # In tests (construct directly with fakes, don't use the global)
    from meterline.core.container import Container
    test_container = Container(credit_ledger=FakeCreditLedger(), ...)

Module structure:
-----------------
    container/
    ├── __init__.py      # This file - exports public API
    ├── container.py     # Container dataclass (serves)
    └── factory.py       # create_container() (builds)
"""

from typing import TYPE_CHECKING, Optional

from meterline.core.container.container import Container
from meterline.core.container.factory import create_container

if TYPE_CHECKING:
    from meterline.core.config import Settings

__all__ = ["Container", "create_container", "container", "initialize_container"]


container: Optional[Container] = None
"""Global container instance, set by ``initialize_container()``.

Do NOT import this in domain code. Domains receive dependencies through their
constructors, never by importing the container.
"""


def initialize_container(settings: "Settings") -> None:
    """Initialize the global container. Call once at startup.

    Raises:
        RuntimeError: If the container is already initialized
    """
    global container

    if container is not None:
        raise RuntimeError(
            "Container already initialized. "
            "initialize_container() should only be called once at startup."
        )

    container = create_container(settings)


def reset_container() -> None:
    """Reset the global container to None. For testing only."""
    global container
    container = None
