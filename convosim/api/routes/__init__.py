"""FastAPI route modules.

Exports all route modules for inclusion in the main application.
"""

from convosim.api.routes import simulations

__all__ = [
    "simulations",
]
