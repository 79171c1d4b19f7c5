"""Random skin overlay: bridge-protocol and state-reconciliation core."""

from randomskin_overlay.version import __version__

__all__ = ["__version__"]
