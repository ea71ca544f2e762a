"""
Resource kinds package.

Each kind maps a typed desired-state dataclass onto the flat field map
exchanged with a remote control plane.
"""

from kinds.base import ResourceKind
from kinds.registry import KindRegistry, build_registry

__all__ = ["ResourceKind", "KindRegistry", "build_registry"]
