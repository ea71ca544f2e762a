"""
Remote control plane clients.

Clients perform the raw create/read/update/delete calls for a control
plane and report failures as ControlPlaneError.
"""

from clients.base import ControlPlaneClient

__all__ = ["ControlPlaneClient"]
