"""
Session orchestrators for the app (initiator) and device (responder) roles.
"""

from .app import AppEndpoint
from .base import Endpoint
from .device import DeviceEndpoint

__all__ = ["AppEndpoint", "DeviceEndpoint", "Endpoint"]
