"""Data models for the server-pool controller."""

from .types import Address, InstanceStatus, Placement, PlayerSession, ServerInstance

__all__ = [
    "Address",
    "InstanceStatus",
    "Placement",
    "PlayerSession",
    "ServerInstance",
]
