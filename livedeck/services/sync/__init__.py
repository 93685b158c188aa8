"""Presenter/audience synchronisation package."""

from .hub import ClientSession, Role, SyncHub
from .replica import ClientReplica

__all__ = [
    "ClientSession",
    "Role",
    "SyncHub",
    "ClientReplica",
]
