"""Simplified Matrix bot API on top of matrix-nio."""

from .bot import BasicBot
from .config import BotIdentity, BotOptions, Settings
from .errors import (
    AuthError,
    BotError,
    HandlerError,
    InvalidArgumentError,
    ProtocolError,
    SendError,
    SyncFailedError,
    UnknownDeviceError,
)
from .protocol import Member, ProtocolClient, Room, RoomMessage, SendKind, Session
from .store import CredentialStore, FileCredentialStore, MemoryCredentialStore

__all__ = [
    "AuthError",
    "BasicBot",
    "BotError",
    "BotIdentity",
    "BotOptions",
    "CredentialStore",
    "FileCredentialStore",
    "HandlerError",
    "InvalidArgumentError",
    "Member",
    "MemoryCredentialStore",
    "ProtocolClient",
    "ProtocolError",
    "Room",
    "RoomMessage",
    "SendError",
    "SendKind",
    "Session",
    "Settings",
    "SyncFailedError",
    "UnknownDeviceError",
]
