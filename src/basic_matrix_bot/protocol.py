"""The narrow protocol-client surface the bot drives, and the values it exchanges."""

import enum
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

ROOM_MESSAGE = "m.room.message"


class SendKind(enum.Enum):
    NOTICE = "m.notice"
    MESSAGE = "m.text"
    EMOTE = "m.emote"

    @property
    def msgtype(self) -> str:
        return self.value


@dataclass(frozen=True)
class Session:
    access_token: str
    user_id: str
    device_id: str


@dataclass(frozen=True)
class Member:
    """A room member as seen in a membership change or as a message sender."""

    user_id: str
    room_id: str
    membership: str | None = None
    display_name: str | None = None


@dataclass(frozen=True)
class RoomMessage:
    room_id: str
    event_type: str
    content: dict[str, Any]
    sender: Member
    raw: Any = None
    # False for back-filled / paginated events
    live: bool = True


@dataclass(frozen=True)
class Room:
    room_id: str
    name: str | None = None


@dataclass(frozen=True)
class PlainSend:
    kind: SendKind
    body: str

    async def deliver(self, client: "ProtocolClient", room_id: str) -> None:
        await client.send_plain(room_id, self.body, self.kind)


@dataclass(frozen=True)
class HtmlSend:
    kind: SendKind
    body: str
    html_body: str = field(repr=False)

    async def deliver(self, client: "ProtocolClient", room_id: str) -> None:
        await client.send_html(room_id, self.body, self.html_body, self.kind)


MembershipHandler = Callable[[Any, Member], Awaitable[None]]
MessageHandler = Callable[[RoomMessage], Awaitable[None]]
SyncReadyHandler = Callable[[], Awaitable[None]]
SyncErrorHandler = Callable[[Exception], Awaitable[None]]


class ProtocolClient(ABC):
    """Everything the bot needs from a Matrix client SDK.

    Failures surface as :mod:`basic_matrix_bot.errors` exceptions: ``login``
    raises ``AuthError``, sends raise ``SendError`` or ``UnknownDeviceError``,
    other requests raise ``ProtocolError``.
    """

    @abstractmethod
    async def login(self, user_id: str, password: str) -> Session: ...

    @abstractmethod
    async def resume(self, session: Session) -> None: ...

    @abstractmethod
    async def start_sync(self, on_ready: SyncReadyHandler, on_error: SyncErrorHandler) -> None: ...

    @abstractmethod
    async def stop(self) -> None: ...

    @abstractmethod
    def on_membership_change(self, handler: MembershipHandler) -> None: ...

    @abstractmethod
    def on_timeline_message(self, handler: MessageHandler) -> None: ...

    @abstractmethod
    def on_message_decrypted(self, handler: MessageHandler) -> None: ...

    @abstractmethod
    async def join(self, room_id: str) -> None: ...

    @abstractmethod
    async def leave(self, room_id: str) -> None: ...

    @abstractmethod
    async def forget(self, room_id: str) -> None: ...

    @abstractmethod
    async def invite(self, user_id: str, room_id: str) -> None: ...

    @abstractmethod
    async def create_room(self, options: dict[str, Any]) -> dict[str, str | None]: ...

    @abstractmethod
    async def list_rooms(self) -> list[Room]: ...

    @abstractmethod
    async def get_joined_member_count(self, room_id: str) -> int: ...

    @abstractmethod
    async def send_plain(self, room_id: str, body: str, kind: SendKind) -> None: ...

    @abstractmethod
    async def send_html(self, room_id: str, body: str, html_body: str, kind: SendKind) -> None: ...

    @abstractmethod
    async def mark_device_verified(self, user_id: str, device_id: str) -> None: ...
