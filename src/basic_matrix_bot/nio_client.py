"""ProtocolClient backed by matrix-nio's AsyncClient."""

import asyncio
import logging
import os
from typing import Any

import aiohttp
from nio import (
    AsyncClient,
    AsyncClientConfig,
    InviteMemberEvent,
    LoginResponse,
    RoomMemberEvent,
    RoomMessage as NioRoomMessage,
    SyncError,
    SyncResponse,
)
from nio.api import RoomPreset, RoomVisibility
from nio.crypto import ENCRYPTION_ENABLED
from nio.exceptions import LocalProtocolError, OlmUnverifiedDeviceError
from nio.responses import ErrorResponse

from .errors import (
    AuthError,
    InvalidArgumentError,
    ProtocolError,
    SendError,
    SyncFailedError,
    UnknownDeviceError,
)
from .protocol import (
    ROOM_MESSAGE,
    Member,
    MembershipHandler,
    MessageHandler,
    ProtocolClient,
    Room,
    RoomMessage,
    SendKind,
    Session,
    SyncErrorHandler,
    SyncReadyHandler,
)

log = logging.getLogger(__name__)

DEVICE_NAME = "basic-matrix-bot"
SYNC_TIMEOUT_MS = 30000
SYNC_RETRY_SECONDS = 5
HTML_FORMAT = "org.matrix.custom.html"
CREATE_ROOM_OPTIONS = frozenset({
    "room_alias_name", "visibility", "invite", "name", "topic", "is_direct", "preset",
})


def _raise_for(resp: Any, error_cls: type[ProtocolError] = ProtocolError) -> None:
    if isinstance(resp, ErrorResponse):
        raise error_cls(resp.message, resp.status_code)


class NioProtocolClient(ProtocolClient):
    def __init__(self, homeserver_url: str, storage_path: str, device_name: str = DEVICE_NAME):
        self.homeserver_url = homeserver_url
        self.storage_path = storage_path
        self.device_name = device_name
        self.client: AsyncClient | None = None
        self._membership_handlers: list[MembershipHandler] = []
        self._timeline_handlers: list[MessageHandler] = []
        self._decrypted_handlers: list[MessageHandler] = []
        self._on_ready: SyncReadyHandler | None = None
        self._on_error: SyncErrorHandler | None = None
        self._ready = False
        self._sync_task: asyncio.Task | None = None

    # ------------------------------------------------------------------ #
    # Session
    # ------------------------------------------------------------------ #

    async def login(self, user_id: str, password: str) -> Session:
        """Password login on a throwaway client; the long-lived one is built by resume()."""
        login_client = AsyncClient(self.homeserver_url, user_id)
        try:
            resp = await login_client.login(password, device_name=self.device_name)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AuthError(f"Login to {self.homeserver_url} failed: {e}") from e
        finally:
            await login_client.close()
        if not isinstance(resp, LoginResponse):
            raise AuthError(getattr(resp, "message", str(resp)), getattr(resp, "status_code", None))
        return Session(access_token=resp.access_token, user_id=resp.user_id, device_id=resp.device_id)

    async def resume(self, session: Session) -> None:
        os.makedirs(self.storage_path, exist_ok=True)
        self.client = AsyncClient(
            self.homeserver_url,
            session.user_id,
            device_id=session.device_id,
            store_path=self.storage_path,
            config=AsyncClientConfig(store_sync_tokens=True, encryption_enabled=ENCRYPTION_ENABLED),
        )
        # Loads the crypto store when encryption is available
        self.client.restore_login(
            user_id=session.user_id,
            device_id=session.device_id,
            access_token=session.access_token,
        )
        if not ENCRYPTION_ENABLED:
            log.warning("matrix-nio has no encryption support (install the e2e extra) — "
                        "encrypted rooms will not be readable")
        elif self.client.should_upload_keys:
            log.info("Uploading encryption keys for %s", session.device_id)
            _raise_for(await self.client.keys_upload())

        self.client.add_event_callback(self._dispatch_membership, (RoomMemberEvent, InviteMemberEvent))
        self.client.add_event_callback(self._dispatch_message, NioRoomMessage)

    async def start_sync(self, on_ready: SyncReadyHandler, on_error: SyncErrorHandler) -> None:
        self._on_ready = on_ready
        self._on_error = on_error
        self.client.add_response_callback(self._on_sync, SyncResponse)
        self.client.add_response_callback(self._on_sync_error, SyncError)
        self._sync_task = asyncio.create_task(
            self._sync_loop(), name=f"sync-{self.client.user_id}"
        )

    async def stop(self) -> None:
        if self._sync_task:
            self._sync_task.cancel()
            try:
                await self._sync_task
            except asyncio.CancelledError:
                pass
            self._sync_task = None
        if self.client:
            await self.client.close()

    async def _sync_loop(self) -> None:
        while True:
            try:
                await self.client.sync_forever(timeout=SYNC_TIMEOUT_MS, full_state=True)
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.exception("Sync loop crashed — restarting in %ss", SYNC_RETRY_SECONDS)
                failure = SyncFailedError(f"Sync loop crashed: {e}")
                failure.__cause__ = e
                await self._on_error(failure)
                await asyncio.sleep(SYNC_RETRY_SECONDS)

    async def _on_sync(self, response: SyncResponse) -> None:
        if self._ready:
            return
        self._ready = True
        log.info("First sync done: next_batch=%s", response.next_batch)
        await self._on_ready()

    async def _on_sync_error(self, response: SyncError) -> None:
        await self._on_error(SyncFailedError(response.message, response.status_code))

    # ------------------------------------------------------------------ #
    # Notifications
    # ------------------------------------------------------------------ #

    def on_membership_change(self, handler: MembershipHandler) -> None:
        self._membership_handlers.append(handler)

    def on_timeline_message(self, handler: MessageHandler) -> None:
        self._timeline_handlers.append(handler)

    def on_message_decrypted(self, handler: MessageHandler) -> None:
        self._decrypted_handlers.append(handler)

    async def _dispatch_membership(self, room, event) -> None:
        content = getattr(event, "content", None) or {}
        member = Member(
            user_id=event.state_key,
            room_id=room.room_id,
            membership=event.membership,
            display_name=content.get("displayname"),
        )
        for handler in list(self._membership_handlers):
            await handler(event, member)

    async def _dispatch_message(self, room, event) -> None:
        source = event.source or {}
        message = RoomMessage(
            room_id=room.room_id,
            event_type=source.get("type", ROOM_MESSAGE),
            content=source.get("content", {}),
            sender=Member(
                user_id=event.sender,
                room_id=room.room_id,
                membership="join",
                display_name=room.user_name(event.sender),
            ),
            raw=event,
        )
        # nio hands decrypted megolm payloads to the same callbacks as plaintext
        handlers = self._decrypted_handlers if getattr(event, "decrypted", False) else self._timeline_handlers
        for handler in list(handlers):
            await handler(message)

    # ------------------------------------------------------------------ #
    # Rooms
    # ------------------------------------------------------------------ #

    async def join(self, room_id: str) -> None:
        _raise_for(await self.client.join(room_id))

    async def leave(self, room_id: str) -> None:
        _raise_for(await self.client.room_leave(room_id))

    async def forget(self, room_id: str) -> None:
        _raise_for(await self.client.room_forget(room_id))
        # nio only drops left rooms on the next sync
        self.client.rooms.pop(room_id, None)

    async def invite(self, user_id: str, room_id: str) -> None:
        _raise_for(await self.client.room_invite(room_id, user_id))

    async def create_room(self, options: dict[str, Any]) -> dict[str, str | None]:
        unknown = set(options) - CREATE_ROOM_OPTIONS
        if unknown:
            raise InvalidArgumentError(f"Unsupported room options: {', '.join(sorted(unknown))}")
        try:
            visibility = RoomVisibility(options.get("visibility", "private"))
            preset = RoomPreset(options["preset"]) if options.get("preset") else None
        except ValueError as e:
            raise InvalidArgumentError(str(e)) from e

        invite = options.get("invite", [])
        if not isinstance(invite, (list, tuple)) or not all(isinstance(u, str) for u in invite):
            raise InvalidArgumentError('"invite" must be a list of user ids.')

        alias = options.get("room_alias_name")
        resp = await self.client.room_create(
            visibility=visibility,
            alias=alias,
            name=options.get("name"),
            topic=options.get("topic"),
            is_direct=bool(options.get("is_direct", False)),
            preset=preset,
            invite=list(invite),
        )
        _raise_for(resp)
        room_alias = None
        if alias:
            _, _, server = self.client.user_id.partition(":")
            room_alias = f"#{alias}:{server}"
        log.info("Created room %s", resp.room_id)
        return {"room_id": resp.room_id, "room_alias": room_alias}

    async def list_rooms(self) -> list[Room]:
        return [Room(room_id=room_id, name=room.display_name) for room_id, room in self.client.rooms.items()]

    async def get_joined_member_count(self, room_id: str) -> int:
        """Joined members from the synced room state, no request made."""
        room = self.client.rooms.get(room_id)
        if room is None:
            raise ProtocolError(f"Unknown room {room_id}")
        return room.joined_count

    # ------------------------------------------------------------------ #
    # Sending
    # ------------------------------------------------------------------ #

    async def send_plain(self, room_id: str, body: str, kind: SendKind) -> None:
        await self._room_send(room_id, {"msgtype": kind.msgtype, "body": body})

    async def send_html(self, room_id: str, body: str, html_body: str, kind: SendKind) -> None:
        await self._room_send(room_id, {
            "msgtype": kind.msgtype,
            "body": body,
            "format": HTML_FORMAT,
            "formatted_body": html_body,
        })

    async def _room_send(self, room_id: str, content: dict) -> None:
        try:
            resp = await self.client.room_send(room_id, ROOM_MESSAGE, content)
        except OlmUnverifiedDeviceError as e:
            raise UnknownDeviceError(self._unverified_devices(room_id, e.device)) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SendError(f"Sending to {room_id} failed: {e}") from e
        _raise_for(resp, SendError)

    def _unverified_devices(self, room_id: str, blocking_device) -> dict[str, set[str]]:
        """Every device of the room's members that blocks sharing the room key."""
        devices: dict[str, set[str]] = {blocking_device.user_id: {blocking_device.id}}
        room = self.client.rooms.get(room_id)
        if room is None:
            return devices
        for user_id in room.users:
            for device in self.client.device_store.active_user_devices(user_id):
                if device.id == self.client.device_id:
                    continue
                if device.verified or device.blacklisted or device.ignored:
                    continue
                devices.setdefault(user_id, set()).add(device.id)
        return devices

    async def mark_device_verified(self, user_id: str, device_id: str) -> None:
        try:
            device = self.client.device_store[user_id][device_id]
        except KeyError as e:
            raise ProtocolError(f"Unknown device {device_id} of {user_id}") from e
        except LocalProtocolError as e:
            raise ProtocolError(str(e)) from e
        self.client.verify_device(device)
        log.info("Verified device %s of %s", device_id, user_id)
