"""Matrix bot — session bootstrap, event re-emission, and message sending."""

import logging
from typing import Any

from pydantic import ValidationError

from .adapter import EventAdapter
from .config import BotIdentity, BotOptions
from .errors import InvalidArgumentError, UnknownDeviceError
from .events import EventEmitter
from .nio_client import NioProtocolClient
from .protocol import HtmlSend, PlainSend, ProtocolClient, Room, SendKind, Session
from .session import bootstrap_session
from .store import CredentialStore, FileCredentialStore

log = logging.getLogger(__name__)


def _require_str(name: str, value: Any) -> None:
    if not value or not isinstance(value, str):
        raise InvalidArgumentError(f'"{name}" is required and must be a string.')


class BasicBot(EventEmitter):
    """A Matrix bot that emits ``connected``, ``error``, ``membership``,
    ``message`` and ``e2eMessage``.

    Register an ``error`` listener before calling :meth:`start`: errors raised
    while handling notifications are only reported through that event.
    """

    def __init__(
        self,
        user_id: str,
        password: str,
        homeserver_url: str,
        storage_path: str,
        options: BotOptions | dict | None = None,
        *,
        client: ProtocolClient | None = None,
        store: CredentialStore | None = None,
    ):
        super().__init__()
        try:
            self.identity = BotIdentity(
                user_id=user_id,
                password=password,
                homeserver_url=homeserver_url,
                storage_path=storage_path,
            )
            if options is None:
                options = BotOptions()
            elif isinstance(options, dict):
                options = BotOptions(**options)
        except (ValidationError, TypeError) as e:
            raise InvalidArgumentError(str(e)) from e
        if not isinstance(options, BotOptions):
            raise InvalidArgumentError('"options" should be a BotOptions or a dict.')
        self.options = options

        self.store = store or FileCredentialStore(storage_path)
        if client is None:
            client = NioProtocolClient(homeserver_url, storage_path)
        self.client = client
        self.session: Session | None = None
        self._adapter = EventAdapter(self)

    @property
    def user_id(self) -> str:
        """Resolved user id once started, the configured one before."""
        if self.session:
            return self.session.user_id
        return self.identity.user_id

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def start(self) -> None:
        """Log in (or resume the stored session) and start syncing.

        Returns once the sync loop is running; ``connected`` fires after the
        first successful sync. Login failures raise ``AuthError``.
        """
        self.session = await bootstrap_session(self.identity, self.store, self.client)
        await self.client.start_sync(self._on_sync_ready, self._on_sync_error)

    async def stop(self) -> None:
        """Halt the sync loop. In-flight sends are not awaited."""
        await self.client.stop()

    async def _on_sync_ready(self) -> None:
        if not self._adapter.install():
            return
        log.info("Initial sync complete for %s, now listening", self.user_id)
        await self.emit("connected")

    async def _on_sync_error(self, error: Exception) -> None:
        log.warning("Sync error for %s: %s", self.user_id, error)
        await self.emit("error", error)

    # ------------------------------------------------------------------ #
    # Sending
    # ------------------------------------------------------------------ #

    async def send_notice(self, room_id: str, body: str, html_body: str | None = None) -> None:
        """Send an ``m.notice``. Bots should prefer notices over plain messages."""
        await self._send(SendKind.NOTICE, room_id, body, html_body)

    async def send_message(self, room_id: str, body: str, html_body: str | None = None) -> None:
        """Send an ``m.text`` message."""
        await self._send(SendKind.MESSAGE, room_id, body, html_body)

    async def send_emote(self, room_id: str, body: str, html_body: str | None = None) -> None:
        """Send an ``m.emote``."""
        await self._send(SendKind.EMOTE, room_id, body, html_body)

    async def _send(self, kind: SendKind, room_id: str, body: str, html_body: str | None) -> None:
        _require_str("room_id", room_id)
        _require_str("body", body)
        if html_body is not None and not isinstance(html_body, str):
            raise InvalidArgumentError('"html_body" must be a string.')

        request = HtmlSend(kind, body, html_body) if html_body else PlainSend(kind, body)

        try:
            await request.deliver(self.client, room_id)
        except UnknownDeviceError as e:
            if not self.options.automatically_verify_devices:
                raise
            log.warning("Send to %s blocked by unknown devices — verifying and retrying once: %s",
                        room_id, e)
            for user_id, device_ids in e.devices.items():
                for device_id in sorted(device_ids):
                    await self.verify_device(user_id, device_id)
            await request.deliver(self.client, room_id)

    async def verify_device(self, user_id: str, device_id: str) -> None:
        """Trust a remote device's end-to-end keys."""
        _require_str("user_id", user_id)
        _require_str("device_id", device_id)
        await self.client.mark_device_verified(user_id, device_id)

    # ------------------------------------------------------------------ #
    # Rooms
    # ------------------------------------------------------------------ #

    async def create_room(self, options: dict[str, Any]) -> dict[str, str | None]:
        """Create a room. Returns ``{"room_id": ..., "room_alias": ...}``.

        Accepted options: room_alias_name, visibility, invite, name, topic,
        is_direct, preset.
        """
        if not isinstance(options, dict):
            raise InvalidArgumentError('"options" is required and must be a dict.')
        return await self.client.create_room(options)

    async def list_known_rooms(self) -> list[Room]:
        return await self.client.list_rooms()

    async def join_room(self, room_id: str) -> None:
        _require_str("room_id", room_id)
        await self.client.join(room_id)

    async def invite_user_to_room(self, user_id: str, room_id: str) -> None:
        _require_str("user_id", user_id)
        _require_str("room_id", room_id)
        await self.client.invite(user_id, room_id)

    async def leave_room(self, room_id: str) -> None:
        """Leave and forget a room."""
        _require_str("room_id", room_id)
        await self.client.leave(room_id)
        await self.client.forget(room_id)
