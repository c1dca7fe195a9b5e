"""In-memory ProtocolClient used by the unit tests."""

import pytest

from basic_matrix_bot.bot import BasicBot
from basic_matrix_bot.protocol import ProtocolClient, Room, Session
from basic_matrix_bot.store import MemoryCredentialStore

BOT_ID = "@bot:example.org"
OTHER_ID = "@alice:example.org"


class FakeProtocolClient(ProtocolClient):
    def __init__(self):
        self.calls: list[tuple] = []
        self.session = Session("token-1", BOT_ID, "DEVICE1")
        self.login_error: Exception | None = None
        self.members: dict[str, int | Exception] = {}  # room_id -> joined member count, or raised
        self.send_errors: list[Exception] = []  # raised by successive sends
        self.membership_handlers = []
        self.timeline_handlers = []
        self.decrypted_handlers = []
        self.on_ready = None
        self.on_error = None

    def _calls(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    async def login(self, user_id, password):
        self.calls.append(("login", user_id, password))
        if self.login_error:
            raise self.login_error
        return self.session

    async def resume(self, session):
        self.calls.append(("resume", session))

    async def start_sync(self, on_ready, on_error):
        self.calls.append(("start_sync",))
        self.on_ready = on_ready
        self.on_error = on_error

    async def stop(self):
        self.calls.append(("stop",))

    def on_membership_change(self, handler):
        self.membership_handlers.append(handler)

    def on_timeline_message(self, handler):
        self.timeline_handlers.append(handler)

    def on_message_decrypted(self, handler):
        self.decrypted_handlers.append(handler)

    async def join(self, room_id):
        self.calls.append(("join", room_id))

    async def leave(self, room_id):
        self.calls.append(("leave", room_id))

    async def forget(self, room_id):
        self.calls.append(("forget", room_id))
        self.members.pop(room_id, None)

    async def invite(self, user_id, room_id):
        self.calls.append(("invite", user_id, room_id))

    async def create_room(self, options):
        self.calls.append(("create_room", options))
        room_id = f"!room{len(self.members) + 1}:example.org"
        self.members[room_id] = 1
        return {"room_id": room_id, "room_alias": None}

    async def list_rooms(self):
        return [Room(room_id) for room_id in self.members]

    async def get_joined_member_count(self, room_id):
        count = self.members[room_id]
        if isinstance(count, Exception):
            raise count
        return count

    async def _send(self, *call):
        self.calls.append(call)
        if self.send_errors:
            raise self.send_errors.pop(0)

    async def send_plain(self, room_id, body, kind):
        await self._send("send_plain", room_id, body, kind)

    async def send_html(self, room_id, body, html_body, kind):
        await self._send("send_html", room_id, body, html_body, kind)

    async def mark_device_verified(self, user_id, device_id):
        self.calls.append(("verify", user_id, device_id))

    # Test helpers: play the SDK's role of delivering notifications

    async def sync_ready(self):
        await self.on_ready()

    async def membership(self, member, event=None):
        for handler in self.membership_handlers:
            await handler(event, member)

    async def timeline(self, message):
        for handler in self.timeline_handlers:
            await handler(message)

    async def decrypted(self, message):
        for handler in self.decrypted_handlers:
            await handler(message)


def _make_bot(client=None, store=None, **options) -> BasicBot:
    return BasicBot(
        BOT_ID, "secret", "https://example.org", "/unused",
        options or None,
        client=client or FakeProtocolClient(),
        store=store if store is not None else MemoryCredentialStore(),
    )


@pytest.fixture
def client():
    return FakeProtocolClient()


@pytest.fixture
def make_bot():
    return _make_bot


@pytest.fixture
def bot(client):
    """A bot on the fake client whose errors are collected in bot.errors."""
    bot = _make_bot(client)
    bot.errors = []
    bot.on("error", bot.errors.append)
    return bot
