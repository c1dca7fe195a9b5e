"""Tests for the event adapter: auto-join, auto-leave, message filtering."""

import pytest

from basic_matrix_bot.errors import ProtocolError
from basic_matrix_bot.protocol import Member, RoomMessage

BOT_ID = "@bot:example.org"
ALICE = "@alice:example.org"
ROOM = "!room:example.org"


def _message(msgtype="m.text", body="hello", event_type="m.room.message", live=True, room_id=ROOM):
    return RoomMessage(
        room_id=room_id,
        event_type=event_type,
        content={"msgtype": msgtype, "body": body},
        sender=Member(ALICE, room_id),
        raw={"event_id": "$1"},
        live=live,
    )


async def _connect(bot):
    await bot.start()
    await bot.client.sync_ready()


def _record(bot, event):
    seen = []
    bot.on(event, lambda *args: seen.append(args))
    return seen


# ------------------------------------------------------------------ #
# Installation
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_handlers_installed_only_after_first_sync(bot, client):
    await bot.start()
    assert client.membership_handlers == []

    await client.sync_ready()
    await client.sync_ready()

    assert len(client.membership_handlers) == 1
    assert len(client.timeline_handlers) == 1
    assert len(client.decrypted_handlers) == 1


# ------------------------------------------------------------------ #
# Auto-join
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_invite_for_bot_joins_once(bot, client):
    await _connect(bot)
    await client.membership(Member(BOT_ID, ROOM, "invite"))
    assert client._calls("join") == [("join", ROOM)]


@pytest.mark.asyncio
async def test_invite_for_someone_else_does_not_join(bot, client):
    await _connect(bot)
    await client.membership(Member(ALICE, ROOM, "invite"))
    assert client._calls("join") == []


@pytest.mark.asyncio
async def test_invite_ignored_when_auto_join_disabled(make_bot, client):
    bot = make_bot(client, automatically_join_rooms=False)
    await _connect(bot)
    await client.membership(Member(BOT_ID, ROOM, "invite"))
    assert client._calls("join") == []


@pytest.mark.asyncio
async def test_join_failure_becomes_error_and_membership_still_emitted(bot, client):
    async def failing_join(room_id):
        raise ProtocolError("Forbidden", "M_FORBIDDEN")

    client.join = failing_join
    memberships = _record(bot, "membership")
    await _connect(bot)

    member = Member(BOT_ID, ROOM, "invite")
    await client.membership(member, event={"type": "m.room.member"})

    assert len(bot.errors) == 1
    assert bot.errors[0].status_code == "M_FORBIDDEN"
    assert memberships == [({"type": "m.room.member"}, member)]


# ------------------------------------------------------------------ #
# Auto-leave
# ------------------------------------------------------------------ #


@pytest.mark.parametrize("membership", ["leave", "ban"])
@pytest.mark.asyncio
async def test_last_member_rooms_are_left_and_forgotten(bot, client, membership):
    client.members = {"!alone:example.org": 1, "!busy:example.org": 3}
    await _connect(bot)

    await client.membership(Member(ALICE, "!alone:example.org", membership))

    assert client._calls("leave") == [("leave", "!alone:example.org")]
    assert client._calls("forget") == [("forget", "!alone:example.org")]


@pytest.mark.asyncio
async def test_rescan_covers_every_known_room(bot, client):
    """The rescan is not limited to the room the membership change happened in."""
    client.members = {"!a:example.org": 1, "!b:example.org": 2, "!c:example.org": 1}
    await _connect(bot)

    await client.membership(Member(ALICE, "!b:example.org", "leave"))

    assert [c[1] for c in client._calls("leave")] == ["!a:example.org", "!c:example.org"]


@pytest.mark.asyncio
async def test_forgotten_room_is_left_only_once(bot, client):
    client.members = {"!alone:example.org": 1}
    await _connect(bot)

    await client.membership(Member(ALICE, "!alone:example.org", "leave"))
    await client.membership(Member(BOT_ID, "!alone:example.org", "leave"))

    assert client._calls("leave") == [("leave", "!alone:example.org")]


@pytest.mark.asyncio
async def test_failing_room_does_not_stop_rescan(bot, client):
    forbidden = ProtocolError("You are not in this room", "M_FORBIDDEN")
    client.members = {"!kicked:example.org": forbidden, "!alone:example.org": 1}
    await _connect(bot)

    await client.membership(Member(ALICE, "!kicked:example.org", "ban"))

    assert client._calls("leave") == [("leave", "!alone:example.org")]
    assert bot.errors == [forbidden]


@pytest.mark.asyncio
async def test_join_membership_does_not_rescan(bot, client):
    client.members = {"!alone:example.org": 1}
    await _connect(bot)
    await client.membership(Member(ALICE, "!alone:example.org", "join"))
    assert client._calls("leave") == []


@pytest.mark.asyncio
async def test_auto_leave_disabled(make_bot, client):
    bot = make_bot(client, automatically_leave_rooms=False)
    client.members = {"!alone:example.org": 1}
    await _connect(bot)
    await client.membership(Member(ALICE, "!alone:example.org", "leave"))
    assert client._calls("leave") == []


@pytest.mark.asyncio
async def test_membership_always_reemitted(bot, client):
    memberships = _record(bot, "membership")
    await _connect(bot)

    for state in ("invite", "join", "leave", "ban"):
        await client.membership(Member(ALICE, ROOM, state))

    assert [m[1].membership for m in memberships] == ["invite", "join", "leave", "ban"]


# ------------------------------------------------------------------ #
# Message filtering
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_text_message_emitted_with_content_preserved(bot, client):
    messages = _record(bot, "message")
    await _connect(bot)

    await client.timeline(_message(body="abcdefg!"))

    assert len(messages) == 1
    content, sender, raw = messages[0]
    assert content == {"msgtype": "m.text", "body": "abcdefg!"}
    assert sender.user_id == ALICE
    assert sender.room_id == ROOM
    assert raw == {"event_id": "$1"}


@pytest.mark.parametrize("msgtype,expected", [
    ("m.text", True),
    ("m.notice", False),
    ("m.emote", False),
    ("m.image", False),
    (None, False),
])
@pytest.mark.asyncio
async def test_default_filter_only_text(bot, client, msgtype, expected):
    messages = _record(bot, "message")
    await _connect(bot)
    await client.timeline(_message(msgtype=msgtype))
    assert bool(messages) is expected


@pytest.mark.asyncio
async def test_configured_message_types(make_bot, client):
    bot = make_bot(client, message_types=["m.notice", "m.emote"])
    messages = _record(bot, "message")
    await _connect(bot)

    for msgtype in ("m.text", "m.notice", "m.emote"):
        await client.timeline(_message(msgtype=msgtype))

    assert [m[0]["msgtype"] for m in messages] == ["m.notice", "m.emote"]


@pytest.mark.asyncio
async def test_backfilled_events_skipped(bot, client):
    messages = _record(bot, "message")
    await _connect(bot)
    await client.timeline(_message(live=False))
    assert messages == []


@pytest.mark.asyncio
async def test_non_message_events_skipped(bot, client):
    messages = _record(bot, "message")
    await _connect(bot)
    await client.timeline(_message(event_type="m.reaction"))
    assert messages == []


@pytest.mark.asyncio
async def test_decrypted_message_emitted_as_e2e(bot, client):
    plain = _record(bot, "message")
    encrypted = _record(bot, "e2eMessage")
    await _connect(bot)

    await client.decrypted(_message(body="secret"))
    await client.decrypted(_message(msgtype="m.notice"))

    assert plain == []
    assert [e[0]["body"] for e in encrypted] == ["secret"]


@pytest.mark.asyncio
async def test_message_listener_failure_reported_as_error(bot, client):
    def bad(content, sender, raw):
        raise RuntimeError("listener bug")

    bot.on("message", bad)
    await _connect(bot)

    await client.timeline(_message())

    assert len(bot.errors) == 1
    assert isinstance(bot.errors[0].__cause__, RuntimeError)


@pytest.mark.asyncio
async def test_malformed_notification_reported_as_error(bot, client):
    await _connect(bot)
    broken = RoomMessage(ROOM, "m.room.message", None, Member(ALICE, ROOM))

    await client.timeline(broken)
    await client.decrypted(broken)

    assert len(bot.errors) == 2
    assert all(isinstance(e, AttributeError) for e in bot.errors)
