"""Bridges protocol-client notifications to the bot's public events.

Owns the automatic join / leave policies and the message-type filter. Every
handler turns its own failures into an ``error`` event so a bad notification
never reaches the client's dispatcher.
"""

import logging
from typing import TYPE_CHECKING, Any

from .protocol import ROOM_MESSAGE, Member, RoomMessage

if TYPE_CHECKING:
    from .bot import BasicBot

log = logging.getLogger(__name__)

LEFT = ("leave", "ban")


class EventAdapter:
    def __init__(self, bot: "BasicBot"):
        self.bot = bot
        self.options = bot.options
        self._installed = False

    def install(self) -> bool:
        """Subscribe to the client. Returns False if already installed."""
        if self._installed:
            return False
        client = self.bot.client
        client.on_membership_change(self._on_membership)
        client.on_timeline_message(self._on_timeline)
        client.on_message_decrypted(self._on_decrypted)
        self._installed = True
        return True

    async def _on_membership(self, event: Any, member: Member) -> None:
        try:
            await self._apply_membership_policies(member)
        except Exception as exc:
            log.exception("Membership policy failed in %s", member.room_id)
            await self.bot.emit("error", exc)
        await self.bot.emit("membership", event, member)

    async def _apply_membership_policies(self, member: Member) -> None:
        if (self.options.automatically_join_rooms
                and member.membership == "invite"
                and member.user_id == self.bot.user_id):
            log.info("Invited to %s — joining", member.room_id)
            await self.bot.join_room(member.room_id)

        if self.options.automatically_leave_rooms and member.membership in LEFT:
            await self._leave_abandoned_rooms()

    async def _leave_abandoned_rooms(self) -> None:
        """Leave and forget every known room where the bot is the only member left."""
        client = self.bot.client
        for room in await client.list_rooms():
            try:
                if await client.get_joined_member_count(room.room_id) == 1:
                    log.info("Last member in %s — leaving", room.room_id)
                    await self.bot.leave_room(room.room_id)
            except Exception as exc:
                log.exception("Could not check or leave %s", room.room_id)
                await self.bot.emit("error", exc)

    async def _on_timeline(self, message: RoomMessage) -> None:
        try:
            if not message.live:
                return
            await self._emit_filtered("message", message)
        except Exception as exc:
            log.exception("Timeline handler failed in %s", message.room_id)
            await self.bot.emit("error", exc)

    async def _on_decrypted(self, message: RoomMessage) -> None:
        try:
            await self._emit_filtered("e2eMessage", message)
        except Exception as exc:
            log.exception("Decryption handler failed in %s", message.room_id)
            await self.bot.emit("error", exc)

    async def _emit_filtered(self, event_name: str, message: RoomMessage) -> None:
        if message.event_type != ROOM_MESSAGE:
            return
        content = message.content
        if content.get("msgtype") not in self.options.message_types:
            return
        await self.bot.emit(event_name, content, message.sender, message.raw)
