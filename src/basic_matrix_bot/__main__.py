"""Example bot: python -m basic_matrix_bot

Echoes encrypted messages from authorised senders and asks everyone else to
switch the room to end-to-end encryption.
"""

import asyncio
import logging

from .bot import BasicBot
from .config import Settings
from .protocol import Member

log = logging.getLogger(__name__)

PLAINTEXT_REPLY = "I prefer private conversations, please enable e2e encryption in this room."


def build_bot(settings: Settings) -> BasicBot:
    identity = settings.identity()
    bot = BasicBot(
        identity.user_id,
        identity.password,
        identity.homeserver_url,
        identity.storage_path,
        settings.options(),
    )
    authorised = settings.authorised()

    @bot.on("error")
    def on_error(error: Exception) -> None:
        log.error("Bot error: %s", error)

    @bot.on("message")
    async def on_message(content: dict, sender: Member, event) -> None:
        if sender.user_id == bot.user_id:
            return
        await bot.send_notice(sender.room_id, PLAINTEXT_REPLY)

    @bot.on("e2eMessage")
    async def on_e2e_message(content: dict, sender: Member, event) -> None:
        if sender.user_id == bot.user_id or sender.user_id not in authorised:
            return
        body = content.get("body")
        if body:
            await bot.send_notice(sender.room_id, body)

    return bot


async def main():
    settings = Settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    bot = build_bot(settings)
    bot.on("connected", lambda: log.info("Connected as %s", bot.user_id))

    await bot.start()
    try:
        await asyncio.Event().wait()
    finally:
        await bot.stop()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
