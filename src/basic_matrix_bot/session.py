"""Login-or-resume: turn stored credentials (or a fresh login) into a Session."""

import logging

from .config import BotIdentity
from .protocol import ProtocolClient, Session
from .store import CredentialStore

log = logging.getLogger(__name__)

ACCESS_TOKEN = "access_token"
USER_ID = "user_id"
DEVICE_ID = "device_id"


def load_session(store: CredentialStore) -> Session | None:
    """Return the stored session, or None if any part of it is missing."""
    access_token = store.get(ACCESS_TOKEN)
    if not access_token:
        return None
    user_id = store.get(USER_ID)
    device_id = store.get(DEVICE_ID)
    if not user_id or not device_id:
        log.warning("Stored session is incomplete (user_id=%r, device_id=%r) — logging in again",
                    user_id, device_id)
        return None
    return Session(access_token=access_token, user_id=user_id, device_id=device_id)


def save_session(store: CredentialStore, session: Session) -> None:
    store.set(ACCESS_TOKEN, session.access_token)
    store.set(USER_ID, session.user_id)
    store.set(DEVICE_ID, session.device_id)


async def bootstrap_session(
    identity: BotIdentity, store: CredentialStore, client: ProtocolClient,
) -> Session:
    """Resume the stored session, logging in only when there is none.

    Login failures propagate to the caller untouched.
    """
    session = load_session(store)
    if session is None:
        log.info("No stored session for %s — logging in", identity.user_id)
        session = await client.login(identity.user_id, identity.password)
        save_session(store, session)
        log.info("Logged in as %s (device %s)", session.user_id, session.device_id)
    else:
        log.info("Resuming session for %s (device %s)", session.user_id, session.device_id)

    await client.resume(session)
    return session
