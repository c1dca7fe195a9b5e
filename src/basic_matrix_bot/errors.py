"""Exception hierarchy raised by the bot and its protocol client."""


class BotError(Exception):
    """Base class for every error raised by basic_matrix_bot."""


class InvalidArgumentError(BotError, ValueError):
    """A caller passed a missing or mistyped argument. Nothing was sent."""


class ProtocolError(BotError):
    """The homeserver (or the SDK talking to it) rejected a request."""

    def __init__(self, message: str, status_code: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code:
            return f"{self.status_code}: {self.message}"
        return self.message


class AuthError(ProtocolError):
    """Password login was rejected."""


class SyncFailedError(ProtocolError):
    """A sync round-trip failed. Reported through the ``error`` event."""


class SendError(ProtocolError):
    """A message could not be delivered to a room."""


class UnknownDeviceError(SendError):
    """Sending to an encrypted room failed because of untrusted devices.

    ``devices`` maps each user id to the set of device ids that must be
    verified before the room key can be shared.
    """

    def __init__(self, devices: dict[str, set[str]], message: str = ""):
        self.devices = {user_id: set(ids) for user_id, ids in devices.items()}
        if not message:
            listed = ", ".join(
                f"{user_id} ({', '.join(sorted(ids))})"
                for user_id, ids in sorted(self.devices.items())
            )
            message = f"Unknown devices: {listed}"
        super().__init__(message)


class HandlerError(BotError):
    """A listener of a bot event raised. The original error is ``__cause__``."""

    def __init__(self, event_name: str):
        super().__init__(f"Listener for {event_name!r} raised")
        self.event_name = event_name
