from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings

DEFAULT_MESSAGE_TYPES = frozenset({"m.text"})


class BotIdentity(BaseModel):
    """Who the bot logs in as and where it keeps its session."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(min_length=1)
    password: str = Field(min_length=1, repr=False)
    homeserver_url: str = Field(min_length=1)
    storage_path: str = Field(min_length=1)


class BotOptions(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    message_types: frozenset[str] = DEFAULT_MESSAGE_TYPES
    automatically_join_rooms: bool = True
    automatically_leave_rooms: bool = True
    automatically_verify_devices: bool = True

    @field_validator("message_types", mode="before")
    @classmethod
    def accept_single_type(cls, value):
        """A bare string means a single message type. None means the default."""
        if value is None:
            return DEFAULT_MESSAGE_TYPES
        if isinstance(value, str):
            return frozenset({value})
        if isinstance(value, Iterable) and not isinstance(value, (bytes, dict)):
            return value
        raise ValueError("message_types should be a string or a list of strings")


class Settings(BaseSettings):
    model_config = {"env_prefix": "", "env_file": ".env", "extra": "ignore"}

    matrix_homeserver: str = ""
    matrix_user: str
    matrix_password: str
    storage_path: str = "./storage"

    # Comma separated
    message_types: str = "m.text"
    authorised_senders: str = ""

    auto_join_rooms: bool = True
    auto_leave_rooms: bool = True
    auto_verify_devices: bool = True
    log_level: str = "INFO"

    @model_validator(mode="after")
    def derive_homeserver(self) -> "Settings":
        if not self.matrix_homeserver:
            _, _, server = self.matrix_user.partition(":")
            self.matrix_homeserver = f"https://{server}" if server else "https://matrix.org"
        return self

    def identity(self) -> BotIdentity:
        return BotIdentity(
            user_id=self.matrix_user,
            password=self.matrix_password,
            homeserver_url=self.matrix_homeserver,
            storage_path=self.storage_path,
        )

    def options(self) -> BotOptions:
        return BotOptions(
            message_types=_split(self.message_types) or DEFAULT_MESSAGE_TYPES,
            automatically_join_rooms=self.auto_join_rooms,
            automatically_leave_rooms=self.auto_leave_rooms,
            automatically_verify_devices=self.auto_verify_devices,
        )

    def authorised(self) -> set[str]:
        return set(_split(self.authorised_senders))


def _split(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]
