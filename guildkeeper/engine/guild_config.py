"""
guildkeeper.engine.guild_config — Typed Per-Guild Configuration
================================================================

The dashboard stores each guild's configuration as one JSON document in
``guild_settings.config_json``.  This module turns that document into an
immutable, validated :class:`GuildConfig` with documented defaults, so the
rest of the bot never has to guess at missing keys or wrong types.

Field names are snake_case in Python and camelCase on the wire
(``xpPerMessage``, ``roleRewards``, …).  Snowflakes are accepted as strings
or integers and always serialized back to strings, because Discord IDs
overflow a JavaScript number.

Sections the bot doesn't act on (logging, starboard, …) are ignored on
parse but left untouched in the stored document.
"""

from __future__ import annotations

import json
import logging
from typing import Annotated, Any, Literal, get_args, get_origin

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from guildkeeper.constants import (
    DEFAULT_LEVEL_UP_MESSAGE,
    MAX_ROLE_REWARDS,
    XP_COOLDOWN_SECONDS,
    XP_PER_MESSAGE_MAX,
    XP_PER_MESSAGE_MIN,
)

logger = logging.getLogger(__name__)

Snowflake = Annotated[int, PlainSerializer(str, return_type=str, when_used="json")]

LEVEL_UP_CURRENT = "current"
LEVEL_UP_DM = "dm"

DEFAULT_WELCOME_MESSAGE = "Welcome {user} to **{server}**! You are member #{memberCount}."


class GuildConfigError(ValueError):
    """Raised when a stored or submitted guild configuration is invalid.

    ``errors`` carries pydantic's structured error list so the dashboard
    can point at the offending field.
    """

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------
class _Section(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class ModulesConfig(_Section):
    moderation: bool = True
    automod: bool = False
    leveling: bool = True
    welcome: bool = False


class XpRange(_Section):
    min: int = Field(default=XP_PER_MESSAGE_MIN, ge=0, le=100)
    max: int = Field(default=XP_PER_MESSAGE_MAX, ge=0, le=100)

    @model_validator(mode="after")
    def _min_not_above_max(self) -> XpRange:
        if self.min > self.max:
            raise ValueError("xpPerMessage.min must not exceed xpPerMessage.max")
        return self


class RoleReward(_Section):
    level: int = Field(ge=1, le=1000)
    role_id: Snowflake
    remove_on_higher_level: bool = False


class XpMultiplier(_Section):
    role_id: Snowflake
    multiplier: float = Field(ge=0.1, le=10)


class LevelingConfig(_Section):
    """Leveling knobs.  Defaults match a freshly initialized guild."""

    enabled: bool = True
    xp_per_message: XpRange = Field(default_factory=XpRange)
    xp_cooldown: int = Field(default=XP_COOLDOWN_SECONDS, ge=0, le=300)
    # "current" (the triggering channel), "dm", or a channel snowflake
    level_up_channel: str = LEVEL_UP_CURRENT
    level_up_message: str = Field(
        default=DEFAULT_LEVEL_UP_MESSAGE, min_length=1, max_length=2000
    )
    role_rewards: list[RoleReward] = Field(
        default_factory=list, max_length=MAX_ROLE_REWARDS
    )
    ignored_channels: list[Snowflake] = Field(default_factory=list)
    ignored_roles: list[Snowflake] = Field(default_factory=list)
    xp_multipliers: list[XpMultiplier] = Field(default_factory=list)

    @field_validator("level_up_channel", mode="before")
    @classmethod
    def _check_level_up_channel(cls, value: Any) -> str:
        if value is None or value == "":
            return LEVEL_UP_CURRENT
        value = str(value)
        if value in (LEVEL_UP_CURRENT, LEVEL_UP_DM) or value.isdigit():
            return value
        raise ValueError("levelUpChannel must be 'current', 'dm' or a channel id")

    @property
    def xp_range(self) -> tuple[int, int]:
        return self.xp_per_message.min, self.xp_per_message.max


class WarnThresholds(_Section):
    kick: int = Field(default=3, ge=1, le=100)
    ban: int = Field(default=5, ge=1, le=100)


class ModerationConfig(_Section):
    mod_log_channel_id: Snowflake | None = None
    warn_thresholds: WarnThresholds = Field(default_factory=WarnThresholds)
    dm_on_action: bool = True


MuteMinutes = Annotated[int, Field(ge=1, le=10080)]


class AntiSpamConfig(_Section):
    enabled: bool = False
    # more than max_messages within interval seconds
    max_messages: int = Field(default=5, ge=1, le=50)
    interval: int = Field(default=5, ge=1, le=60)
    action: Literal["warn", "mute", "kick", "ban"] = "mute"
    mute_duration: MuteMinutes = 10


class WordFilterConfig(_Section):
    enabled: bool = False
    words: list[Annotated[str, Field(min_length=1, max_length=100)]] = Field(
        default_factory=list, max_length=1000
    )
    action: Literal["delete", "warn", "mute"] = "delete"
    mute_duration: MuteMinutes = 10


class LinkFilterConfig(_Section):
    enabled: bool = False
    allowed_domains: list[Annotated[str, Field(max_length=255)]] = Field(
        default_factory=list, max_length=1000
    )
    action: Literal["delete", "warn", "mute"] = "delete"
    mute_duration: MuteMinutes = 10


class CapsFilterConfig(_Section):
    enabled: bool = False
    # percentage of letters that are upper case
    threshold: int = Field(default=70, ge=0, le=100)
    min_length: int = Field(default=10, ge=1, le=2000)
    action: Literal["delete", "warn"] = "delete"


class AutoModConfig(_Section):
    """Message filters run before XP is considered."""

    enabled: bool = False
    anti_spam: AntiSpamConfig = Field(default_factory=AntiSpamConfig)
    word_filter: WordFilterConfig = Field(default_factory=WordFilterConfig)
    link_filter: LinkFilterConfig = Field(default_factory=LinkFilterConfig)
    caps_filter: CapsFilterConfig = Field(default_factory=CapsFilterConfig)
    ignored_channels: list[Snowflake] = Field(default_factory=list)
    ignored_roles: list[Snowflake] = Field(default_factory=list)


class WelcomeConfig(_Section):
    enabled: bool = False
    channel_id: Snowflake | None = None
    message: str = Field(default=DEFAULT_WELCOME_MESSAGE, min_length=1, max_length=2000)
    embed_enabled: bool = False
    embed_color: str | None = None
    dm_enabled: bool = False
    dm_message: str | None = Field(default=None, max_length=2000)
    auto_role: list[Snowflake] = Field(default_factory=list)

    leave_enabled: bool = False
    leave_channel_id: Snowflake | None = None
    leave_message: str | None = Field(default=None, max_length=2000)


class GuildConfig(_Section):
    """Validated configuration for one guild."""

    modules: ModulesConfig = Field(default_factory=ModulesConfig)
    leveling: LevelingConfig = Field(default_factory=LevelingConfig)
    moderation: ModerationConfig = Field(default_factory=ModerationConfig)
    automod: AutoModConfig = Field(default_factory=AutoModConfig)
    welcome: WelcomeConfig = Field(default_factory=WelcomeConfig)

    @property
    def leveling_active(self) -> bool:
        return self.modules.leveling and self.leveling.enabled

    @property
    def automod_active(self) -> bool:
        return self.modules.automod and self.automod.enabled

    @property
    def welcome_active(self) -> bool:
        return self.modules.welcome and self.welcome.enabled


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------
def decode_config_document(raw: str | dict[str, Any] | None) -> dict[str, Any]:
    """Decode a stored document into a dict without validating its fields.

    ``None`` or an empty string decodes to ``{}``.  Raises
    :class:`GuildConfigError` if *raw* isn't JSON or isn't an object.
    """
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise GuildConfigError(f"Config is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise GuildConfigError("Config document must be a JSON object")
    return raw


def _section_model(annotation: Any) -> type[BaseModel] | None:
    """The section model behind *annotation*, looking through ``list``/``Optional``."""
    if get_origin(annotation) is None and isinstance(annotation, type):
        return annotation if issubclass(annotation, BaseModel) else None
    for arg in get_args(annotation):
        model = _section_model(arg)
        if model is not None:
            return model
    return None


def _field_name_errors(
    data: dict[str, Any], model: type[BaseModel], loc: tuple[Any, ...],
) -> list[dict[str, Any]]:
    errors: list[dict[str, Any]] = []
    by_alias = {(info.alias or name): info for name, info in model.model_fields.items()}
    for key, value in data.items():
        info = by_alias.get(key)
        if info is None:
            field = model.model_fields.get(key)
            if field is not None:
                errors.append({
                    "type": "field_name",
                    "loc": (*loc, key),
                    "msg": f"Use the wire name '{field.alias}' instead of '{key}'",
                })
            continue
        section = _section_model(info.annotation)
        if section is None:
            continue
        if isinstance(value, dict):
            errors.extend(_field_name_errors(value, section, (*loc, key)))
        elif isinstance(value, list):
            for index, item in enumerate(value):
                if isinstance(item, dict):
                    errors.extend(_field_name_errors(item, section, (*loc, key, index)))
    return errors


def check_wire_keys(patch: dict[str, Any]) -> None:
    """Reject snake_case field names in a dashboard payload.

    Parsing accepts both spellings, so a ``xp_cooldown`` key stored next to
    an existing ``xpCooldown`` would be silently shadowed by the alias.
    """
    errors = _field_name_errors(patch, GuildConfig, ())
    if errors:
        raise GuildConfigError(
            f"Invalid guild config ({len(errors)} error(s))", errors=errors,
        )


def parse_guild_config(raw: str | dict[str, Any] | None) -> GuildConfig:
    """Validate *raw* (a JSON string or decoded dict) into a :class:`GuildConfig`.

    ``None`` or an empty document yields the defaults.

    Raises
    ------
    GuildConfigError
        If the document isn't valid JSON or fails validation.
    """
    raw = decode_config_document(raw)
    try:
        return GuildConfig.model_validate(raw)
    except ValidationError as exc:
        raise GuildConfigError(
            f"Invalid guild config ({exc.error_count()} error(s))",
            errors=exc.errors(include_url=False, include_context=False),
        ) from exc


def dump_guild_config(config: GuildConfig) -> dict[str, Any]:
    """Wire shape of *config*: camelCase keys, snowflakes as strings."""
    return config.model_dump(by_alias=True, mode="json")


def deep_merge(base: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *base* with *patch* merged in recursively.

    Nested objects merge key by key; lists and scalars in *patch* replace
    the value in *base* wholesale.
    """
    merged = dict(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
