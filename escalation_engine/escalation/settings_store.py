"""
Runtime Escalation Configuration.

Admins edit escalation behavior through key/value rows in config_settings.
Values are loosely typed JSON written by different UIs over time
("true", true, {"enabled": true}, "5", {"percentage": 80}), so every key
is parsed through its own schema with an explicit default:

- known key, valid value   → parsed value
- known key, malformed     → default + warning (fail closed to defaults)
- unknown key              → ignored
- store unreadable         → ConfigurationError (run aborts)

The result is an immutable EscalationConfig that is loaded at the start of
every run and passed explicitly into every component. Nothing is cached.
"""

from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from escalation_engine.config import settings
from escalation_engine.db import queries
from escalation_engine.escalation.schemas import Channel
from escalation_engine.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)


# ── Per-key schemas ────────────────────────────────────────────────────


class ToggleSetting(BaseModel):
    """Accepts true / "true" / {"enabled": true}."""
    enabled: bool

    @model_validator(mode="before")
    @classmethod
    def _wrap_scalar(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return value
        return {"enabled": value}


class CountSetting(BaseModel):
    """Accepts 5 / "5" / {"value": 5}."""
    value: int = Field(ge=1)

    @model_validator(mode="before")
    @classmethod
    def _wrap_scalar(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return value
        return {"value": value}


class PercentageSetting(BaseModel):
    """Accepts 80 / "80" / {"percentage": 80}."""
    percentage: float = Field(ge=0, le=100)

    @model_validator(mode="before")
    @classmethod
    def _wrap_scalar(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return value
        return {"percentage": value}


class RoleListSetting(BaseModel):
    """Accepts ["admin", "gestor"] / "admin,gestor" / {"roles": [...]}."""
    roles: list[str]

    @model_validator(mode="before")
    @classmethod
    def _wrap_scalar(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return value
        if isinstance(value, str):
            value = [part.strip() for part in value.split(",") if part.strip()]
        return {"roles": value}


# key → (schema, EscalationConfig field, extractor)
SETTING_SCHEMAS: dict[str, tuple[type[BaseModel], str, str]] = {
    "compliance.block_access": (ToggleSetting, "block_access", "enabled"),
    "channels.in_app.enabled": (ToggleSetting, "in_app_enabled", "enabled"),
    "channels.whatsapp.enabled": (ToggleSetting, "whatsapp_enabled", "enabled"),
    "reminders.max_per_obligation": (CountSetting, "max_reminders", "value"),
    "quorum.percentage": (PercentageSetting, "quorum_percentage", "percentage"),
    "quorum.auto_publish": (ToggleSetting, "auto_publish_to_feed", "enabled"),
    "quorum.notify_whatsapp": (ToggleSetting, "notify_whatsapp_on_approval", "enabled"),
    "escalation.roles": (RoleListSetting, "escalation_roles", "roles"),
}


# ── Config value object ────────────────────────────────────────────────


class EscalationConfig(BaseModel):
    """Immutable escalation configuration for one run."""

    model_config = ConfigDict(frozen=True)

    block_access: bool = False
    in_app_enabled: bool = True
    whatsapp_enabled: bool = False
    max_reminders: int = 5
    quorum_percentage: float = 80.0
    auto_publish_to_feed: bool = False
    notify_whatsapp_on_approval: bool = False
    escalation_roles: tuple[str, ...] = ()
    timezone: str = "UTC"

    def channel_enabled(self, channel: Channel) -> bool:
        if channel == Channel.IN_APP:
            return self.in_app_enabled
        if channel == Channel.WHATSAPP:
            return self.whatsapp_enabled
        return False

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def parse_settings(raw: dict[str, Any], timezone: Optional[str] = None) -> EscalationConfig:
    """
    Build an EscalationConfig from raw key → JSON value pairs.

    Malformed values fall back to the field default and are logged.
    """
    tz_name = timezone or settings.escalation_timezone
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(f"Unknown escalation timezone: {tz_name!r}") from e

    values: dict[str, Any] = {"timezone": tz_name}
    for key, raw_value in raw.items():
        entry = SETTING_SCHEMAS.get(key)
        if entry is None:
            continue
        schema, field_name, attr = entry
        if raw_value is None:
            continue
        try:
            parsed = schema.model_validate(raw_value)
        except ValidationError as e:
            logger.warning(
                "config_value_malformed",
                key=key,
                value=repr(raw_value)[:200],
                default=EscalationConfig.model_fields[field_name].default,
                errors=e.error_count(),
            )
            continue
        value = getattr(parsed, attr)
        if isinstance(value, list):
            value = tuple(value)
        values[field_name] = value

    return EscalationConfig(**values)


async def load_escalation_config(
    session: AsyncSession, timezone: Optional[str] = None
) -> EscalationConfig:
    """Read config_settings and build a fresh EscalationConfig."""
    try:
        raw = await queries.get_config_values(session, list(SETTING_SCHEMAS))
    except SQLAlchemyError as e:
        raise ConfigurationError(f"Cannot read escalation settings: {e}") from e

    config = parse_settings(raw, timezone=timezone)
    logger.debug("config_loaded", **config.model_dump())
    return config
