"""Settings dataclasses, bounds validation and environment overrides."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping

from ..errors import InvalidSettingError

__all__ = [
    "StreamingSettings",
    "ConversationSettings",
    "load_settings",
    "validate_update_rate",
    "validate_message_size",
    "validate_activity_budget",
    "UPDATE_RATE_MIN",
    "UPDATE_RATE_MAX",
    "UPDATE_RATE_DEFAULT",
    "MESSAGE_SIZE_MIN",
    "MESSAGE_SIZE_MAX",
    "MESSAGE_SIZE_DEFAULT",
    "ACTIVITY_BUDGET_MIN",
    "ACTIVITY_BUDGET_MAX",
    "ACTIVITY_BUDGET_DEFAULT",
]

LOGGER = logging.getLogger(__name__)

UPDATE_RATE_MIN = 1.0
UPDATE_RATE_MAX = 10.0
UPDATE_RATE_DEFAULT = 3.0
MESSAGE_SIZE_MIN = 100
MESSAGE_SIZE_MAX = 36_000
MESSAGE_SIZE_DEFAULT = 500
ACTIVITY_BUDGET_MIN = 100
# Chat platforms cap a single text block at 3000 chars.
ACTIVITY_BUDGET_MAX = 2_900
ACTIVITY_BUDGET_DEFAULT = 1_000

_ENV_OVERRIDES: Mapping[str, str] = {
    "AGENTBRIDGE_BACKEND_URL": "backend_url",
    "AGENTBRIDGE_LOG_LEVEL": "log_level",
    "AGENTBRIDGE_LOG_FILE": "log_file",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "AGENTBRIDGE_UPDATE_RATE": "update_rate_seconds",
    "AGENTBRIDGE_DEDUP_TTL": "dedup_ttl_seconds",
    "AGENTBRIDGE_REQUEST_TIMEOUT": "request_timeout",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "AGENTBRIDGE_ACTIVITY_MAX_CHARS": "activity_max_chars",
    "AGENTBRIDGE_RESPONSE_MAX_CHARS": "response_max_chars",
    "AGENTBRIDGE_MAX_RETRIES": "max_retries",
}


@dataclass(slots=True)
class StreamingSettings:
    """Process-wide defaults for the streaming engine and backend client."""

    update_rate_seconds: float = UPDATE_RATE_DEFAULT
    activity_max_chars: int = ACTIVITY_BUDGET_DEFAULT
    response_max_chars: int = MESSAGE_SIZE_DEFAULT
    dedup_ttl_seconds: float = 0.2
    dedup_prefix_chars: int = 100
    max_live_entries: int = 300
    rolling_window_size: int = 20
    backend_url: str = "http://127.0.0.1:8765/rpc"
    request_timeout: float = 30.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    log_level: str = "INFO"
    log_file: str | None = None

    def conversation_defaults(self) -> "ConversationSettings":
        """Return per-conversation settings seeded from these defaults."""

        return ConversationSettings(
            update_rate_seconds=_clamp(self.update_rate_seconds, UPDATE_RATE_MIN, UPDATE_RATE_MAX),
            activity_max_chars=int(_clamp(self.activity_max_chars, ACTIVITY_BUDGET_MIN, ACTIVITY_BUDGET_MAX)),
            response_max_chars=int(_clamp(self.response_max_chars, MESSAGE_SIZE_MIN, MESSAGE_SIZE_MAX)),
        )


@dataclass(frozen=True, slots=True)
class ConversationSettings:
    """Per-conversation knobs supplied by the command layer."""

    update_rate_seconds: float = UPDATE_RATE_DEFAULT
    activity_max_chars: int = ACTIVITY_BUDGET_DEFAULT
    response_max_chars: int = MESSAGE_SIZE_DEFAULT

    @classmethod
    def from_values(
        cls,
        *,
        update_rate_seconds: float | None = None,
        activity_max_chars: int | None = None,
        response_max_chars: int | None = None,
        defaults: "ConversationSettings | None" = None,
    ) -> "ConversationSettings":
        """Build validated settings, falling back to ``defaults`` for omitted values.

        Raises:
            InvalidSettingError: If a supplied value is outside its range.
        """

        base = defaults or cls()
        return cls(
            update_rate_seconds=(
                validate_update_rate(update_rate_seconds)
                if update_rate_seconds is not None
                else base.update_rate_seconds
            ),
            activity_max_chars=(
                validate_activity_budget(activity_max_chars)
                if activity_max_chars is not None
                else base.activity_max_chars
            ),
            response_max_chars=(
                validate_message_size(response_max_chars)
                if response_max_chars is not None
                else base.response_max_chars
            ),
        )


def validate_update_rate(value: Any) -> float:
    """Return ``value`` as seconds or raise if outside 1-10 seconds."""

    number = _coerce_number(value, "update_rate_seconds", UPDATE_RATE_MIN, UPDATE_RATE_MAX)
    return float(number)


def validate_message_size(value: Any) -> int:
    number = _coerce_number(value, "response_max_chars", MESSAGE_SIZE_MIN, MESSAGE_SIZE_MAX)
    return int(number)


def validate_activity_budget(value: Any) -> int:
    number = _coerce_number(value, "activity_max_chars", ACTIVITY_BUDGET_MIN, ACTIVITY_BUDGET_MAX)
    return int(number)


def load_settings(env: Mapping[str, str] | None = None, **overrides: Any) -> StreamingSettings:
    """Build :class:`StreamingSettings` from defaults, environment, then explicit overrides."""

    settings = StreamingSettings()
    settings = _apply_env_overrides(settings, os.environ if env is None else env)
    if overrides:
        settings = _apply_overrides(settings, overrides, source="arguments")
    return settings


def _apply_env_overrides(settings: StreamingSettings, env: Mapping[str, str]) -> StreamingSettings:
    overrides: Dict[str, Any] = {}
    for env_name, field_name in _ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is not None:
            overrides[field_name] = value
    for env_name, field_name in _INT_ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is None:
            continue
        try:
            overrides[field_name] = int(value, 10)
        except ValueError:
            LOGGER.warning(
                "Environment override %s=%s is not a valid integer",
                env_name,
                value,
            )
    for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value is None:
            continue
        try:
            overrides[field_name] = float(value)
        except ValueError:
            LOGGER.warning(
                "Environment override %s=%s is not a valid float", env_name, value
            )
    if overrides:
        settings = _apply_overrides(settings, overrides, source="environment")
    return settings


def _apply_overrides(settings: StreamingSettings, overrides: Mapping[str, Any], *, source: str) -> StreamingSettings:
    known = {item.name for item in fields(StreamingSettings)}
    accepted = {key: value for key, value in overrides.items() if key in known}
    ignored = sorted(set(overrides) - known)
    if ignored:
        LOGGER.warning("Ignoring unknown settings from %s: %s", source, ", ".join(ignored))
    if not accepted:
        return settings
    LOGGER.debug("Applying settings overrides from %s: %s", source, ", ".join(sorted(accepted)))
    return replace(settings, **accepted)


def _coerce_number(value: Any, name: str, minimum: float, maximum: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidSettingError(name, value, minimum=minimum, maximum=maximum) from None
    if number != number or number < minimum or number > maximum:
        raise InvalidSettingError(name, value, minimum=minimum, maximum=maximum)
    return number


def _clamp(value: float, minimum: float, maximum: float) -> float:
    return max(minimum, min(maximum, value))
