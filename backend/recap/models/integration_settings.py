from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator


IntegrationType = Literal["slack", "email"]
KNOWN_INTEGRATION_TYPES = ("slack", "email")

DEFAULT_EMAIL_SUBJECT = "Meeting Summary: {title}"


class SlackSettings(BaseModel):
    """Where to post summaries in Slack."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    channel_id: str = Field(min_length=1, alias="channelId")
    # Incoming webhook; when set it is used instead of the bot token
    webhook_url: Optional[str] = Field(default=None, alias="webhookUrl")


class EmailSettings(BaseModel):
    """Who receives summary emails and how the subject reads."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    recipients: List[str] = Field(min_length=1)
    # str.format template; {title} is the meeting title
    subject: str = Field(default=DEFAULT_EMAIL_SUBJECT)

    @field_validator("recipients", mode="before")
    @classmethod
    def _split_recipients(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [p.strip() for p in v.split(",") if p.strip()]
        return v

    @field_validator("recipients")
    @classmethod
    def _check_addresses(cls, v: List[str]) -> List[str]:
        cleaned = [addr.strip() for addr in v if addr and addr.strip()]
        if not cleaned:
            raise ValueError("at least one recipient is required")
        for addr in cleaned:
            if "@" not in addr:
                raise ValueError(f"invalid email address: {addr}")
        return cleaned


IntegrationSettings = Union[SlackSettings, EmailSettings]

_SETTINGS_BY_TYPE: Dict[str, type[BaseModel]] = {
    "slack": SlackSettings,
    "email": EmailSettings,
}


def parse_integration_settings(kind: str, raw: Dict[str, Any]) -> IntegrationSettings:
    """Validate a settings payload against the variant for ``kind``.

    Raises ValueError for unknown kinds and pydantic.ValidationError for
    payloads that do not fit the variant.
    """
    model = _SETTINGS_BY_TYPE.get(kind)
    if model is None:
        raise ValueError(f"Unknown integration type: {kind}")
    return model.model_validate(raw or {})  # type: ignore[return-value]


def normalize_integration_settings(kind: str, raw: Dict[str, Any]) -> Dict[str, Any]:
    """Validate and return the canonical dict stored in the JSON column."""
    return parse_integration_settings(kind, raw).model_dump()


def deep_merge_dict(dst: Dict[str, Any], src: Dict[str, Any]) -> Dict[str, Any]:
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            dst[k] = deep_merge_dict(dict(dst.get(k, {})), v)
        else:
            dst[k] = v
    return dst
