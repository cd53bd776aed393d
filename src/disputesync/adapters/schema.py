"""Pydantic models for provider token endpoints."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


class ProviderBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class TokenResponse(ProviderBaseModel):
    """OAuth2 token response; some providers camel-case the field names."""

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    token_type: str | None = None

    _normalize_refresh = field_validator("refresh_token", mode="before")(_blank_to_none)

    @field_validator("access_token", mode="before")
    @classmethod
    def _require_token(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            raise ValueError("access_token is blank")
        return value


class CamelTokenResponse(ProviderBaseModel):
    access_token: str = Field(alias="accessToken")
    refresh_token: str | None = Field(default=None, alias="refreshToken")
    expires_in: int | None = Field(default=None, alias="expiresIn")

    _normalize_refresh = field_validator("refresh_token", mode="before")(_blank_to_none)


def parse_token_response(payload: object) -> TokenResponse:
    """Validate either the snake_case or the camelCase token shape."""

    if isinstance(payload, dict) and "accessToken" in payload:
        camel = CamelTokenResponse.model_validate(payload)
        return TokenResponse(
            access_token=camel.access_token,
            refresh_token=camel.refresh_token,
            expires_in=camel.expires_in,
        )
    return TokenResponse.model_validate(payload)
