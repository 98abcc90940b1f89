"""Pydantic models for API request/response serialization.

These models mirror the registrar dataclasses in ``virt.registrar.service``
and carry the camelCase field names used on the wire.
"""

from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------
# Every field is optional here; missing required fields are reported by the
# registrar as InvalidInput (400) rather than as a schema error.


class RegisterRequestBody(_WireModel):
    """Body of ``POST /api/register``."""

    label: Optional[str] = Field(None, validation_alias=AliasChoices("label", "domain"))
    tag: Optional[str] = Field(None, validation_alias=AliasChoices("tag", "tld"))
    target: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    keywords: list[str] = Field(default_factory=list)
    body_text: Optional[str] = Field(None, validation_alias=AliasChoices("bodyText", "body_text"))


class UpdateRequestBody(_WireModel):
    """Body of ``PUT /api/update``."""

    label: Optional[str] = Field(None, validation_alias=AliasChoices("label", "domain"))
    tag: Optional[str] = Field(None, validation_alias=AliasChoices("tag", "tld"))
    secret: Optional[str] = Field(None, validation_alias=AliasChoices("secret", "secretKey"))
    target: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None


class DeleteRequestBody(_WireModel):
    """Body of ``DELETE /api/delete``."""

    label: Optional[str] = Field(None, validation_alias=AliasChoices("label", "domain"))
    tag: Optional[str] = Field(None, validation_alias=AliasChoices("tag", "tld"))
    secret: Optional[str] = Field(None, validation_alias=AliasChoices("secret", "secretKey"))


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class CheckResponse(_WireModel):
    label: str
    tag: str
    available: bool
    message: str = ""


class RegisterResponse(_WireModel):
    success: bool = True
    name: str
    secret_key: str = Field(alias="secretKey")
    message: str = ""


class SiteSummaryResponse(_WireModel):
    """Record summary returned after an update."""

    label: str
    tag: str
    target: str
    title: str = ""
    description: str = ""
    last_accessed: str = Field("", alias="lastAccessed")


class UpdateResponse(_WireModel):
    success: bool = True
    message: str = ""
    site: SiteSummaryResponse


class DeleteResponse(_WireModel):
    success: bool = True
    message: str = ""


class LookupResponse(_WireModel):
    """Mirrors virt.registrar.service.LookupResult."""

    label: str
    tag: str
    target: str
    raw_base: str = Field(alias="rawBase")
    title: str = ""
    description: str = ""
    verified: bool = False
    created_at: str = Field("", alias="createdAt")
    last_accessed: str = Field("", alias="lastAccessed")


class SearchHitResponse(_WireModel):
    label: str
    tag: str
    title: str = ""
    description: str = ""


class ErrorResponse(_WireModel):
    error: str
    detail: str = ""
