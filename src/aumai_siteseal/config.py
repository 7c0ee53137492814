"""Explicit, validated configuration for aumai-siteseal."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from aumai_siteseal.errors import IOFailure, SiteSealError
from aumai_siteseal.models import is_canonical_path


class SiteSealConfig(BaseModel):
    """Every recognised option, validated once at startup.

    Unknown keys are rejected so that a misspelt option fails loudly instead
    of silently falling back to a default.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    manifest_name: str = "integrity-manifest.json"
    signature_suffix: str = ".sig"
    index_document: str = "index.html"
    not_found_document: str | None = "404.html"
    cache_verified_manifest: bool = True
    cache_size: int = Field(default=4, ge=1)
    hash_workers: int = Field(default=1, ge=1)
    file_mode: int = Field(default=0o644, ge=0, le=0o777)
    dir_mode: int = Field(default=0o755, ge=0, le=0o777)

    @field_validator("manifest_name", "index_document")
    @classmethod
    def _plain_name(cls, value: str) -> str:
        if not value or "/" in value or "\\" in value or value in {".", ".."}:
            raise ValueError(f"must be a plain file name: {value!r}")
        return value

    @field_validator("signature_suffix")
    @classmethod
    def _suffix(cls, value: str) -> str:
        if not value or "/" in value or "\\" in value:
            raise ValueError(f"invalid signature suffix: {value!r}")
        return value

    @field_validator("not_found_document")
    @classmethod
    def _not_found(cls, value: str | None) -> str | None:
        if value is not None and not is_canonical_path(value):
            raise ValueError(f"not_found_document must be a relative path: {value!r}")
        return value

    @field_validator("file_mode")
    @classmethod
    def _not_executable(cls, value: int) -> int:
        if value & 0o111:
            raise ValueError("file_mode must not grant execute permission")
        return value

    @property
    def signature_name(self) -> str:
        return self.manifest_name + self.signature_suffix


def load_config(path: str | Path | None = None) -> SiteSealConfig:
    """Load a :class:`SiteSealConfig` from a JSON file, or return the defaults."""
    if path is None:
        return SiteSealConfig()
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise IOFailure(f"Cannot read config file {path}: {exc}", str(path)) from exc
    try:
        return SiteSealConfig.model_validate_json(raw)
    except ValidationError as exc:
        raise SiteSealError(f"Invalid configuration in {path}: {exc}") from exc


__all__ = ["SiteSealConfig", "load_config"]
