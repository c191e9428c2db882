from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


MediaCategoryLiteral = Literal["hero", "primary", "photos", "videos", "documents", "archive"]
BulkOperationKindLiteral = Literal["delete", "recategorize", "move", "add_tag"]


class _GatewayBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class FolderRead(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    name: str = ""
    description: str | None = None


class MediaUploadForm(_GatewayBody):
    description: str = ""
    category: MediaCategoryLiteral = "photos"
    date_taken: str = Field(default="", alias="dateTaken")
    photographer: str = ""
    is_public: bool = Field(default=True, alias="isPublic")
    folder_id: str | None = Field(default=None, alias="folderId")

    def to_form(self) -> dict[str, str]:
        form: dict[str, str] = {}
        for key, value in self.to_wire().items():
            if isinstance(value, bool):
                form[key] = "true" if value else "false"
            else:
                form[key] = str(value)
        return form


class MediaPatchRequest(_GatewayBody):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    description: str | None = None
    category: MediaCategoryLiteral | None = None
    date_taken: str | None = Field(default=None, alias="dateTaken")
    photographer: str | None = None
    is_public: bool | None = Field(default=None, alias="isPublic")
    tags: list[str] | None = None


class MediaMoveRequest(_GatewayBody):
    folder_id: str = Field(alias="folderId", min_length=1)


class BulkPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    category: str | None = None
    folder_id: str | None = Field(default=None, alias="folderId")
    tag: str | None = Field(default=None, max_length=64)

    @field_validator("tag")
    @classmethod
    def _clean_tag(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = " ".join(str(value).split())
        return cleaned or None

    @field_validator("folder_id", mode="before")
    @classmethod
    def _coerce_folder_id(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None
