from __future__ import annotations

from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class UploadCompleted(BaseModel):
    """Summary of one finished upload, returned to the caller and sent to DAS."""

    model_config = ConfigDict(frozen=True)

    source: Optional[str] = Field(
        default=None,
        description="Declared name of the uploaded file; null when no file part was sent.",
    )
    properties: Dict[str, str] = Field(
        default_factory=dict,
        description="Form fields sent alongside the file, keyed by field name.",
    )

    @classmethod
    def builder(cls) -> "UploadCompletedBuilder":
        return UploadCompletedBuilder()


class UploadCompletedBuilder:
    """Collects the source and properties of an upload while its body streams in."""

    def __init__(self) -> None:
        self._source: Optional[str] = None
        self._properties: Dict[str, str] = {}

    def set_source(self, source: Optional[str]) -> "UploadCompletedBuilder":
        self._source = source
        return self

    def set_property(self, key: str, value: str) -> "UploadCompletedBuilder":
        self._properties[key] = value
        return self

    def build(self) -> UploadCompleted:
        return UploadCompleted(source=self._source, properties=dict(self._properties))
