"""Wire models for the remote corpus search / grouping service."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

FILE_TYPE_LABELS = {
    1: "PNG",
    2: "JPG",
    3: "GIF",
    4: "WebP",
}


def file_type_label(code: int | None) -> str:
    """Display label for a corpus file type code."""
    if code is None:
        return "Unknown"
    return FILE_TYPE_LABELS.get(code, "Unknown")


class CorpusModel(BaseModel):
    """Service payloads use camelCase keys."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SimilarImage(CorpusModel):
    """Search hit; similarity is percentage-scaled (0-100)."""

    image_id: int | str = Field(alias="imageId")
    url: str
    md5: str | None = None
    similarity: float


class SearchSimilarData(CorpusModel):
    images: list[SimilarImage] = Field(default_factory=list)


class GroupImage(CorpusModel):
    id: int | str
    url: str
    file_type: int | None = Field(default=None, alias="fileType")
    md5: str | None = None
    create_time: str | None = Field(default=None, alias="createTime")

    @property
    def file_type_label(self) -> str:
        return file_type_label(self.file_type)


class SimilarGroup(CorpusModel):
    group_id: int | str = Field(alias="groupId")
    image_count: int = Field(alias="imageCount")
    images: list[GroupImage] = Field(default_factory=list)


class SimilarGroupsData(CorpusModel):
    groups: list[SimilarGroup] = Field(default_factory=list)
    group_count: int = Field(default=0, alias="groupCount")
    total_images: int = Field(default=0, alias="totalImages")
    threshold: float | None = None


class SearchSimilarEnvelope(CorpusModel):
    success: bool
    message: str | None = None
    data: SearchSimilarData | None = None


class SimilarGroupsEnvelope(CorpusModel):
    success: bool
    message: str | None = None
    data: SimilarGroupsData | None = None
