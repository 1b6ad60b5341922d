"""Request schemas for projects."""

from pydantic import BaseModel, ConfigDict, Field


class ProjectCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1, max_length=200)
    description: str | None = None
    category: str | None = Field(default=None, max_length=100)
    tags: list[str] = Field(default_factory=list)
    project_url: str | None = Field(default=None, alias="projectUrl", max_length=500)
    is_public: bool = Field(default=True, alias="isPublic")


class ProjectUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    category: str | None = Field(default=None, max_length=100)
    tags: list[str] | None = None
    project_url: str | None = Field(default=None, alias="projectUrl", max_length=500)
    is_public: bool | None = Field(default=None, alias="isPublic")


class ShareEvent(BaseModel):
    platform: str | None = Field(default=None, max_length=50)


class ClickEvent(BaseModel):
    target: str | None = Field(default=None, max_length=50)
