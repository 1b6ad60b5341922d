"""Request schemas for products, comments and views."""

from pydantic import BaseModel, ConfigDict, Field


class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    tagline: str | None = Field(default=None, max_length=300)
    description: str | None = None
    category: str | None = Field(default=None, max_length=100)
    tags: list[str] = Field(default_factory=list)
    status: str = "Draft"


class ProductUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    tagline: str | None = Field(default=None, max_length=300)
    description: str | None = None
    category: str | None = Field(default=None, max_length=100)
    tags: list[str] | None = None
    status: str | None = None


class CommentCreate(BaseModel):
    """Length limits are enforced by the comment service after trimming."""

    model_config = ConfigDict(populate_by_name=True)

    content: str
    parent_id: str | None = Field(default=None, alias="parentId")


class CommentUpdate(BaseModel):
    content: str


class ViewCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str | None = Field(default=None, alias="sessionId", max_length=100)
    source: str | None = None
    referrer: str | None = Field(default=None, max_length=500)
    country: str | None = Field(default=None, max_length=100)
    device: str | None = None
    view_duration: int | None = Field(default=None, alias="viewDuration", ge=0)
    recommendation_type: str | None = Field(default=None, alias="recommendationType")
