"""Request schemas for recommendation tracking."""

from pydantic import BaseModel, ConfigDict, Field


class InteractionCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(alias="productId")
    interaction_type: str = Field(alias="interactionType")
    recommendation_type: str | None = Field(default=None, alias="recommendationType")
    position: int | None = Field(default=None, ge=0)
    metadata: dict = Field(default_factory=dict)
