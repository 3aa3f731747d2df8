"""Pydantic schemas for SBOM component lists supplied per product."""

from pydantic import BaseModel, Field, field_validator

# Upper bound on one product's component list per request.
MAX_COMPONENTS_PER_PRODUCT = 50_000


class ComponentIn(BaseModel):
    """One declared component. Blank names or versions are rejected."""

    model_config = {"extra": "ignore"}

    name: str = Field(..., min_length=1, max_length=1024)
    version: str = Field(..., min_length=1, max_length=255)
    ecosystem: str = Field(..., min_length=1, max_length=64, description="e.g. npm, PyPI, Maven")
    purl: str | None = Field(default=None, max_length=2048)

    @field_validator("name", "version", "ecosystem")
    @classmethod
    def not_blank(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("must be non-empty")
        return stripped


class ComponentsReplaceResponse(BaseModel):
    """Result of replacing a product's component list."""

    product_id: str
    component_count: int
