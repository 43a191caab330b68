"""Request validation for use cases.

Use cases accept raw mappings (decoded JSON bodies) and validate them here
before any repository call.  Validation failures raise
``pydantic.ValidationError`` and never reach the store.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pod_marketplace.core.enums import ProductStatus

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class ProductCreateInput(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    seller_id: str = Field(min_length=1)
    design_id: str | None = None
    title: str = Field(min_length=1, max_length=200)
    price_cents: int = Field(gt=0)
    status: ProductStatus = ProductStatus.DRAFT

    def to_fields(self) -> dict[str, Any]:
        return self.model_dump()


class ProductUpdateInput(BaseModel):
    """Partial update; only fields present in the request are written."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    design_id: str | None = None
    title: str | None = Field(default=None, min_length=1, max_length=200)
    price_cents: int | None = Field(default=None, gt=0)
    status: ProductStatus | None = None

    @model_validator(mode="after")
    def _not_empty(self) -> ProductUpdateInput:
        if not self.model_fields_set:
            raise ValueError("at least one field must be provided")
        for name in ("title", "price_cents", "status"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def to_fields(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class UserRegisterInput(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=120)
    email: str = Field(pattern=_EMAIL_PATTERN, max_length=255)
    is_seller: bool = False

    def to_fields(self) -> dict[str, Any]:
        return self.model_dump()
