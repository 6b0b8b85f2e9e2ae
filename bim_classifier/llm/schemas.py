"""
Pydantic schemas for classification suggestions.

The LLM must answer with a JSON document matching ``ClassificationSuggestion``
exactly. Parsing is strict: unknown fields and wrong types are rejected and
never repaired.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DerivedItemSuggestion(BaseModel):
    """Schema for a derived line item (e.g. insulation on a pipe run)."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    derived_commodity_code: str = Field(
        description="Commodity code of the derived item", min_length=1
    )
    derived_pricing_code: Optional[str] = Field(
        description="Pricing code of the derived item", default=None
    )
    quantity_formula: str = Field(
        description="Formula computing the derived quantity from the element, e.g. 'length_mm / 1000'",
        min_length=1,
    )
    quantity_unit: str = Field(description="Unit of the derived quantity", min_length=1)


class ClassificationSuggestion(BaseModel):
    """Schema for an advisory classification of one pattern."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    suggested_commodity_code: Optional[str] = Field(
        description="Suggested commodity code for the pattern", default=None
    )
    suggested_pricing_code: Optional[str] = Field(
        description="Suggested pricing code for the pattern", default=None
    )
    derived_items: List[DerivedItemSuggestion] = Field(
        description="Derived line items implied by the pattern", default_factory=list
    )
    reasoning_summary: str = Field(
        description="Short explanation of why the codes were suggested", min_length=1
    )
    advisory: Literal[True] = Field(
        description="Suggestions are advisory and require human review", default=True
    )

    @field_validator("reasoning_summary")
    @classmethod
    def reasoning_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("reasoning_summary cannot be blank")
        return value

    @model_validator(mode="after")
    def requires_a_code(self) -> "ClassificationSuggestion":
        if not (self.suggested_commodity_code or self.suggested_pricing_code):
            raise ValueError(
                "at least one of suggested_commodity_code or suggested_pricing_code is required"
            )
        return self
