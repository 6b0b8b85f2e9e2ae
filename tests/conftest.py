"""
Shared fixtures for the BIM classifier tests.
"""

from decimal import Decimal

import pytest

from bim_classifier.llm.schemas import ClassificationSuggestion, DerivedItemSuggestion
from bim_classifier.models import Element

WALL_KEY = ("Wall", "Basic", "Generic", "Concrete", "Interior")
PIPE_KEY = ("Pipe", "Copper", "15mm", "Copper", "MEP")


def make_element(element_id, key, **kwargs):
    category, family, type_, material, location_type = key
    return Element(
        id=element_id,
        category=category,
        family=family,
        type=type_,
        material=material,
        location_type=location_type,
        **kwargs,
    )


@pytest.fixture
def wall_pipe_elements():
    """Elements 1-2 are walls, 3-5 are copper pipes."""
    return [
        make_element(1, WALL_KEY, length_mm=Decimal("3000"), height_mm=Decimal("2700")),
        make_element(2, WALL_KEY, length_mm=Decimal("4500"), height_mm=None),
        make_element(3, PIPE_KEY, length_mm=Decimal("1200"), diameter_mm=Decimal("15")),
        make_element(4, PIPE_KEY, length_mm=Decimal("800"), diameter_mm=Decimal("15")),
        make_element(
            5,
            PIPE_KEY,
            length_mm=None,
            diameter_mm=Decimal("15"),
            spec="Type L copper",
            metadata={"System": "Domestic Cold Water"},
        ),
    ]


@pytest.fixture
def suggestion():
    return ClassificationSuggestion(
        suggested_commodity_code="22-11-16",
        suggested_pricing_code="P-CU-015",
        derived_items=[
            DerivedItemSuggestion(
                derived_commodity_code="22-07-19",
                quantity_formula="length_mm / 1000",
                quantity_unit="m",
            )
        ],
        reasoning_summary="Copper domestic water pipe, 15mm nominal diameter.",
    )


@pytest.fixture
def element_factory():
    """make_element(id, (category, family, type, material, location_type), **fields)"""
    return make_element
