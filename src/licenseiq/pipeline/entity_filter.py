"""
Stage 1: Entity Filter

Selects the extracted entities that plausibly describe a royalty, payment or
fee structure.
"""

from typing import Iterable

from licenseiq.models.entity import ExtractedEntity

ROYALTY_TYPE_KEYWORDS = ("royalty", "payment", "fee")
RATE_PROPERTY_KEYS = ("rate", "percentage")


def is_royalty_entity(entity: ExtractedEntity) -> bool:
    """True if the type names a royalty/payment/fee or a rate key is present."""
    entity_type = entity.type.lower()
    if any(keyword in entity_type for keyword in ROYALTY_TYPE_KEYWORDS):
        return True
    # Key presence only: a rate of 0 or null still marks a payment term
    return any(key in entity.properties for key in RATE_PROPERTY_KEYS)


def filter_royalty_entities(entities: Iterable[ExtractedEntity]) -> list[ExtractedEntity]:
    """Return the royalty-related entities, preserving input order."""
    return [entity for entity in entities if is_royalty_entity(entity)]
