"""
Upstream inputs to rule synthesis.

Entities and graph nodes are produced by the extraction stage and passed in
read-only.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ExtractedEntity(BaseModel):
    """
    A structured fact extracted from contract text.

    `type` is a free-text category ("Royalty Rate", "Payment Terms", ...);
    `properties` is an open mapping that may carry numeric `rate` or
    `percentage` values.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    type: str = Field(..., description="Free-text entity category")
    label: str = Field(..., description="Display name")
    properties: dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    def to_prompt_dict(self) -> dict[str, Any]:
        """Dump the entity as it is shown to the model."""
        return self.model_dump(mode="json")


class GraphNode(BaseModel):
    """A node of the contract knowledge graph, used for provenance linkage."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    label: str
    node_type: str | None = Field(default=None, alias="nodeType")
