"""
FormulaNode expression trees.

A formula is a recursive tagged value describing how a royalty or fee amount
is computed. The `type` key selects the variant; every variant keeps any
extra keys the generator chose to add.

Trees arrive as untrusted JSON from the model, so `parse_formula` validates
the required fields of each known variant and bounds the nesting depth.
"""

from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from licenseiq.exceptions import FormulaValidationError


class FormulaNodeBase(BaseModel):
    """Common base: a mapping with a string `type` plus free-form keys."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str


class PercentageNode(FormulaNodeBase):
    type: Literal["percentage"] = "percentage"
    rate: float
    base: str | None = None


class FixedNode(FormulaNodeBase):
    type: Literal["fixed"] = "fixed"
    amount: float
    currency: str = "USD"


class Tier(BaseModel):
    """One band of a tiered rate; `max=None` means unbounded."""

    model_config = ConfigDict(extra="allow")

    min: float = 0.0
    max: float | None = None
    rate: float


class TierNode(FormulaNodeBase):
    type: Literal["tier"] = "tier"
    tiers: list[Tier] = Field(..., min_length=1)


class ConditionalNode(FormulaNodeBase):
    type: Literal["conditional"] = "conditional"
    condition: dict[str, Any]
    true_formula: "FormulaNode" = Field(..., alias="trueFormula")
    false_formula: "FormulaNode | None" = Field(default=None, alias="falseFormula")


class ArithmeticNode(FormulaNodeBase):
    type: Literal["arithmetic"] = "arithmetic"
    operator: str
    operands: list["FormulaNode"] = Field(..., min_length=1)


class MinimumNode(FormulaNodeBase):
    type: Literal["minimum"] = "minimum"
    amount: float


class MaximumNode(FormulaNodeBase):
    type: Literal["maximum"] = "maximum"
    amount: float


class GenericNode(FormulaNodeBase):
    """Any node type the model invented that has no dedicated variant."""


FormulaNode = Union[
    PercentageNode,
    FixedNode,
    TierNode,
    ConditionalNode,
    ArithmeticNode,
    MinimumNode,
    MaximumNode,
    GenericNode,
]

NODE_TYPES: dict[str, type[FormulaNodeBase]] = {
    "percentage": PercentageNode,
    "fixed": FixedNode,
    "tier": TierNode,
    "conditional": ConditionalNode,
    "arithmetic": ArithmeticNode,
    "minimum": MinimumNode,
    "maximum": MaximumNode,
}

ConditionalNode.model_rebuild()
ArithmeticNode.model_rebuild()

DEFAULT_MAX_DEPTH = 32


def parse_formula(
    data: Any,
    max_depth: int = DEFAULT_MAX_DEPTH,
    _depth: int = 1,
) -> FormulaNode:
    """
    Build a typed formula tree from JSON data.

    Raises FormulaValidationError when a node is not a mapping, lacks a
    string `type`, misses a field its variant requires, or the tree is
    nested deeper than `max_depth`.
    """
    if _depth > max_depth:
        raise FormulaValidationError(f"Formula nested deeper than {max_depth} levels")
    if not isinstance(data, dict):
        raise FormulaValidationError(
            f"Formula node must be an object, got {type(data).__name__}"
        )
    node_type = data.get("type")
    if not isinstance(node_type, str) or not node_type:
        raise FormulaValidationError("Formula node is missing a string 'type'")

    values = dict(data)
    if node_type == "conditional":
        if "trueFormula" in values:
            values["trueFormula"] = parse_formula(values["trueFormula"], max_depth, _depth + 1)
        if values.get("falseFormula") is not None:
            values["falseFormula"] = parse_formula(values["falseFormula"], max_depth, _depth + 1)
    elif node_type == "arithmetic" and isinstance(values.get("operands"), list):
        values["operands"] = [
            parse_formula(operand, max_depth, _depth + 1) for operand in values["operands"]
        ]

    node_cls = NODE_TYPES.get(node_type, GenericNode)
    try:
        return node_cls.model_validate(values)
    except ValidationError as e:
        raise FormulaValidationError(
            f"Invalid '{node_type}' formula node: {e.error_count()} error(s)", e
        ) from e


def formula_to_json(node: FormulaNodeBase) -> dict[str, Any]:
    """Dump a formula tree back to the camelCase JSON shape it came from."""
    return node.model_dump(mode="json", by_alias=True, exclude_unset=True)

