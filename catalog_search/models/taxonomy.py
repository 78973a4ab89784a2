"""Pydantic models for the human-facing taxonomy."""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field


class TaxonomyNode(BaseModel):
    """Node of the navigation taxonomy.

    Attributes:
        code: Unique taxonomy code (e.g. LUM_CEIL for Luminaires > Ceiling)
        parent_code: Parent node code, None for roots
        level: Depth (0 = root)
        name: Display name
        display_order: Ordering among siblings
        icon: Optional icon identifier
        active: Inactive nodes are hidden from the tree
    """

    code: str = Field(..., min_length=1)
    parent_code: Optional[str] = None
    level: int = Field(default=0, ge=0)
    name: str = ""
    display_order: int = 0
    icon: Optional[str] = None
    active: bool = True

    model_config = {"frozen": True}


@dataclass(frozen=True)
class TaxonomyCount:
    """Taxonomy node with the number of member products."""
    node: TaxonomyNode
    product_count: int


def ancestors(code: str, nodes: Dict[str, TaxonomyNode]) -> List[str]:
    """Get ancestor codes of a node, nearest first.

    Unknown codes and parent cycles stop the walk.
    """
    result: List[str] = []
    seen = {code}
    node = nodes.get(code)
    while node is not None and node.parent_code and node.parent_code not in seen:
        result.append(node.parent_code)
        seen.add(node.parent_code)
        node = nodes.get(node.parent_code)
    return result


def is_lineage(code_a: str, code_b: str, nodes: Dict[str, TaxonomyNode]) -> bool:
    """True if one code is an ancestor of the other."""
    return code_a in ancestors(code_b, nodes) or code_b in ancestors(code_a, nodes)


def order_tree(nodes: Iterable[TaxonomyNode]) -> List[TaxonomyNode]:
    """Order nodes by level, then display order, then code."""
    return sorted(nodes, key=lambda n: (n.level, n.display_order, n.code))
