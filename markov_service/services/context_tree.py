"""
Context Tree (n-gram trie) backing the Markov model.

Nodes live in a single arena list owned by the tree and point at each
other by index: `parent` is an index, `children` maps token -> index.
This keeps upward and downward traversal O(1) without reference cycles.

Used for:
- Counting n-gram occurrences during ingestion
- Conditional probabilities of a token given its context
- Weighted selection of the next token during generation
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from markov_service.services.errors import NoCandidatesError
from markov_service.services.randgen import SeededRandom

ROOT_TOKEN = "ROOT"

NodeFilter = Callable[["ContextNode"], bool]


@dataclass
class ContextNode:
    """One token at one depth of the tree."""
    index: int
    token: str
    parent: Optional[int] = None
    count: int = 0
    hidden: bool = False  # created only to pad a short trailing window
    children: Dict[str, int] = field(default_factory=dict)

    def is_root(self) -> bool:
        return self.parent is None


class ContextTree:
    """
    Arena-backed trie of context nodes.

    Supports:
    - Insert / increment children
    - Cached (optionally hidden-filtered) child counts
    - Filtered and sorted child listings
    - Conditional probability and weighted child selection
    - Nested-dict export / import
    """

    def __init__(self):
        self.nodes: List[ContextNode] = [ContextNode(index=0, token=ROOT_TOKEN)]
        # (node index, ignore_hidden) -> summed child counts
        self._child_counts: Dict[Tuple[int, bool], int] = {}

    @property
    def root(self) -> ContextNode:
        return self.nodes[0]

    def __len__(self) -> int:
        return len(self.nodes)

    def node(self, index: int) -> ContextNode:
        return self.nodes[index]

    def parent(self, node: ContextNode) -> Optional[ContextNode]:
        return None if node.parent is None else self.nodes[node.parent]

    def child(self, node: ContextNode, token: str) -> Optional[ContextNode]:
        """Direct child of `node` with matching token, if any."""
        index = node.children.get(token)
        return None if index is None else self.nodes[index]

    def add_child(
        self,
        node: ContextNode,
        token: str,
        weight: int = 1,
        hidden: bool = False,
    ) -> ContextNode:
        """
        Insert or increment the child of `node` matching `token`.

        Padding insertions (hidden=True) never inflate a child that has real
        occurrences; a real insertion into a padding-only child turns it into
        a regular child whose count restarts from this occurrence.

        Args:
            node: Parent node
            token: Child token
            weight: Amount added to the child's count
            hidden: Whether this insertion only pads a short window

        Returns:
            The (possibly new) child node
        """
        self._child_counts.pop((node.index, True), None)
        self._child_counts.pop((node.index, False), None)

        child = self.child(node, token)
        if child is None:
            child = ContextNode(
                index=len(self.nodes),
                token=token,
                parent=node.index,
                count=weight,
                hidden=hidden,
            )
            self.nodes.append(child)
            node.children[token] = child.index
        elif hidden and not child.hidden:
            pass
        elif child.hidden and not hidden:
            child.hidden = False
            child.count = weight
        else:
            child.count += weight
        return child

    def child_count(self, node: ContextNode, ignore_hidden: bool = True) -> int:
        """Sum of child counts, cached until the next insertion under `node`."""
        key = (node.index, ignore_hidden)
        total = self._child_counts.get(key)
        if total is None:
            kids = self.children(node, include_hidden=not ignore_hidden)
            total = sum(c.count for c in kids)
            self._child_counts[key] = total
        return total

    def children(
        self,
        node: ContextNode,
        predicate: Optional[NodeFilter] = None,
        sort: bool = False,
        include_hidden: bool = True,
    ) -> List[ContextNode]:
        """
        List child nodes.

        Args:
            node: Parent node
            predicate: Optional test a child must pass
            sort: Order by count descending, ties by token descending
            include_hidden: Whether padding-only children are listed

        Returns:
            List of child nodes
        """
        kids = [self.nodes[i] for i in node.children.values()]
        if not include_hidden:
            kids = [c for c in kids if not c.hidden]
        if predicate is not None:
            kids = [c for c in kids if predicate(c)]
        if sort:
            kids.sort(key=lambda c: (c.count, c.token), reverse=True)
        return kids

    def conditional_probability(self, node: ContextNode) -> float:
        """
        count / parent's (non-hidden) child count.

        Hidden nodes carry no probability mass.
        """
        parent = self.parent(node)
        if parent is None:
            raise ValueError("conditional_probability() is undefined for the root")
        if node.hidden:
            return 0.0
        total = self.child_count(parent, ignore_hidden=True)
        return node.count / total if total else 0.0

    def select_weighted(
        self,
        node: ContextNode,
        rng: SeededRandom,
        predicate: Optional[NodeFilter] = None,
        temperature: Optional[float] = None,
        include_hidden: bool = False,
    ) -> ContextNode:
        """
        Sample one child in proportion to its count.

        Raises:
            NoCandidatesError: if no child passes the filter
        """
        kids = self.children(node, predicate=predicate, include_hidden=include_hidden)
        if not kids:
            all_kids = [c.token for c in self.children(node)]
            raise NoCandidatesError(
                f'No eligible child for "{node.token}" children={all_kids}'
            )
        dist = rng.weighted_distribution([c.count for c in kids], temperature)
        return kids[rng.sample_index(dist)]

    def ancestry(self, node: ContextNode) -> List[ContextNode]:
        """Nodes from depth 1 down to `node` (root excluded)."""
        chain = []
        while not node.is_root():
            chain.append(node)
            node = self.nodes[node.parent]
        chain.reverse()
        return chain

    def walk(self, tokens: Iterable[str]) -> Optional[ContextNode]:
        """Descend from the root through `tokens`; None on the first miss."""
        node = self.root
        for token in tokens:
            node = self.child(node, token)
            if node is None:
                return None
        return node

    # --- display / persistence ---

    def as_tree(self, node: Optional[ContextNode] = None, sort: bool = False) -> str:
        """Indented dump, one `'token' [count,p=...]` line per non-hidden node."""
        node = node or self.root
        if node.is_root():
            head = node.token
        else:
            head = f"'{_encode(node.token)}' [{node.count},p={self.conditional_probability(node):.3f}]"
        lines = [head]
        self._dump(node, 1, sort, lines)
        return "\n".join(lines)

    def _dump(self, node: ContextNode, depth: int, sort: bool, lines: List[str]):
        indent = "  " * depth
        for kid in self.children(node, sort=sort, include_hidden=False):
            prob = self.conditional_probability(kid)
            lines.append(f"{indent}'{_encode(kid.token)}' [{kid.count},p={prob:.3f}]")
            self._dump(kid, depth + 1, sort, lines)

    def to_dict(self, node: Optional[ContextNode] = None) -> Dict[str, Any]:
        node = node or self.root
        return {
            "token": node.token,
            "count": node.count,
            "hidden": node.hidden,
            "children": [self.to_dict(self.nodes[i]) for i in node.children.values()],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContextTree":
        tree = cls()
        tree._populate(tree.root, data)
        return tree

    def _populate(self, node: ContextNode, data: Dict[str, Any]):
        for child_data in data.get("children", []):
            child = self.add_child(
                node,
                child_data["token"],
                weight=child_data.get("count", 0),
                hidden=child_data.get("hidden", False),
            )
            self._populate(child, child_data)

    def get_stats(self) -> Dict:
        """Node counts for diagnostics."""
        hidden = sum(1 for n in self.nodes if n.hidden)
        return {
            "node_count": len(self.nodes),
            "hidden_count": hidden,
            "root_children": len(self.root.children),
        }


def _encode(token: str) -> str:
    return token.replace("\r", "\\r").replace("\n", "\\n").replace("\t", "\\t")
