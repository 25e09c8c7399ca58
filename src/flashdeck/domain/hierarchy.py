"""
Deck hierarchy built from flat deck rows.

Pure functions over literal Deck lists so the tree can be tested without a store.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from .constants import COLLECTION_SEPARATOR
from .models import Deck


@dataclass
class DeckNode:
    deck: Deck
    depth: int = 0
    children: list["DeckNode"] = field(default_factory=list)

    @property
    def total_cards(self) -> int:
        return self.deck.card_count + sum(child.total_cards for child in self.children)


def build_hierarchy(decks: Iterable[Deck]) -> list[DeckNode]:
    """
    Link decks into a forest.

    Two passes: map every deck by id, then attach each to its parent.
    Decks whose parent is missing are promoted to roots. Input order is
    preserved among siblings.
    """
    decks = list(decks)
    nodes: dict[int, DeckNode] = {}
    for deck in decks:
        if deck.id is not None:
            nodes[deck.id] = DeckNode(deck=deck)

    roots: list[DeckNode] = []
    for deck in decks:
        if deck.id is None:
            continue
        node = nodes[deck.id]
        parent = nodes.get(deck.parent_id) if deck.parent_id is not None else None
        if parent is None or parent is node:
            roots.append(node)
        else:
            parent.children.append(node)

    for root in roots:
        _assign_depth(root, 0, set())
    return roots


def _assign_depth(node: DeckNode, depth: int, seen: set[int]) -> None:
    # Guards against parent cycles in corrupt data.
    if node.deck.id in seen:
        return
    seen.add(node.deck.id)
    node.depth = depth
    for child in node.children:
        _assign_depth(child, depth + 1, seen)


def iter_subtree(node: DeckNode) -> Iterator[DeckNode]:
    """Pre-order walk of a node and everything below it."""
    stack = [node]
    seen: set[int | None] = set()
    while stack:
        current = stack.pop()
        if current.deck.id in seen:
            continue
        seen.add(current.deck.id)
        yield current
        stack.extend(reversed(current.children))


def join_collection_path(parent_path: str | None, name: str) -> str:
    return f"{parent_path}{COLLECTION_SEPARATOR}{name}" if parent_path else name


def expected_collection_paths(roots: list[DeckNode]) -> dict[int, str]:
    """The collection path every deck should carry, keyed by deck id."""
    expected: dict[int, str] = {}

    def _walk(node: DeckNode, parent_path: str | None) -> None:
        if node.deck.id is None or node.deck.id in expected:
            return
        path = join_collection_path(parent_path, node.deck.name)
        expected[node.deck.id] = path
        for child in node.children:
            _walk(child, path)

    for root in roots:
        _walk(root, None)
    return expected
