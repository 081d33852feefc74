"""Parent/child links between cards.

A card's parent is the card one full move earlier on the same line whose
answer was actually played: for the path ``e4 e5 Nf3 Nc6`` that is the card
for ``e4 e5`` answering ``Nf3``. ``parent`` pointers are authoritative;
``children`` and ``descendants`` are caches that ``rebuild_relations``
recomputes from them.
"""

from typing import Dict, List, Optional

from cardgen.core.models import Card


def find_parent(cards: List[Card], moves: List[str], exclude_id: Optional[str] = None) -> Optional[Card]:
    if len(moves) < 2:
        return None  # first move of either side has no parent
    parent_path = moves[:-2]
    played = moves[-2]
    for c in cards:
        if c.id == exclude_id:
            continue
        if c.fields.move_sequence == parent_path and c.fields.answer == played:
            return c
    return None


def register_child(parent: Card, child_id: str) -> bool:
    """Add ``child_id`` to the parent's children. Returns False if already there."""
    if child_id in parent.fields.children:
        return False
    parent.fields.children.append(child_id)
    return True


def unregister_child(parent: Card, child_id: str) -> bool:
    if child_id not in parent.fields.children:
        return False
    parent.fields.children = [c for c in parent.fields.children if c != child_id]
    return True


def rebuild_relations(cards: List[Card]) -> Dict[str, List[str]]:
    """Recompute ``children`` and ``descendants`` for the whole collection.

    Returns the descendants map. Dangling parent ids are ignored; cycles are
    cut by the visited set.
    """
    children: Dict[str, List[str]] = {}
    for c in cards:
        p = c.fields.parent
        if p:
            children.setdefault(p, []).append(c.id)
    for c in cards:
        c.fields.children = children.get(c.id, [])

    descendants: Dict[str, List[str]] = {}
    for c in cards:
        out: List[str] = []
        seen = {c.id}
        stack = list(reversed(c.fields.children))
        while stack:
            cid = stack.pop()
            if cid in seen:
                continue
            seen.add(cid)
            out.append(cid)
            stack.extend(reversed(children.get(cid, [])))
        descendants[c.id] = out
        c.fields.extra["descendants"] = out
    return descendants
