"""
AX Element Resolver
===================

Turns what the user typed into an Element:

    element 3                       -> index into the current children
    element #12                     -> session ID from the last tree walk
    element window[Main]/button[OK] -> path from the current root

Ties always go to the first match in pre-order. No backtracking: a path
component picks the first matching child and the walk never revisits it.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from ax_config import ShellConfig
from ax_errors import IndexOutOfRange, InvalidSelector, NotFound
from ax_logging import get_logger
from ax_path import PathComponent, PathExpression, roles_match
from ax_registry import SessionIdRegistry
from ax_timeout import Deadline
from ax_tree import Element, ElementTree


@dataclass(frozen=True)
class IndexSelector:
    index: int


@dataclass(frozen=True)
class IdSelector:
    element_id: int


@dataclass(frozen=True)
class PathSelector:
    path: PathExpression


Selector = Union[IndexSelector, IdSelector, PathSelector]


def parse_selector(text: str) -> Selector:
    """Classify user input: 3 is an index, #3 a session ID, anything else a path."""
    text = (text or "").strip()
    if not text:
        raise InvalidSelector("Missing element selector")
    if text.startswith("#"):
        digits = text[1:]
        if not digits.isdigit():
            raise InvalidSelector(f"Invalid element ID '{text}'",
                                  hint="IDs look like #12. Use 'tree' to see them.")
        return IdSelector(int(digits))
    if text.isdigit():
        return IndexSelector(int(text))
    if text.lstrip("-").isdigit():
        raise InvalidSelector(f"Invalid index '{text}': must not be negative")
    return PathSelector(PathExpression.parse(text))


def component_matches(element: Element, component: PathComponent) -> bool:
    if not roles_match(element.role, component.role):
        return False
    if component.identifier is None:
        return True
    return element.title.lower() == component.identifier.lower()


class ElementResolver:
    """Resolution of selectors against the current tree."""

    def __init__(self, tree: ElementTree, config: Optional[ShellConfig] = None,
                 logger: Optional[logging.Logger] = None):
        self.tree = tree
        self.config = config or tree.config
        self.log = get_logger(logger, "resolver")

    def resolve_by_path(self, path: Union[str, PathExpression], root: Element) -> Element:
        if isinstance(path, str):
            path = PathExpression.parse(path)
        deadline = Deadline(self.config.path_timeout, name=f"resolve {path}")
        components = list(path)

        current = root
        # first component may name the root itself
        if component_matches(root, components[0]):
            components = components[1:]

        for component in components:
            self.tree.load_children(current, deadline=deadline)
            match = next((c for c in current.children if component_matches(c, component)), None)
            if match is None:
                raise NotFound(f"No element found for path component: {component}",
                               hint=f"Use 'elements' under {current.description} to see what is there.")
            current = match
        self.log.debug("Resolved %s -> %s", path, current.description)
        return current

    def resolve_by_index(self, index: int, candidates: Sequence[Element]) -> Element:
        if not 0 <= index < len(candidates):
            raise IndexOutOfRange(index, len(candidates),
                                  hint="Use 'elements' to list the children and their indices.")
        return candidates[index]

    def resolve_by_id(self, element_id: int, registry: SessionIdRegistry) -> Element:
        return registry.lookup(element_id)

    def resolve(self, selector: Union[str, Selector], root: Element,
                registry: SessionIdRegistry) -> Element:
        """Resolve any selector kind relative to `root`.

        An #ID is looked up after rebuilding the registry from `root`, so it
        refers to the numbering `tree` would print right now.
        """
        if isinstance(selector, str):
            selector = parse_selector(selector)
        if isinstance(selector, IndexSelector):
            self.tree.load_children(root)
            return self.resolve_by_index(selector.index, root.children)
        if isinstance(selector, IdSelector):
            registry.rebuild(root)
            return self.resolve_by_id(selector.element_id, registry)
        return self.resolve_by_path(selector.path, root)

    def find(self, root: Element, role: Optional[str] = None, title: Optional[str] = None):
        return self.tree.find_descendants(root, role=role, title=title)
