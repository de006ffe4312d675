"""
AX Element Tree
===============

Lazily materialized mirror of one window's accessibility tree.

ElementTree is an arena: it owns every Element created under one root, and
elements refer to their parent by slot (`parent_id`), never by reference.
Provider reads run on worker threads (ax_timeout) and return plain values;
Elements are only created and attached here, on the calling thread.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional, Tuple

from ax_config import ShellConfig
from ax_errors import AXShellError, OperationTimeout, ProviderError, CODE_INVALID_ELEMENT_STATE
from ax_logging import get_logger
from ax_path import PathComponent, PathExpression, friendly_role, roles_match
from ax_timeout import Deadline, run_with_timeout, run_with_timeout_and_retry
from ax_values import AttributeValue, StringValue, normalize_value

# Attributes read to describe a node
ATTR = {
    "role": "AXRole",
    "subrole": "AXSubrole",
    "title": "AXTitle",
    "role_description": "AXRoleDescription",
    "children": "AXChildren",
    "value": "AXValue",
}

UNKNOWN_ROLE = "unknown"


@dataclass(eq=False)
class Element:
    """One node. Equality is identity; children are filled by ElementTree.load_children."""

    role: str = UNKNOWN_ROLE
    subrole: str = ""
    title: str = ""
    role_description: str = ""
    has_children_hint: bool = False
    handle: Any = None
    node_id: int = -1
    parent_id: Optional[int] = None
    children: List["Element"] = field(default_factory=list, repr=False)

    @property
    def synthetic(self) -> bool:
        return self.handle is None

    @property
    def display_role(self) -> str:
        role = friendly_role(self.role) or UNKNOWN_ROLE
        if self.subrole:
            role += ":" + friendly_role(self.subrole)
        return role

    @property
    def display_title(self) -> str:
        if self.title:
            if self.role_description and self.title != self.role_description:
                return f"{self.title} ({self.role_description})"
            return self.title
        if self.role_description:
            return self.role_description
        return "(no title)"

    @property
    def description(self) -> str:
        text = friendly_role(self.role) or UNKNOWN_ROLE
        if self.subrole:
            text += ":" + friendly_role(self.subrole)
        if self.title:
            text += f"[{self.title}]"
        if self.role_description:
            text += f" ({self.role_description})"
        return text

    def __str__(self):
        return self.description


@dataclass(frozen=True)
class NodeInfo:
    """Plain description of a handle, computed on a worker."""

    handle: Any
    role: str = UNKNOWN_ROLE
    subrole: str = ""
    title: str = ""
    role_description: str = ""
    has_children_hint: bool = False


@dataclass(frozen=True)
class TreeRow:
    """One line of a pre-order walk. `branches` holds the is-last flag of every level."""

    element: Element
    branches: Tuple[bool, ...]

    @property
    def depth(self) -> int:
        return len(self.branches) - 1

    @property
    def unreachable_children(self) -> bool:
        return self.element.has_children_hint and not self.element.children


def _text(value) -> str:
    return str(value) if isinstance(value, str) else ""


def describe_handle(provider, handle, logger: Optional[logging.Logger] = None,
                    strict: bool = False) -> NodeInfo:
    """Read role, subrole, title, role description and child count.

    Each attribute is read independently; one failure leaves that field empty.
    With strict=True a failure to read the role propagates instead.
    """
    log = get_logger(logger)
    fields = {}
    for key in ("role", "subrole", "title", "role_description"):
        try:
            fields[key] = _text(provider.get_element_attribute_value(handle, ATTR[key]))
        except AXShellError as e:
            if strict and key == "role":
                raise
            log.debug("Reading %s failed: %s", ATTR[key], e)
            fields[key] = ""
    try:
        has_children = provider.get_element_child_count(handle) > 0
    except AXShellError as e:
        log.debug("Counting AXChildren failed: %s", e)
        has_children = False
    return NodeInfo(
        handle=handle,
        role=fields["role"] or UNKNOWN_ROLE,
        subrole=fields["subrole"],
        title=fields["title"],
        role_description=fields["role_description"],
        has_children_hint=has_children,
    )


class ElementTree:
    """Arena of Elements under one root, plus the bounded provider reads on them."""

    def __init__(self, provider, config: Optional[ShellConfig] = None,
                 logger: Optional[logging.Logger] = None):
        self.provider = provider
        self.config = config or ShellConfig()
        self.log = get_logger(logger, "tree")
        self._nodes: List[Element] = []
        self.root: Optional[Element] = None

    def __len__(self):
        return len(self._nodes)

    def __contains__(self, element):
        return (isinstance(element, Element) and 0 <= element.node_id < len(self._nodes)
                and self._nodes[element.node_id] is element)

    # ---- construction ----
    def _add(self, info: NodeInfo, parent: Optional[Element]) -> Element:
        element = Element(
            role=info.role, subrole=info.subrole, title=info.title,
            role_description=info.role_description, has_children_hint=info.has_children_hint,
            handle=info.handle, node_id=len(self._nodes),
            parent_id=parent.node_id if parent is not None else None,
        )
        self._nodes.append(element)
        if parent is not None:
            parent.children.append(element)
        elif self.root is None:
            self.root = element
        return element

    def create_root(self, handle) -> Element:
        """Describe `handle` (timeout + retry) and make it the root."""
        cfg = self.config
        info = run_with_timeout_and_retry(
            cfg.call_timeout, cfg.retry_attempts, cfg.retry_delay,
            lambda: describe_handle(self.provider, handle, self.log, strict=True),
            name="describe root", logger=self.log,
            retry_on=(OperationTimeout, ProviderError),
        )
        self._nodes.clear()
        self.root = None
        return self._add(info, None)

    def synthetic(self, role: str, title: str = "", parent: Optional[Element] = None,
                  role_description: str = "") -> Element:
        """Element with no provider handle. Becomes the root when the tree is empty."""
        info = NodeInfo(handle=None, role=role, title=title, role_description=role_description)
        return self._add(info, parent)

    # ---- children ----
    def _child_handles(self, handle) -> List[Any]:
        return list(self.provider.get_element_children(handle) or [])

    def load_children(self, element: Element, timeout: Optional[float] = None,
                      deadline: Optional[Deadline] = None) -> bool:
        """Materialize direct children once. Returns False if the handles could not be read.

        `timeout` bounds the handle fetch only. Each child is then described
        under its own children_timeout; a child that fails or times out is
        logged and skipped. With a `deadline`, OperationTimeout propagates once
        it expires and nothing is attached.
        No-op for synthetic elements and elements that already have children.
        """
        if element.children or element.synthetic:
            return True
        timeout = timeout or self._child_timeout(deadline)
        try:
            handles = run_with_timeout(timeout, lambda: self._child_handles(element.handle),
                                       name="load children")
        except (OperationTimeout, ProviderError) as e:
            self.log.warning("Could not load children of %s: %s", element.description, e)
            return False

        infos = []
        for i, handle in enumerate(handles):
            try:
                info = run_with_timeout(self._child_timeout(deadline),
                                        lambda h=handle: describe_handle(self.provider, h, self.log),
                                        name=f"describe child {i}")
            except (OperationTimeout, ProviderError) as e:
                if deadline is not None:
                    deadline.check()
                self.log.warning("Skipping child %d of %s: %s", i, element.description, e)
                continue
            infos.append(info)

        if element.children:
            return True
        for info in infos:
            self._add(info, element)
        if handles:
            element.has_children_hint = True
        return True

    # ---- walks ----
    def walk(self, root: Optional[Element] = None, deadline: Optional[Deadline] = None) -> Iterator[TreeRow]:
        """Pre-order walk from `root`, loading children lazily.

        Raises OperationTimeout from `deadline` between nodes.
        """
        root = root or self.root
        if root is None:
            return
        stack = [(root, (True,))]
        while stack:
            element, branches = stack.pop()
            if deadline is not None:
                deadline.check()
            self.load_children(element, deadline=deadline)
            yield TreeRow(element, branches)
            count = len(element.children)
            for i in range(count - 1, -1, -1):
                stack.append((element.children[i], branches + (i == count - 1,)))

    def _child_timeout(self, deadline: Optional[Deadline]) -> float:
        if deadline is None:
            return self.config.children_timeout
        return deadline.bound(self.config.children_timeout)

    def find_descendants(self, root: Optional[Element] = None, role: Optional[str] = None,
                         title: Optional[str] = None, deadline: Optional[Deadline] = None) -> List[Element]:
        """Root and descendants matching role (or subrole) and title / role description."""
        if deadline is None:
            deadline = Deadline(self.config.find_timeout, name="find")
        needle = title.lower() if title else None
        found = []
        for row in self.walk(root, deadline):
            element = row.element
            if role and not (roles_match(element.role, role) or roles_match(element.subrole, role)):
                continue
            if needle and needle not in element.title.lower() \
                    and needle not in element.role_description.lower():
                continue
            found.append(element)
        return found

    # ---- arena navigation ----
    def parent_of(self, element: Element) -> Optional[Element]:
        if element.parent_id is None:
            return None
        return self._nodes[element.parent_id]

    def ancestors(self, element: Element) -> List[Element]:
        """Parent first, root last."""
        chain = []
        parent = self.parent_of(element)
        while parent is not None:
            chain.append(parent)
            parent = self.parent_of(parent)
        return chain

    def path_to(self, element: Element) -> PathExpression:
        """Path expression from the root down to `element`."""
        chain = list(reversed(self.ancestors(element))) + [element]
        return PathExpression(tuple(
            PathComponent(friendly_role(e.role) or UNKNOWN_ROLE, e.title or None) for e in chain
        ))

    # ---- attributes and actions ----
    def attributes(self, element: Element) -> List[Tuple[str, AttributeValue]]:
        """All readable attributes of `element`, skipping the ones that fail."""
        if element.synthetic:
            pairs = [("AXRole", element.role), ("AXSubrole", element.subrole),
                     ("AXTitle", element.title), ("AXRoleDescription", element.role_description)]
            return [(name, StringValue(value)) for name, value in pairs if value]

        cfg = self.config
        names = run_with_timeout_and_retry(
            cfg.call_timeout, cfg.retry_attempts, cfg.retry_delay,
            lambda: self.provider.get_element_attribute_names(element.handle),
            name="attribute names", logger=self.log,
            retry_on=(OperationTimeout, ProviderError),
        )
        values = []
        for name in names:
            try:
                raw = run_with_timeout(
                    cfg.call_timeout,
                    lambda n=name: self.provider.get_element_attribute_value(element.handle, n),
                    name=f"read {name}",
                )
            except (OperationTimeout, ProviderError) as e:
                self.log.warning("Skipping attribute %s of %s: %s", name, element.description, e)
                continue
            values.append((name, normalize_value(raw)))
        return values

    def actions(self, element: Element) -> List[str]:
        if element.synthetic:
            return []
        cfg = self.config
        return run_with_timeout_and_retry(
            cfg.call_timeout, cfg.retry_attempts, cfg.retry_delay,
            lambda: self.provider.get_element_action_names(element.handle),
            name="action names", logger=self.log,
            retry_on=(OperationTimeout, ProviderError),
        )

    def _require_handle(self, element: Element, what: str):
        if element.synthetic:
            raise ProviderError(f"Cannot {what} {element.description}: element is not backed by the application",
                                hint="Use 'refresh' to reload the window, then select a real element.",
                                code=CODE_INVALID_ELEMENT_STATE)

    def perform_action(self, element: Element, action: str = "AXPress") -> None:
        """Single attempt: after a timeout the action may or may not have happened."""
        self._require_handle(element, "perform an action on")
        run_with_timeout(self.config.action_timeout,
                         lambda: self.provider.perform_action(element.handle, action),
                         name=action)
        self.log.info("Performed %s on %s", action, element.description)

    def set_value(self, element: Element, text: str) -> None:
        self._require_handle(element, "set the value of")
        run_with_timeout(self.config.action_timeout,
                         lambda: self.provider.set_element_attribute_value(element.handle, ATTR["value"], text),
                         name="set value")
        self.log.info("Set AXValue of %s", element.description)

    def focus(self, element: Element) -> None:
        """Activate the element's application and give it keyboard focus."""
        self._require_handle(element, "focus")
        run_with_timeout(self.config.action_timeout,
                         lambda: self.provider.focus_element(element.handle),
                         name="focus element")
        self.log.info("Focused %s", element.description)

    def type_text(self, text: str) -> None:
        run_with_timeout(self.config.action_timeout, lambda: self.provider.type_text(text), name="type text")
