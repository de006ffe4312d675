"""
In-memory AccessibilityProvider.

Serves a hand-built tree of MemoryNode objects through the same interface as
MacAXProvider. Used by `ax-shell --demo` and by the tests, which also use the
latency / failure injection and call counters to exercise the timeout and
retry paths without macOS.
"""

import threading
import time
from collections import Counter
from typing import Dict, List, Optional

from ax_errors import NotFound, ProviderError, CODE_APPLICATION_NOT_FOUND, CODE_UNSUPPORTED_ACTION
from ax_provider import AccessibilityProvider, ApplicationInfo, clean_text, EDITABLE_TEXT_ROLES


class MemoryNode:
    """One element of the fake tree. Attributes are stored under their AX names."""

    def __init__(self, role: str, title: str = "", subrole: str = "", role_description: str = "",
                 children: Optional[List["MemoryNode"]] = None, value=None,
                 actions: Optional[List[str]] = None, **extra):
        self.children = list(children or [])
        self.attributes = {"AXRole": role}
        if subrole:
            self.attributes["AXSubrole"] = subrole
        if title:
            self.attributes["AXTitle"] = title
        if role_description:
            self.attributes["AXRoleDescription"] = role_description
        if value is not None:
            self.attributes["AXValue"] = value
        self.attributes.update(extra)
        if actions is None:
            actions = ["AXPress"] if role in ("AXButton", "AXCheckBox", "AXMenuItem", "AXLink") else []
        self.actions = list(actions)
        self.performed: List[str] = []

    @property
    def role(self):
        return self.attributes.get("AXRole")

    @property
    def title(self):
        return self.attributes.get("AXTitle", "")

    def __repr__(self):
        return f"MemoryNode({self.role!r}, {self.title!r})"


class MemoryApplication:
    """Application handle: name, pid and its window nodes."""

    def __init__(self, name: str, pid: int, windows: Optional[List[MemoryNode]] = None,
                 bundle_id: Optional[str] = None, focused_window: Optional[int] = 0):
        self.name = name
        self.pid = pid
        self.bundle_id = bundle_id
        self.windows = list(windows or [])
        self.focused_window = focused_window

    def info(self) -> ApplicationInfo:
        return ApplicationInfo(self.pid, self.name, self.bundle_id)

    def __repr__(self):
        return f"MemoryApplication({self.name!r}, {self.pid})"


class InMemoryProvider(AccessibilityProvider):
    """AccessibilityProvider over MemoryApplication / MemoryNode objects.

    latency: {operation: seconds} slept before answering.
    fail(operation, error, times): the next `times` calls (all when None) raise `error`.
    calls: Counter of operation names, incremented on every call.
    events: ("focus", node) and ("type", text) in the order they happened.
    """

    name = "in-memory"

    def __init__(self, applications: Optional[List[MemoryApplication]] = None,
                 focused_pid: Optional[int] = None, authorized: bool = True,
                 latency: Optional[Dict[str, float]] = None):
        self.applications = list(applications or [])
        self.focused_pid = focused_pid
        self.authorized = authorized
        self.latency = dict(latency or {})
        self.calls = Counter()
        self.typed: List[str] = []
        self.events: List[tuple] = []
        self._failures: Dict[str, list] = {}
        self._lock = threading.Lock()

    # ---- injection ----
    def fail(self, operation: str, error: Optional[Exception] = None, times: Optional[int] = None):
        """Make `operation` raise `error` (ProviderError by default)."""
        if error is None:
            error = ProviderError(f"Injected failure in {operation}")
        self._failures[operation] = [error, times]

    def clear_failures(self):
        self._failures.clear()

    def _enter(self, operation: str):
        with self._lock:
            self.calls[operation] += 1
            failure = self._failures.get(operation)
            if failure is not None:
                error, times = failure
                if times is not None:
                    if times <= 1:
                        del self._failures[operation]
                    else:
                        failure[1] = times - 1
            else:
                error = None
        delay = self.latency.get(operation)
        if delay:
            time.sleep(delay)
        if error is not None:
            raise error

    # ---- applications ----
    def list_applications(self) -> List[ApplicationInfo]:
        self._enter("list_applications")
        return [app.info() for app in self.applications]

    def get_application(self, pid: Optional[int] = None, name: Optional[str] = None):
        self._enter("get_application")
        for app in self.applications:
            if pid is not None and app.pid == pid:
                return app
            if pid is None and name is not None and clean_text(app.name) == clean_text(name):
                return app
        raise NotFound(f"Application not found: {name if pid is None else pid}",
                       hint="Use 'apps' to list running applications.",
                       code=CODE_APPLICATION_NOT_FOUND)

    def get_focused_application(self) -> Optional[ApplicationInfo]:
        self._enter("get_focused_application")
        for app in self.applications:
            if app.pid == self.focused_pid:
                return app.info()
        return None

    # ---- windows ----
    def get_windows(self, app) -> List[MemoryNode]:
        self._enter("get_windows")
        return list(app.windows)

    def get_focused_window(self, app) -> Optional[MemoryNode]:
        self._enter("get_focused_window")
        index = app.focused_window
        if index is None or not 0 <= index < len(app.windows):
            return None
        return app.windows[index]

    # ---- elements ----
    def get_element_attribute_names(self, element) -> List[str]:
        self._enter("get_element_attribute_names")
        names = list(element.attributes)
        if element.children:
            names.append("AXChildren")
        return names

    def get_element_attribute_value(self, element, name: str):
        self._enter("get_element_attribute_value")
        if name == "AXChildren":
            return list(element.children) or None
        return element.attributes.get(name)

    def get_element_children(self, element) -> List[MemoryNode]:
        self._enter("get_element_children")
        return list(element.children)

    def get_element_child_count(self, element) -> int:
        self._enter("get_element_child_count")
        return len(element.children)

    def get_element_action_names(self, element) -> List[str]:
        self._enter("get_element_action_names")
        return list(element.actions)

    def perform_action(self, element, action: str) -> None:
        self._enter("perform_action")
        if action not in element.actions:
            raise ProviderError(f"Element does not support action {action}",
                                code=CODE_UNSUPPORTED_ACTION)
        element.performed.append(action)

    def set_element_attribute_value(self, element, name: str, value) -> None:
        self._enter("set_element_attribute_value")
        if name == "AXValue" and element.role not in EDITABLE_TEXT_ROLES:
            raise ProviderError(f"{element.role} does not accept a value")
        element.attributes[name] = value

    def focus_element(self, element) -> None:
        self._enter("focus_element")
        element.attributes["AXFocused"] = True
        self.events.append(("focus", element))

    def type_text(self, text: str) -> None:
        self._enter("type_text")
        self.typed.append(text)
        self.events.append(("type", text))

    # ---- trust ----
    def is_accessibility_authorized(self) -> bool:
        self._enter("is_accessibility_authorized")
        return self.authorized

    def request_authorization(self) -> bool:
        self._enter("request_authorization")
        return self.authorized


def demo() -> InMemoryProvider:
    """Small desktop used by `ax-shell --demo`."""
    N = MemoryNode
    notes = MemoryApplication("Notes", 501, bundle_id="com.apple.Notes", windows=[
        N("AXWindow", "Main", subrole="AXStandardWindow", role_description="standard window", children=[
            N("AXToolbar", role_description="toolbar", children=[
                N("AXButton", "New Note", role_description="button"),
                N("AXButton", "Delete", role_description="button"),
                N("AXTextField", subrole="AXSearchField", role_description="search text field",
                  value="", actions=["AXConfirm"]),
            ]),
            N("AXSplitGroup", children=[
                N("AXScrollArea", children=[
                    N("AXTable", "Notes List", children=[
                        N("AXRow", children=[N("AXStaticText", value="Groceries")]),
                        N("AXRow", children=[N("AXStaticText", value="Ideas")]),
                    ]),
                ]),
                N("AXTextArea", "Body", role_description="text entry area", value="Milk, eggs"),
            ]),
            N("AXButton", "OK", role_description="button"),
            N("AXButton", "Cancel", role_description="button"),
        ]),
        N("AXWindow", "Settings", subrole="AXDialog", role_description="dialog", children=[
            N("AXCheckBox", "Sync with iCloud", value=1),
            N("AXButton", "Close", subrole="AXCloseButton", role_description="close button"),
        ]),
    ])
    calc = MemoryApplication("Calculator", 502, bundle_id="com.apple.calculator", windows=[
        N("AXWindow", "Calculator", subrole="AXStandardWindow", children=[
            N("AXStaticText", value="0", role_description="text"),
            N("AXGroup", children=[N("AXButton", str(d), role_description="button") for d in range(10)]),
        ]),
    ])
    return InMemoryProvider([notes, calc], focused_pid=501)
