"""
AX Navigation Context
=====================

State machine behind the shell prompt:

    EMPTY -> APPLICATION -> WINDOW -> ELEMENT

Selection may jump to any level that the current one allows; `back()` climbs
one level at a time. Every transition that needs the provider runs under
timeout + retry, and state is only committed once everything it needs has
been fetched, so a failed command leaves the context exactly as it was.
"""

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, List, Optional, Tuple

from ax_config import ShellConfig
from ax_errors import (
    ContextError, IndexOutOfRange, NotFound, OperationTimeout, ProviderError, ValidationError,
    CODE_APPLICATION_NOT_FOUND, CODE_WINDOW_NOT_FOUND,
)
from ax_logging import get_logger
from ax_provider import AccessibilityProvider, ApplicationInfo, EDITABLE_TEXT_ROLES, clean_text
from ax_registry import SessionIdRegistry
from ax_resolver import ElementResolver
from ax_timeout import run_with_timeout_and_retry
from ax_tree import Element, ElementTree, TreeRow
from ax_values import AttributeValue


class ContextLevel(IntEnum):
    EMPTY = 0
    APPLICATION = 1
    WINDOW = 2
    ELEMENT = 3


@dataclass(frozen=True)
class WindowInfo:
    index: Optional[int]
    title: str
    handle: Any = field(repr=False, compare=False)


@dataclass
class ContextInfo:
    """Snapshot printed by `info`."""
    level: ContextLevel
    application: Optional[ApplicationInfo] = None
    window: Optional[WindowInfo] = None
    element: Optional[Element] = None
    path: str = ""
    attributes: List[Tuple[str, AttributeValue]] = field(default_factory=list)
    actions: List[str] = field(default_factory=list)


class NavigationContext:
    """Current application / window / element plus the tree they live in."""

    def __init__(self, provider: AccessibilityProvider, config: Optional[ShellConfig] = None,
                 logger: Optional[logging.Logger] = None):
        self.provider = provider
        self.config = config or ShellConfig()
        self.logger = get_logger(logger)
        self.log = get_logger(logger, "context")
        self.reset()

    # ---- state ----
    def reset(self):
        self.application: Optional[ApplicationInfo] = None
        self.app_handle = None
        self._clear_window()

    def _clear_window(self):
        self.window: Optional[WindowInfo] = None
        self.tree: Optional[ElementTree] = None
        self.registry: Optional[SessionIdRegistry] = None
        self.resolver: Optional[ElementResolver] = None
        self.window_root: Optional[Element] = None
        self.element: Optional[Element] = None

    @property
    def level(self) -> ContextLevel:
        if self.element is not None:
            return ContextLevel.ELEMENT
        if self.window is not None:
            return ContextLevel.WINDOW
        if self.application is not None:
            return ContextLevel.APPLICATION
        return ContextLevel.EMPTY

    @property
    def current_root(self) -> Optional[Element]:
        """Element that relative selectors start from."""
        return self.element if self.element is not None else self.window_root

    def _require(self, level: ContextLevel):
        if self.level >= level:
            return
        if level == ContextLevel.APPLICATION or self.level < ContextLevel.APPLICATION:
            raise ContextError("No application selected", hint="Use 'app <name>' first (see 'apps').")
        if level == ContextLevel.WINDOW or self.level < ContextLevel.WINDOW:
            raise ContextError("No window selected", hint="Use 'window <index|title>' first (see 'windows').")
        raise ContextError("No element selected", hint="Use 'element' or 'find' first.")

    def _call(self, name: str, operation):
        cfg = self.config
        return run_with_timeout_and_retry(
            cfg.call_timeout, cfg.retry_attempts, cfg.retry_delay, operation,
            name=name, logger=self.log, retry_on=(OperationTimeout, ProviderError),
        )

    # ---- applications ----
    def list_applications(self) -> List[ApplicationInfo]:
        apps = self._call("list applications", self.provider.list_applications)
        return sorted(apps, key=lambda a: a.name.lower())

    def select_application(self, identifier) -> ApplicationInfo:
        """Select by PID, exact name or name substring (case-insensitive)."""
        identifier = str(identifier or "").strip()
        if not identifier:
            raise ValidationError("application", "a name or PID is required",
                                  hint="Use 'apps' to list running applications.")
        info = self._match_application(identifier, self.list_applications())
        handle = self._call(f"open {info.name}", lambda: self.provider.get_application(pid=info.pid))

        self.reset()
        self.application = info
        self.app_handle = handle
        self.log.info("Application selected: %s", info)
        self._select_focused_window()
        return info

    @staticmethod
    def _match_application(identifier: str, apps: List[ApplicationInfo]) -> ApplicationInfo:
        if identifier.isdigit():
            for app in apps:
                if app.pid == int(identifier):
                    return app
        wanted = clean_text(identifier)
        for app in apps:
            if clean_text(app.name) == wanted:
                return app
        for app in apps:
            if wanted in clean_text(app.name):
                return app
        raise NotFound(f"No application found with name: {identifier}",
                       hint="Use 'apps' to list running applications.",
                       code=CODE_APPLICATION_NOT_FOUND)

    def _select_focused_window(self):
        """Best effort: the application stays selected when this fails."""
        try:
            focused = self._call("focused window", lambda: self.provider.get_focused_window(self.app_handle))
            if focused is None:
                return
            info = next((w for w in self.list_windows() if w.handle == focused), None)
            if info is None:
                title = self._call("describe window", lambda: self.provider.describe_window(focused))
                info = WindowInfo(None, title, focused)
            self._enter_window(info)
        except (OperationTimeout, ProviderError, NotFound) as e:
            self.log.info("No focused window selected for %s: %s", self.application.name, e)

    # ---- windows ----
    def list_windows(self) -> List[WindowInfo]:
        self._require(ContextLevel.APPLICATION)
        app = self.app_handle

        def _fetch():
            handles = self.provider.get_windows(app)
            return [WindowInfo(i, self.provider.describe_window(h), h) for i, h in enumerate(handles)]

        return self._call("list windows", _fetch)

    def select_window(self, selector) -> WindowInfo:
        """Select by index into `windows`, else by title substring."""
        self._require(ContextLevel.APPLICATION)
        selector = str(selector if selector is not None else "").strip()
        if not selector:
            raise ValidationError("window", "a window index or title is required",
                                  hint="Use 'windows' to list the windows.")
        windows = self.list_windows()
        if not windows:
            raise NotFound(f"No windows found for {self.application.name}",
                           hint="The application may be minimized or have no open windows.",
                           code=CODE_WINDOW_NOT_FOUND)
        if selector.isdigit():
            index = int(selector)
            if index >= len(windows):
                raise IndexOutOfRange(index, len(windows), hint="Use 'windows' to list the windows.")
            info = windows[index]
        else:
            needle = selector.lower()
            info = next((w for w in windows if needle in w.title.lower()), None)
            if info is None:
                raise NotFound(f"No window found matching: {selector}",
                               hint="Try using an index number or part of the window title.",
                               code=CODE_WINDOW_NOT_FOUND)
        self._enter_window(info)
        return info

    def _build_tree(self, info: WindowInfo) -> ElementTree:
        tree = ElementTree(self.provider, self.config, self.logger)
        try:
            tree.create_root(info.handle)
        except OperationTimeout as e:
            if not self.config.synthesize_on_timeout:
                raise
            self.log.warning("Window %r did not answer (%s); using a synthetic window element", info.title, e)
            tree.synthetic("AXWindow", info.title, role_description="window")
        return tree

    def _enter_window(self, info: WindowInfo):
        tree = self._build_tree(info)
        self._clear_window()
        self.window = info
        self._attach(tree)
        self.log.info("Window selected: %s", info.title)

    def _attach(self, tree: ElementTree):
        self.tree = tree
        self.registry = SessionIdRegistry(tree, self.config, self.logger)
        self.resolver = ElementResolver(tree, self.config, self.logger)
        self.window_root = tree.root

    # ---- elements ----
    def select_element(self, selector) -> Element:
        """Select by index (children of the current root), #id or path."""
        self._require(ContextLevel.WINDOW)
        element = self.resolver.resolve(str(selector if selector is not None else ""),
                                        self.current_root, self.registry)
        self.element = element
        self.log.info("Element selected: %s", element.description)
        return element

    def enter(self, element: Element) -> Element:
        """Select an element that is already materialized in the current tree."""
        self._require(ContextLevel.WINDOW)
        if element not in self.tree:
            raise NotFound(f"{element.description} is not part of the current window",
                           hint="Use 'refresh' and select it again.")
        self.element = element
        return element

    def back(self) -> ContextLevel:
        if self.element is not None:
            self.element = None
        elif self.window is not None:
            self._clear_window()
        elif self.application is not None:
            self.reset()
        return self.level

    def refresh(self) -> Optional[Element]:
        """Rebuild the window tree and re-resolve the current element by its path.

        Falls back to the window level (with a warning) if the element is gone.
        """
        self._require(ContextLevel.WINDOW)
        path = self.tree.path_to(self.element) if self.element is not None else None
        tree = self._build_tree(self.window)
        self._attach(tree)
        self.element = None
        if path is None:
            return None
        try:
            self.element = self.resolver.resolve_by_path(path, self.window_root)
        except (NotFound, OperationTimeout) as e:
            self.log.warning("Selected element %s is gone after refresh: %s", path, e)
        return self.element

    def breadcrumb(self) -> str:
        """App/Window/role[title] for the prompt."""
        parts = []
        if self.application is not None:
            parts.append(self.application.name)
            if self.window is not None:
                parts.append(self.window.title)
                if self.element is not None:
                    crumb = self.element.display_role
                    if self.element.title:
                        crumb += f"[{self.element.title}]"
                    parts.append(crumb)
        return "/".join(parts)

    def list_children(self) -> List[Tuple[int, Optional[int], Element]]:
        """(index, session ID or None, child) for the children of the current root."""
        self._require(ContextLevel.WINDOW)
        root = self.current_root
        self.tree.load_children(root)
        if self.registry.root is not root:
            self.registry.rebuild(root)
        return [(i, self.registry.index_of(child), child) for i, child in enumerate(root.children)]

    def show_tree(self) -> List[TreeRow]:
        """Renumber from the current root and return the rows to print."""
        self._require(ContextLevel.WINDOW)
        return self.registry.rebuild(self.current_root)

    def find(self, role: Optional[str] = None, title: Optional[str] = None) -> List[Element]:
        self._require(ContextLevel.WINDOW)
        return self.resolver.find(self.current_root, role=role or None, title=title or None)

    def describe_current(self) -> ContextInfo:
        info = ContextInfo(self.level, self.application, self.window, self.element)
        if self.level < ContextLevel.WINDOW:
            return info
        target = self.current_root
        info.path = str(self.tree.path_to(target))
        info.attributes = self.tree.attributes(target)
        info.actions = self.tree.actions(target)
        return info

    # ---- actions ----
    def press(self) -> Element:
        self._require(ContextLevel.ELEMENT)
        self.tree.perform_action(self.element, "AXPress")
        return self.element

    def type_text(self, text: str) -> str:
        """Set AXValue on text roles, otherwise focus the element and type into it.

        Returns "value" or "keyboard" depending on which way was used. When the
        element cannot be focused nothing is typed and the error propagates.
        """
        self._require(ContextLevel.ELEMENT)
        if not text:
            raise ValidationError("text", "nothing to type", hint='Usage: type "Hello world"')
        element = self.element
        if element.role in EDITABLE_TEXT_ROLES and not element.synthetic:
            try:
                self.tree.set_value(element, text)
                return "value"
            except ProviderError as e:
                self.log.warning("Setting AXValue failed (%s); typing instead", e)
        self.tree.focus(element)
        self.tree.type_text(text)
        return "keyboard"
