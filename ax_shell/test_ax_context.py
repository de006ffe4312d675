import time

import pytest

from ax_config import ShellConfig
from ax_context import ContextLevel, NavigationContext
from ax_errors import (
    ContextError, IndexOutOfRange, InvalidSelector, NotFound, OperationTimeout, ProviderError,
    ValidationError, CODE_APPLICATION_NOT_FOUND,
)
from ax_provider import ApplicationInfo
from memory_provider import InMemoryProvider, MemoryApplication, MemoryNode as N


@pytest.fixture
def ctx(provider, config, logger):
    return NavigationContext(provider, config, logger)


def state(ctx):
    return (ctx.level, ctx.application, ctx.window, ctx.element, ctx.tree)


class TestApplications:
    def test_starts_empty(self, ctx):
        assert ctx.level == ContextLevel.EMPTY
        assert ctx.breadcrumb() == ""

    def test_select_by_name_auto_selects_focused_window(self, ctx):
        info = ctx.select_application("notes")
        assert info.name == "Notes"
        assert ctx.level == ContextLevel.WINDOW
        assert ctx.window.title == "Main"
        assert ctx.breadcrumb() == "Notes/Main"

    def test_select_by_pid_and_substring(self, ctx):
        assert ctx.select_application("502").name == "Calculator"
        assert ctx.select_application("calc").name == "Calculator"

    def test_exact_name_beats_substring(self, config):
        provider = InMemoryProvider([
            MemoryApplication("Notes Helper", 10),
            MemoryApplication("Notes", 11),
        ])
        ctx = NavigationContext(provider, config)
        assert ctx.select_application("NOTES").pid == 11

    def test_no_focused_window_stays_at_application(self, config):
        provider = InMemoryProvider([MemoryApplication("Finder", 7, focused_window=None)])
        ctx = NavigationContext(provider, config)
        ctx.select_application("Finder")
        assert ctx.level == ContextLevel.APPLICATION

    def test_unknown_application_leaves_state(self, ctx):
        ctx.select_application("Notes")
        before = state(ctx)
        with pytest.raises(NotFound) as exc:
            ctx.select_application("Photoshop")
        assert exc.value.code == CODE_APPLICATION_NOT_FOUND
        assert state(ctx) == before

    def test_empty_identifier(self, ctx):
        with pytest.raises(ValidationError):
            ctx.select_application("  ")

    def test_list_applications_sorted(self, ctx):
        assert [a.name for a in ctx.list_applications()] == ["Calculator", "Notes"]

    def test_application_gone_before_open_is_not_retried(self, config):
        provider = GhostListing([MemoryApplication("Notes", 501)])
        ctx = NavigationContext(provider, config)
        with pytest.raises(NotFound) as exc:
            ctx.select_application("Ghost")
        assert exc.value.code == CODE_APPLICATION_NOT_FOUND
        assert provider.calls["get_application"] == 1
        assert ctx.level == ContextLevel.EMPTY


class GhostListing(InMemoryProvider):
    """Lists an application that has already quit."""

    def list_applications(self):
        return super().list_applications() + [ApplicationInfo(999, "Ghost")]


class TestWindows:
    def test_requires_application(self, ctx):
        with pytest.raises(ContextError, match="No application selected"):
            ctx.select_window("0")

    def test_select_by_index_and_title(self, ctx):
        ctx.select_application("Notes")
        assert ctx.select_window("1").title == "Settings"
        assert ctx.window_root.subrole == "AXDialog"
        assert ctx.select_window("mai").title == "Main"

    def test_selecting_window_clears_element(self, ctx):
        ctx.select_application("Notes")
        ctx.select_element("0")
        ctx.select_window("Settings")
        assert ctx.level == ContextLevel.WINDOW
        assert ctx.element is None

    def test_index_out_of_range(self, ctx):
        ctx.select_application("Notes")
        before = state(ctx)
        with pytest.raises(IndexOutOfRange):
            ctx.select_window("5")
        assert state(ctx) == before

    def test_transient_failure_is_retried(self, ctx, provider):
        ctx.select_application("Notes")
        before = provider.calls["get_windows"]
        provider.fail("get_windows", times=1)
        assert ctx.select_window("Settings").title == "Settings"
        assert provider.calls["get_windows"] - before == 2

    def test_persistent_failure_leaves_state(self, ctx, provider):
        ctx.select_application("Notes")
        before = state(ctx)
        provider.fail("get_windows")
        with pytest.raises(ProviderError):
            ctx.select_window("Settings")
        assert state(ctx) == before


class SlowWindow(InMemoryProvider):
    """Answers window titles, but hangs on everything else about `slow`."""

    def __init__(self, slow, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.slow = slow

    def get_element_attribute_value(self, element, name):
        if element is self.slow and name != "AXTitle":
            time.sleep(0.3)
        return super().get_element_attribute_value(element, name)


class DeadWindow(InMemoryProvider):
    def get_element_attribute_value(self, element, name):
        if name == "AXRole" and element.attributes.get("AXTitle") == "Main":
            raise ProviderError("invalid UI element", ax_error=-25202)
        return super().get_element_attribute_value(element, name)


class TestSyntheticRoot:
    def test_clean_provider_error_is_not_masked(self, config):
        provider = DeadWindow([MemoryApplication("Notes", 501, windows=[N("AXWindow", "Main")],
                                                 focused_window=None)])
        ctx = NavigationContext(provider, config)
        ctx.select_application("Notes")
        with pytest.raises(ProviderError):
            ctx.select_window("0")
        assert ctx.level == ContextLevel.APPLICATION

    def test_timeout_uses_synthetic_window(self):
        window = N("AXWindow", "Busy", children=[N("AXButton", "OK")])
        provider = SlowWindow(window, [MemoryApplication("Slow", 9, windows=[window], focused_window=None)])
        config = ShellConfig(call_timeout=0.05, retry_attempts=1, retry_delay=0.0)
        ctx = NavigationContext(provider, config)
        ctx.select_application("Slow")
        ctx.select_window("0")
        assert ctx.level == ContextLevel.WINDOW
        assert ctx.window_root.synthetic
        assert ctx.window_root.title == "Busy"
        assert ctx.list_children() == []

    def test_timeout_raises_when_synthesis_disabled(self):
        window = N("AXWindow", "Busy")
        provider = SlowWindow(window, [MemoryApplication("Slow", 9, windows=[window], focused_window=None)])
        config = ShellConfig(call_timeout=0.05, retry_attempts=1, retry_delay=0.0,
                             synthesize_on_timeout=False)
        ctx = NavigationContext(provider, config)
        ctx.select_application("Slow")
        with pytest.raises(OperationTimeout):
            ctx.select_window("0")
        assert ctx.level == ContextLevel.APPLICATION


class TestElements:
    def test_requires_window(self, config):
        provider = InMemoryProvider([MemoryApplication("Finder", 7, focused_window=None)])
        ctx = NavigationContext(provider, config)
        ctx.select_application("Finder")
        with pytest.raises(ContextError, match="No window selected"):
            ctx.select_element("0")

    def test_select_by_index_id_and_path(self, ctx):
        ctx.select_application("Notes")
        assert ctx.select_element("1").title == "Cancel"
        ctx.back()
        assert ctx.select_element("window[Main]/textField[Search]").title == "Search"
        ctx.select_window("Settings")
        assert ctx.select_element("#3").title == "Apply"
        assert ctx.breadcrumb() == "Notes/Settings/button[Apply]"

    def test_index_is_relative_to_current_element(self, ctx):
        ctx.select_application("Notes")
        ctx.select_window("Settings")
        ctx.select_element("0")
        assert ctx.select_element("1").title == "Apply"

    def test_invalid_selector_leaves_state(self, ctx):
        ctx.select_application("Notes")
        before = state(ctx)
        with pytest.raises(InvalidSelector):
            ctx.select_element("button[")
        with pytest.raises(NotFound):
            ctx.select_element("button[Nope]")
        assert state(ctx) == before

    def test_back_three_times_returns_to_empty(self, ctx):
        ctx.select_application("Notes")
        ctx.select_window("Main")
        ctx.select_element("0")
        assert ctx.level == ContextLevel.ELEMENT
        assert ctx.back() == ContextLevel.WINDOW
        assert ctx.back() == ContextLevel.APPLICATION
        assert ctx.back() == ContextLevel.EMPTY
        assert ctx.back() == ContextLevel.EMPTY
        assert ctx.application is None and ctx.tree is None

    def test_find_and_enter(self, ctx):
        ctx.select_application("Notes")
        found = ctx.find("button", "can")
        assert [e.title for e in found] == ["Cancel"]
        ctx.enter(found[0])
        assert ctx.level == ContextLevel.ELEMENT

    def test_enter_rejects_foreign_element(self, ctx):
        ctx.select_application("Notes")
        stale = ctx.find("button")[0]
        ctx.select_window("Settings")
        with pytest.raises(NotFound):
            ctx.enter(stale)

    def test_list_children_with_ids(self, ctx):
        ctx.select_application("Notes")
        ctx.select_window("Settings")
        rows = ctx.list_children()
        assert [(i, element_id, e.title) for i, element_id, e in rows] == [
            (0, 1, "General"), (1, 4, "Close"),
        ]

    def test_show_tree_numbers_from_current_root(self, ctx):
        ctx.select_application("Notes")
        ctx.select_window("Settings")
        ctx.select_element("0")
        rows = ctx.show_tree()
        assert [r.element.title for r in rows] == ["General", "Dark Mode", "Apply"]
        assert ctx.registry.index_of(ctx.element) == 0


class TestRefresh:
    def test_keeps_element_when_it_still_exists(self, ctx):
        ctx.select_application("Notes")
        old = ctx.select_element("window[Main]/button[Cancel]")
        new = ctx.refresh()
        assert new is not old
        assert new.title == "Cancel"
        assert ctx.element is new

    def test_falls_back_to_window_when_element_is_gone(self, ctx, notes):
        ctx.select_application("Notes")
        ctx.select_element("window[Main]/button[Cancel]")
        del notes.windows[0].children[1]
        assert ctx.refresh() is None
        assert ctx.level == ContextLevel.WINDOW

    def test_requires_window(self, ctx):
        with pytest.raises(ContextError):
            ctx.refresh()


class TestActions:
    def test_press(self, ctx, notes):
        ctx.select_application("Notes")
        ctx.select_element("0")
        ctx.press()
        assert notes.windows[0].children[0].performed == ["AXPress"]

    def test_press_requires_element(self, ctx):
        ctx.select_application("Notes")
        with pytest.raises(ContextError, match="No element selected"):
            ctx.press()

    def test_type_into_text_field_sets_value(self, ctx, notes, provider):
        ctx.select_application("Notes")
        ctx.select_element("textField")
        assert ctx.type_text("hello") == "value"
        assert notes.windows[0].children[2].attributes["AXValue"] == "hello"
        assert provider.typed == []

    def test_type_elsewhere_uses_keyboard(self, ctx, provider):
        ctx.select_application("Notes")
        ctx.select_element("0")
        assert ctx.type_text("hi") == "keyboard"
        assert provider.typed == ["hi"]

    def test_keyboard_typing_focuses_element_first(self, ctx, provider, notes):
        ctx.select_application("Notes")
        ctx.select_element("0")
        ctx.type_text("hi")
        ok = notes.windows[0].children[0]
        assert provider.events == [("focus", ok), ("type", "hi")]
        assert ok.attributes["AXFocused"] is True

    def test_failed_value_write_focuses_before_typing(self, ctx, provider, notes):
        ctx.select_application("Notes")
        ctx.select_element("textField")
        provider.fail("set_element_attribute_value", times=1)
        assert ctx.type_text("hello") == "keyboard"
        assert provider.events == [("focus", notes.windows[0].children[2]), ("type", "hello")]

    def test_nothing_typed_when_focus_fails(self, ctx, provider):
        ctx.select_application("Notes")
        ctx.select_element("0")
        provider.fail("focus_element")
        with pytest.raises(ProviderError):
            ctx.type_text("hi")
        assert provider.typed == []
        assert provider.calls["type_text"] == 0

    def test_type_requires_text(self, ctx):
        ctx.select_application("Notes")
        ctx.select_element("0")
        with pytest.raises(ValidationError):
            ctx.type_text("")

    def test_describe_current(self, ctx):
        ctx.select_application("Notes")
        ctx.select_element("0")
        info = ctx.describe_current()
        assert info.level == ContextLevel.ELEMENT
        assert info.path == "window[Main]/button[OK]"
        assert dict(info.attributes)["AXTitle"].display() == "OK"
        assert info.actions == ["AXPress"]
