import logging
import signal

import pytest

import ax_repl
from ax_context import ContextLevel, NavigationContext
from ax_errors import ProviderError
from ax_logging import LOGGER_NAME
from ax_registry import SessionIdRegistry
from ax_repl import AXShell, main, parse_args, parse_command, render_tree
from memory_provider import demo


@pytest.fixture
def shell(provider, config, logger):
    return AXShell(NavigationContext(provider, config, logger))


def scripted(lines):
    """input() replacement that feeds `lines`, then raises EOFError."""
    feed = iter(lines)

    def _input(prompt=""):
        try:
            return next(feed)
        except StopIteration:
            raise EOFError
    return _input


class TestParseCommand:
    def test_quotes(self):
        assert parse_command('window "Main Window"') == ["window", "Main Window"]

    def test_escapes(self):
        assert parse_command(r'type say \"hi\"') == ["type", "say", '"hi"']
        assert parse_command(r"type a\ b") == ["type", "a b"]

    def test_whitespace_and_empty_quotes(self):
        assert parse_command("   apps   ") == ["apps"]
        assert parse_command('type ""') == ["type", ""]
        assert parse_command("") == []


class TestShellCommands:
    def test_prompt_follows_context(self, shell):
        assert shell.prompt() == "(ax-shell) > "
        shell.execute("app Notes")
        assert shell.prompt() == "(ax-shell) [Notes/Main]> "
        shell.execute("element 1")
        assert shell.prompt() == "(ax-shell) [Notes/Main/button[Cancel]]> "

    def test_unknown_command(self, shell, capsys):
        assert shell.execute("fly away") is True
        assert "Unknown command: fly" in capsys.readouterr().out

    def test_exit(self, shell):
        assert shell.execute("exit") is False
        assert shell.execute("QUIT") is False

    def test_error_prints_message_and_hint(self, shell, capsys):
        assert shell.execute("element 0") is True
        out = capsys.readouterr().out
        assert "[ERROR] No application selected" in out
        assert "        hint: Use 'app <name>' first" in out

    def test_find_single_match_is_selected(self, shell, capsys):
        shell.execute("app Notes")
        shell.execute("find button can")
        out = capsys.readouterr().out
        assert "Element automatically selected: button[Cancel] (button)" in out
        assert shell.context.level == ContextLevel.ELEMENT

    def test_find_many_keeps_context(self, shell, capsys):
        shell.execute("app Notes")
        shell.execute("find button")
        out = capsys.readouterr().out
        assert "Found 2 matching elements" in out
        assert shell.context.level == ContextLevel.WINDOW

    def test_tree(self, shell, capsys):
        shell.execute("app Notes")
        capsys.readouterr()
        shell.execute("tree")
        out = capsys.readouterr().out
        assert "  └── #0 window[Main]" in out
        assert "      ├── #1 button[OK (button)]" in out
        assert "      └── #3 textField[Search (text field)]" in out
        assert "IDs are reassigned" in out

    def test_tree_marks_current_element(self, shell, capsys):
        shell.execute("app Notes")
        shell.execute("window Settings")
        shell.execute("element #3")
        capsys.readouterr()
        shell.execute("tree")
        lines = capsys.readouterr().out.splitlines()
        assert "* └── #0 button[Apply]" in lines

    def test_elements_lists_ids(self, shell, capsys):
        shell.execute("app Notes")
        shell.execute("window 1")
        capsys.readouterr()
        shell.execute("elements")
        out = capsys.readouterr().out
        assert "  0 [#1]: group[General]" in out
        assert "    ↳ Has child elements" in out
        assert "  1 [#4]: button[Close]" in out

    def test_back_messages(self, shell, capsys):
        shell.execute("app Notes")
        shell.execute("element 0")
        for _ in range(4):
            shell.execute("back")
        out = capsys.readouterr().out
        assert "Context set to window level" in out
        assert "Context set to application level" in out
        assert "Context cleared" in out
        assert "Already at top level" in out

    def test_click_and_type(self, shell, provider, notes, capsys):
        shell.execute("app Notes")
        shell.execute("element 0")
        shell.execute("click")
        shell.execute('type "hello world"')
        out = capsys.readouterr().out
        assert "[OK] Clicked: button[OK] (button)" in out
        assert notes.windows[0].children[0].performed == ["AXPress"]
        assert provider.typed == ["hello world"]
        assert "[WARN]" not in out

    def test_click_warns_on_unusual_role(self, shell, capsys):
        shell.execute("app Notes")
        shell.execute("element 2")
        capsys.readouterr()
        shell.execute("click")
        out = capsys.readouterr().out
        assert "[WARN] textField is not usually clickable" in out
        assert "[ERROR] Element does not support action AXPress" in out

    def test_last_error_tracks_latest_command(self, shell):
        shell.execute("element 0")
        assert shell.last_error is not None
        shell.execute("app Notes")
        assert shell.last_error is None
        shell.execute("fly")
        assert shell.last_error is not None

    def test_permissions(self, shell, provider, capsys):
        shell.execute("permissions")
        assert "[OK] Accessibility permissions are granted" in capsys.readouterr().out
        provider.authorized = False
        shell.execute("permissions --prompt")
        out = capsys.readouterr().out
        assert "[ERROR] Accessibility permissions are denied" in out
        assert provider.calls["request_authorization"] == 1

    def test_info(self, shell, capsys):
        shell.execute("app Notes")
        shell.execute("element 0")
        capsys.readouterr()
        shell.execute("info")
        out = capsys.readouterr().out
        assert "Path: window[Main]/button[OK]" in out
        assert "AXTitle: OK" in out
        assert "Actions: AXPress" in out

    def test_refresh(self, shell, capsys):
        shell.execute("app Notes")
        shell.execute("element 1")
        shell.execute("refresh")
        assert "Refreshed; still on button[Cancel]" in capsys.readouterr().out

    def test_help_and_hint(self, shell, capsys):
        shell.execute("help")
        shell.execute("hint element")
        shell.execute("hint nope")
        out = capsys.readouterr().out
        assert "Available Commands:" in out
        assert "element #12" in out
        assert "Unknown command: nope" in out


class TestRenderTree:
    def test_unreachable_children_marker(self, main_tree, provider):
        provider.fail("get_element_children")
        registry = SessionIdRegistry(main_tree)
        rows = registry.rebuild(main_tree.root)
        assert render_tree(rows, registry) == [
            "  └── #0 window[Main]",
            "      └── #? (has children, not accessible)",
        ]


class TestRunLoop:
    def test_eof_exits_cleanly(self, provider, config, capsys):
        ctx = NavigationContext(provider, config)
        shell = AXShell(ctx, input_fn=scripted(["app Notes", "bogus", "elements"]))
        assert shell.run() == 0
        assert ctx.level == ContextLevel.EMPTY
        assert "EOF detected" in capsys.readouterr().out

    def test_ctrl_c_resets_and_exits(self, provider, config, capsys):
        def interrupted(prompt=""):
            raise KeyboardInterrupt

        ctx = NavigationContext(provider, config)
        ctx.select_application("Notes")
        assert AXShell(ctx, input_fn=interrupted).run() == 0
        assert ctx.level == ContextLevel.EMPTY
        assert "Ctrl+C pressed" in capsys.readouterr().out

    def test_exit_command(self, provider, config):
        shell = AXShell(NavigationContext(provider, config), input_fn=scripted(["exit", "apps"]))
        assert shell.run() == 0

    def test_ctrl_c_during_startup_selection(self, provider, config, monkeypatch, capsys):
        def interrupted(identifier):
            raise KeyboardInterrupt

        def no_prompt(prompt=""):
            raise AssertionError("prompt reached after Ctrl+C")

        ctx = NavigationContext(provider, config)
        monkeypatch.setattr(ctx, "select_application", interrupted)
        assert AXShell(ctx, input_fn=no_prompt).run(startup=[("app", ["Notes"])]) == 0
        assert "Ctrl+C pressed" in capsys.readouterr().out
        assert ctx.level == ContextLevel.EMPTY

    def test_startup_commands_run_before_prompt(self, provider, config):
        ctx = NavigationContext(provider, config)
        prompts = []

        def first_prompt(prompt=""):
            prompts.append(prompt)
            return "exit"

        AXShell(ctx, input_fn=first_prompt).run(startup=[("app", ["Notes"]), ("window", ["1"])])
        assert prompts == ["(ax-shell) [Notes/Settings]> "]


class TestMain:
    @pytest.fixture(autouse=True)
    def isolated(self, monkeypatch):
        monkeypatch.setattr(signal, "signal", lambda *a: None)
        yield
        # main() configures the shared logger against the captured stderr
        shared = logging.getLogger(LOGGER_NAME)
        for handler in list(shared.handlers):
            shared.removeHandler(handler)
        shared.propagate = True

    def test_parse_args(self):
        args = parse_args(["--demo", "--timeout", "2", "--retries", "1", "--app", "Notes"])
        assert args["demo"] and args["timeout"] == 2.0 and args["retries"] == 1
        assert args["app"] == "Notes"

    @pytest.mark.parametrize("argv", [["--bogus"], ["--timeout"], ["--retries", "x"],
                                      ["--demo", "--timeout", "0"], ["--demo", "--retries", "20"]])
    def test_bad_options_exit_2(self, argv, capsys):
        assert main(argv) == 2

    def test_help(self, capsys):
        assert main(["--help"]) == 0
        assert "Usage: ax-shell" in capsys.readouterr().out

    def test_demo_session(self, monkeypatch, capsys):
        monkeypatch.setattr("builtins.input", scripted(["windows", "exit"]))
        assert main(["--demo", "--app", "notes"]) == 0
        out = capsys.readouterr().out
        assert "Current application set to: Notes" in out
        assert "0: Main" in out

    def test_provider_unavailable_exits_1(self, monkeypatch, capsys):
        def unavailable():
            raise ProviderError("macOS Accessibility API is not available")

        monkeypatch.setattr(ax_repl, "MacAXProvider", unavailable)
        assert main([]) == 1
        assert "[ERROR] macOS Accessibility API is not available" in capsys.readouterr().out

    def test_not_authorized_exits_1(self, monkeypatch, provider, capsys):
        provider.authorized = False
        monkeypatch.setattr(ax_repl, "build_provider", lambda demo: provider)
        assert main([]) == 1
        assert "Accessibility permissions are required" in capsys.readouterr().out

    def test_parse_args_command(self):
        args = parse_args(["--demo", "--window", "0", "type", "--not-an-option", "x"])
        assert args["window"] == "0"
        assert args["command"] == "type"
        assert args["command_args"] == ["--not-an-option", "x"]

    @pytest.mark.parametrize("argv", [["--demo", "fly"], ["--demo", "exit"], ["--demo", "refresh"]])
    def test_unknown_one_shot_command_exits_2(self, argv, capsys):
        assert main(argv) == 2
        assert "unknown command" in capsys.readouterr().out

    def test_one_shot_find(self, capsys):
        assert main(["--demo", "--app", "Notes", "find", "button", "Cancel"]) == 0
        out = capsys.readouterr().out
        assert "Element automatically selected: button[Cancel] (button)" in out
        assert "interactive mode" not in out

    def test_one_shot_click_by_path(self, monkeypatch, capsys):
        desktop = demo()
        monkeypatch.setattr(ax_repl, "build_provider", lambda demo: desktop)
        assert main(["--app", "Notes", "--element", "window[Main]/button[OK]", "click"]) == 0
        assert "[OK] Clicked: button[OK] (button)" in capsys.readouterr().out
        ok = desktop.applications[0].windows[0].children[2]
        assert ok.performed == ["AXPress"]

    def test_one_shot_failure_exits_1(self, capsys):
        assert main(["--demo", "--app", "Photoshop", "windows"]) == 1
        out = capsys.readouterr().out
        assert "[ERROR] No application found with name: Photoshop" in out
        assert "Windows for" not in out

    def test_permissions_command_skips_trust_gate(self, monkeypatch, provider, capsys):
        provider.authorized = False
        monkeypatch.setattr(ax_repl, "build_provider", lambda demo: provider)
        assert main(["permissions"]) == 1
        out = capsys.readouterr().out
        assert "Accessibility permissions are denied" in out
        assert provider.calls["request_authorization"] == 0
        provider.authorized = True
        assert main(["permissions", "--prompt"]) == 0
        assert "Accessibility permissions are granted" in capsys.readouterr().out
        assert provider.calls["request_authorization"] == 1

    def test_ctrl_c_during_startup_app(self, monkeypatch, capsys):
        def interrupted(self, identifier):
            raise KeyboardInterrupt

        monkeypatch.setattr(NavigationContext, "select_application", interrupted)
        monkeypatch.setattr("builtins.input", scripted([]))
        assert main(["--demo", "--app", "Notes"]) == 0
        assert "Ctrl+C pressed" in capsys.readouterr().out
