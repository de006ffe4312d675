#!/usr/bin/env python3
"""
AX Shell - Interactive accessibility tree navigator
===================================================

Walk a running application's accessibility tree from the terminal:

    (ax-shell) > app Notes
    (ax-shell) [Notes/Main]> find button cancel
    (ax-shell) [Notes/Main/button[Cancel]]> click

Usage:
    ax-shell                      # macOS Accessibility (needs permission)
    ax-shell --demo               # built-in demo desktop, runs anywhere
    ax-shell --app Safari --timeout 2 --retries 1
    ax-shell --debug --log-file /tmp/ax.log
    ax-shell --demo --app Notes find button   # one command, then exit
    ax-shell permissions --prompt

Features:
- Context prompt: application / window / element breadcrumb
- Elements addressed by index, #ID (from 'tree') or path (window[Main]/button[OK])
- Every accessibility call bounded by a timeout, navigation retried
- Ctrl+C / Ctrl+D leave cleanly
"""

import os
import signal
import sys
from typing import List, Optional, Tuple

from ax_config import load_config
from ax_context import ContextLevel, NavigationContext
from ax_errors import AXShellError, ProviderError, ValidationError
from ax_logging import default_log_path, setup_logger
from ax_provider import CLICKABLE_ROLES, PERMISSION_HELP, MacAXProvider
from ax_registry import SessionIdRegistry
from ax_tree import Element, TreeRow

PROMPT_NAME = "ax-shell"

EXIT_OK = 0
EXIT_PROVIDER = 1
EXIT_FAILED = 1  # one-shot command reported an error
EXIT_USAGE = 2

COMMANDS = {
    "help": "Show available commands",
    "exit": "Exit interactive mode",
    "quit": "Exit interactive mode",
    "apps": "List all applications",
    "app": "Set current application by name or PID (app Safari)",
    "windows": "List windows of current application",
    "window": "Set current window by title or index (window \"Main Window\" or window 0)",
    "elements": "List elements under the current element or window",
    "element": "Select element by index, #ID or path (element 0, element #12, element button[OK])",
    "find": "Find elements by role and/or title (find button \"OK\")",
    "tree": "Show element hierarchy as a tree with #IDs",
    "info": "Show information about the current context",
    "back": "Go back one level in the context hierarchy",
    "refresh": "Reload the current window's elements",
    "click": "Click (AXPress) the current element",
    "press": "Same as click",
    "type": "Type text into the current element (type \"Hello world\")",
    "clear": "Clear the screen",
    "hint": "Show help for a specific command (hint app)",
    "permissions": "Check accessibility permissions (permissions --prompt asks macOS for them)",
}

EXAMPLES = {
    "app": ["app Safari", "app \"Google Chrome\"", "app 501            # by PID"],
    "window": ["window 0           # Select window by index number",
               "window \"Main\"      # Select window containing 'Main' in the title"],
    "element": ["element 0                    # Index into 'elements'",
                "element #12                  # ID from 'tree'",
                "element window[Main]/button[OK]"],
    "find": ["find button                  # Find all buttons",
             "find textField \"Search\"     # Text fields with 'Search' in title",
             "find checkbox"],
    "click": ["click                        # Press the current element"],
    "type": ["type \"Hello, world!\"         # Type text into current element"],
    "back": ["back                         # Go up one level in the hierarchy"],
    "refresh": ["refresh                      # Re-read the window, keep the selection if it still exists"],
    "info": ["info                         # Show details about current context"],
    "tree": ["tree                         # Hierarchy below the current element or window"],
    "permissions": ["permissions                  # Report whether this process is trusted",
                    "permissions --prompt         # Ask macOS to show the permission dialog"],
}

ID_NOTE = "IDs are reassigned every time 'tree' or 'elements' renumbers; use them right after listing."

# Commands that only make sense inside the interactive loop
ONE_SHOT_EXCLUDED = {"exit", "quit", "clear", "back", "refresh"}

# Attribute values longer than this are cut in 'info'
MAX_VALUE_LENGTH = 80


def parse_command(line: str) -> List[str]:
    """Split a command line on whitespace, honoring double quotes and backslash escapes."""
    parts, current = [], []
    in_quotes = escaping = False
    has_token = False
    for ch in line:
        if escaping:
            current.append(ch)
            escaping = False
            continue
        if ch == "\\":
            escaping = True
            has_token = True
            continue
        if ch == '"':
            in_quotes = not in_quotes
            has_token = True
            continue
        if ch.isspace() and not in_quotes:
            if has_token:
                parts.append("".join(current))
                current, has_token = [], False
            continue
        current.append(ch)
        has_token = True
    if has_token:
        parts.append("".join(current))
    return parts


def render_tree(rows: List[TreeRow], registry: SessionIdRegistry,
                current: Optional[Element] = None) -> List[str]:
    """Lines for 'tree': `├── #3 button[OK (button)]`, current element starred."""
    lines = []
    for row in rows:
        prefix = "".join("    " if last else "│   " for last in row.branches[:-1])
        marker = "└── " if row.branches[-1] else "├── "
        element = row.element
        element_id = registry.index_of(element)
        star = "* " if current is not None and element is current else "  "
        lines.append(f"{star}{prefix}{marker}#{element_id} {element.display_role}[{element.display_title}]")
        if row.unreachable_children:
            child_prefix = prefix + ("    " if row.branches[-1] else "│   ")
            lines.append(f"  {child_prefix}└── #? (has children, not accessible)")
    return lines


def _short(text: str) -> str:
    text = text.replace("\n", " ")
    return text if len(text) <= MAX_VALUE_LENGTH else text[:MAX_VALUE_LENGTH] + "..."


class AXShell:
    """Command loop over a NavigationContext."""

    def __init__(self, context: NavigationContext, input_fn=None):
        self.context = context
        self.input_fn = input_fn or input
        self.last_error: Optional[AXShellError] = None
        self.handlers = {
            "help": self.cmd_help,
            "apps": self.cmd_apps,
            "app": self.cmd_app,
            "windows": self.cmd_windows,
            "window": self.cmd_window,
            "elements": self.cmd_elements,
            "element": self.cmd_element,
            "find": self.cmd_find,
            "tree": self.cmd_tree,
            "info": self.cmd_info,
            "back": self.cmd_back,
            "refresh": self.cmd_refresh,
            "click": self.cmd_click,
            "press": self.cmd_click,
            "type": self.cmd_type,
            "clear": self.cmd_clear,
            "hint": self.cmd_hint,
            "permissions": self.cmd_permissions,
        }

    def prompt(self) -> str:
        crumb = self.context.breadcrumb()
        return f"({PROMPT_NAME}) [{crumb}]> " if crumb else f"({PROMPT_NAME}) > "

    # ---- loop ----
    def execute(self, line: str) -> bool:
        """Run one command line. Returns False when the shell should exit."""
        args = parse_command(line)
        if not args:
            return True
        return self.dispatch(args[0].lower(), args[1:])

    def dispatch(self, command: str, args: List[str]) -> bool:
        """Run one command. Errors are printed and kept in `last_error`."""
        self.last_error = None
        if command in ("exit", "quit"):
            return False
        handler = self.handlers.get(command)
        if handler is None:
            self.last_error = ValidationError(command, "unknown command")
            print(f"[ERROR] Unknown command: {command}")
            print("Type 'help' for available commands, or 'hint <command>' for specific help")
            return True
        try:
            handler(args)
        except AXShellError as e:
            self.last_error = e
            self.context.log.debug("%s failed: %s", command, e)
            print(f"[ERROR] {e.message}")
            print(f"        hint: {e.hint}")
        return True

    def run(self, startup=()) -> int:
        """Interactive loop. `startup` commands (name, args) run first, under the same Ctrl+C handling."""
        print(f"[INFO] AX Shell interactive mode ({self.context.provider.name})")
        print("[INFO] Type 'help' for available commands, 'exit' to quit, Ctrl+C to exit anytime")
        print("")
        running = True
        try:
            for command, args in startup:
                self.dispatch(command, args)
            while running:
                line = self.input_fn(self.prompt())
                running = self.execute(line.strip())
        except KeyboardInterrupt:
            print("\nCtrl+C pressed, exiting interactive mode...")
        except EOFError:
            print("\nEOF detected, exiting interactive mode...")
        self.context.reset()
        print("[INFO] Exiting interactive mode")
        return EXIT_OK

    def run_once(self, commands) -> int:
        """Run (name, args) commands in order, stopping at the first error."""
        try:
            for command, args in commands:
                self.dispatch(command, args)
                if self.last_error is not None:
                    return EXIT_FAILED
        except KeyboardInterrupt:
            print("\nCtrl+C pressed, command interrupted")
            return EXIT_FAILED
        finally:
            self.context.reset()
        return EXIT_OK

    # ---- commands ----
    def cmd_help(self, args):
        print("[INFO] Available Commands:")
        width = max(len(name) for name in COMMANDS)
        for name in sorted(COMMANDS):
            print(f"  {name.ljust(width + 2)}{COMMANDS[name]}")
        ctx = self.context
        print("\nCurrent Context:")
        print(f"  Application: {ctx.application.name if ctx.application else 'None'}")
        print(f"  Window: {ctx.window.title if ctx.window else 'None'}")
        print(f"  Element: {ctx.element.description if ctx.element else 'None'}")
        print("\nElement IDs:")
        print("  'tree' numbers every element it shows: #0, #1, #2, ...")
        print("  Select one with 'element #5'. A plain number (element 5) is an index into 'elements'.")
        print(f"  {ID_NOTE}")

    def cmd_hint(self, args):
        if not args:
            print("[INFO] Available commands:")
            for name in sorted(COMMANDS):
                print(f"  {name}")
            print("[INFO] Type 'hint <command>' for help with a specific command")
            return
        name = args[0].lower()
        if name not in COMMANDS:
            print(f"[ERROR] Unknown command: {name}")
            print("[INFO] Type 'help' to see available commands")
            return
        print(f"[INFO] Command: {name}")
        print(f"[OK] Description: {COMMANDS[name]}")
        print("[INFO] Usage examples:")
        for example in EXAMPLES.get(name, [f"{name}"]):
            print(f"  {example}")

    def cmd_apps(self, args):
        apps = self.context.list_applications()
        print("[INFO] Available Applications:")
        if not apps:
            print("[WARN]   No applications found")
        for app in apps:
            print(f"  {app}")

    def cmd_app(self, args):
        info = self.context.select_application(" ".join(args))
        print(f"[OK] Current application set to: {info.name}")
        if self.context.window is not None:
            print(f"[OK] Current window set to: {self.context.window.title}")

    def cmd_windows(self, args):
        ctx = self.context
        windows = ctx.list_windows()
        print(f"[INFO] Windows for {ctx.application.name}:")
        if not windows:
            print("[WARN]   No windows found")
            return
        for info in windows:
            print(f"  {info.index}: {info.title}")
        print("[INFO] Use 'window <index|title>' to select a window")

    def cmd_window(self, args):
        info = self.context.select_window(" ".join(args))
        print(f"[OK] Current window set to [{info.index}]: {info.title}")
        root = self.context.window_root
        if root is not None and root.synthetic:
            print("[WARN] Using a synthetic window element - the real UI hierarchy did not answer in time")

    def cmd_elements(self, args):
        ctx = self.context
        children = ctx.list_children()
        print(f"[INFO] Elements in {ctx.current_root.description}:")
        if not children:
            if ctx.current_root.has_children_hint:
                print("[WARN]   Child elements are not accessible (try 'refresh')")
            else:
                print("[WARN]   No child elements found")
            return
        for index, element_id, child in children:
            id_text = f"#{element_id}" if element_id is not None else "#?"
            print(f"  {index} [{id_text}]: {child.display_role}[{child.display_title}]")
            if child.has_children_hint or child.children:
                print("    ↳ Has child elements (select this element to explore)")
        print("[INFO] Select with: element 0 (index) or element #12 (ID from 'tree')")
        print(f"[INFO] {ID_NOTE}")

    def _report_selected(self, element: Element, how: str = "Element selected"):
        print(f"[OK] {how}: {element.description}")
        if element.has_children_hint or element.children:
            print("[INFO] Element has child elements. Use 'elements' to explore them.")

    def cmd_element(self, args):
        if not args:
            raise ValidationError("element", "an index, #ID or path is required",
                                  hint="Run 'elements' or 'tree' to see available elements.")
        element = self.context.select_element(" ".join(args))
        self._report_selected(element)

    def cmd_find(self, args):
        role = args[0] if args else None
        title = " ".join(args[1:]) if len(args) > 1 else None
        print(f"[INFO] Searching for elements with role '{role or 'any'}' and title '{title or 'any'}'")
        found = self.context.find(role, title)
        if not found:
            print("[WARN]   No matching elements found")
            print("[INFO]   Try specifying a different role or title")
            return
        print(f"[OK]   Found {len(found)} matching elements:")
        for index, element in enumerate(found):
            print(f"  {index}: {element.display_role}[{element.display_title}]")
        if len(found) == 1:
            self.context.enter(found[0])
            self._report_selected(found[0], "Element automatically selected")
        else:
            print("[INFO] Narrow the search, or select with 'element <path>' or an ID from 'tree'")

    def cmd_tree(self, args):
        ctx = self.context
        rows = ctx.show_tree()
        target = ctx.element.description if ctx.element is not None else ctx.window.title
        print(f"[INFO] Element Hierarchy for {target}:")
        if ctx.window_root is not None and ctx.window_root.synthetic:
            print("[WARN] (Using synthetic window element - real UI hierarchy may not be available)")
        print("[INFO] Select any element by its ID:  element #42")
        print(f"[INFO] {ID_NOTE}")
        print("")
        for line in render_tree(rows, ctx.registry, ctx.element):
            print(line)
        if ctx.registry.truncated:
            print(f"[WARN] Tree truncated after {len(ctx.registry)} elements")

    def cmd_info(self, args):
        ctx = self.context
        info = ctx.describe_current()
        print("[INFO] Current Context:")
        if info.application is None:
            print("  No application selected")
            print("  Use 'apps' to list running applications")
            print("  Use 'app <name>' to select an application")
            return
        print(f"  Application: {info.application}")
        if info.window is None:
            print("[INFO] No Window Selected")
            print("  Use 'windows' to list windows in this application")
            print("  Use 'window <index>' to select a window")
            return
        print(f"  Window: {info.window.title}")
        if info.element is None:
            print("[INFO] No Element Selected")
            print("  Use 'elements' to list elements in the current window")
            print("  Use 'element <index>' to select an element")
        else:
            print(f"  Element: {info.element.description}")
        print(f"  Path: {info.path}")
        print("[INFO] Accessibility Details:")
        for name, value in info.attributes:
            print(f"  {name}: {_short(value.display())}")
        if info.actions:
            print(f"  Actions: {', '.join(info.actions)}")
        print("[INFO] Current Path:")
        print(f"  [{ctx.breadcrumb()}]")

    def cmd_back(self, args):
        if self.context.level == ContextLevel.EMPTY:
            print("[INFO] Already at top level")
            return
        messages = {
            ContextLevel.WINDOW: "Context set to window level",
            ContextLevel.APPLICATION: "Context set to application level",
            ContextLevel.EMPTY: "Context cleared",
        }
        print(f"[INFO] {messages[self.context.back()]}")

    def cmd_refresh(self, args):
        ctx = self.context
        had_element = ctx.element is not None
        element = ctx.refresh()
        if element is not None:
            print(f"[OK] Refreshed; still on {element.description}")
        elif had_element:
            print("[WARN] Selected element no longer exists; context set to window level")
        else:
            print(f"[OK] Refreshed window: {ctx.window.title}")

    def cmd_click(self, args):
        current = self.context.element
        if current is not None and current.role not in CLICKABLE_ROLES:
            print(f"[WARN] {current.display_role} is not usually clickable; sending AXPress anyway")
        element = self.context.press()
        print(f"[OK] Clicked: {element.description}")

    def cmd_type(self, args):
        text = " ".join(args)
        how = self.context.type_text(text)
        if how == "value":
            print("[OK] Text entered successfully")
        else:
            print("[OK] Text entered using keyboard input")

    def cmd_clear(self, args):
        print("\033[2J\033[H", end="")

    def cmd_permissions(self, args):
        provider = self.context.provider
        if "--prompt" in args:
            print("[AX] Requesting Accessibility permission...")
            granted = provider.request_authorization()
        else:
            granted = provider.is_accessibility_authorized()
        if not granted:
            raise ProviderError("Accessibility permissions are denied", hint=PERMISSION_HELP)
        print("[OK] Accessibility permissions are granted")


def print_usage():
    print("""Usage: ax-shell [options] [command [args...]]

Without a command the interactive shell starts. With one, ax-shell selects
--app / --window / --element, runs the command once and exits (0 on success,
1 when the command fails).

Options:
  --demo            Use the built-in demo desktop instead of macOS Accessibility
  --app NAME        Select an application at startup
  --window W        Select a window by index or title at startup
  --element SEL     Select an element by index, #ID or path at startup
  --timeout S       Timeout for each accessibility call, in seconds (0 < S <= 300)
  --retries N       Attempts for navigation calls (1-10)
  --delay S         Seconds between attempts
  --debug           Verbose logging to stderr
  --log-file PATH   Write a debug log (use 'auto' for /tmp/ax-shell-logs/)
  -h, --help        Show this help

Commands:
  permissions [--prompt]      apps                     windows
  elements                    find [ROLE [TITLE]]      tree
  info                        click                    type TEXT

Examples:
  ax-shell permissions --prompt
  ax-shell --app Notes windows
  ax-shell --app Notes find button Cancel
  ax-shell --app Notes --element "window[Main]/button[OK]" click

Environment: AX_SHELL_CALL_TIMEOUT, AX_SHELL_RETRY_ATTEMPTS, AX_SHELL_RETRY_DELAY, ...""")


def parse_args(argv):
    """Parse command line arguments. Raises ValidationError on bad input.

    Options come first; the first other token names a one-shot command and
    everything after it is passed to that command untouched.
    """
    args = {
        'demo': False,
        'debug': False,
        'log_file': None,
        'timeout': None,
        'retries': None,
        'delay': None,
        'app': None,
        'window': None,
        'element': None,
        'command': None,
        'command_args': [],
        'help': False,
    }
    valued = {'--log-file': 'log_file', '--timeout': 'timeout', '--retries': 'retries',
              '--delay': 'delay', '--app': 'app', '--window': 'window', '--element': 'element'}

    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg in ('-h', '--help'):
            args['help'] = True
        elif arg == '--demo':
            args['demo'] = True
        elif arg == '--debug':
            args['debug'] = True
        elif arg in valued:
            if i + 1 >= len(argv):
                raise ValidationError(arg, "missing value")
            args[valued[arg]] = argv[i + 1]
            i += 1
        elif arg.startswith('-'):
            raise ValidationError(arg, "unknown option")
        else:
            command = arg.lower()
            if command not in COMMANDS or command in ONE_SHOT_EXCLUDED:
                raise ValidationError(arg, "unknown command")
            args['command'] = command
            args['command_args'] = list(argv[i + 1:])
            break
        i += 1

    if args['retries'] is not None:
        try:
            args['retries'] = int(args['retries'])
        except ValueError:
            raise ValidationError('--retries', f"expected an integer, got {args['retries']!r}")
    for key in ('timeout', 'delay'):
        if args[key] is not None:
            try:
                args[key] = float(args[key])
            except ValueError:
                raise ValidationError(f'--{key}', f"expected a number, got {args[key]!r}")
    return args


def _handle_signal(sig, frame):
    """SIGTERM leaves the loop the same way Ctrl+C does."""
    raise KeyboardInterrupt


def build_provider(demo: bool):
    if demo:
        from memory_provider import demo as demo_provider
        return demo_provider()
    return MacAXProvider()


def startup_commands(args) -> List[Tuple[str, List[str]]]:
    """Selections requested on the command line, as shell commands."""
    commands = []
    for key in ('app', 'window', 'element'):
        if args[key]:
            commands.append((key, [args[key]]))
    return commands


def main(argv=None) -> int:
    """Entry point."""
    argv = sys.argv[1:] if argv is None else argv
    try:
        args = parse_args(argv)
    except ValidationError as e:
        print(f"[ERROR] {e.message}")
        print_usage()
        return EXIT_USAGE
    if args['help']:
        print_usage()
        return EXIT_OK

    log_file = args['log_file']
    if log_file == 'auto':
        log_file = default_log_path()
    logger = setup_logger(debug=args['debug'], log_file=log_file)

    try:
        config = load_config(
            call_timeout=args['timeout'],
            retry_attempts=args['retries'],
            retry_delay=args['delay'],
        )
    except ValidationError as e:
        print(f"[ERROR] {e.message}")
        print(f"        hint: {e.hint}")
        return EXIT_USAGE

    try:
        provider = build_provider(args['demo'])
    except AXShellError as e:
        print(f"[ERROR] {e.message}")
        print(f"        hint: {e.hint}")
        return EXIT_PROVIDER

    command = args['command']
    shell = AXShell(NavigationContext(provider, config, logger))
    if command == 'permissions':
        return shell.run_once([(command, args['command_args'])])

    if not provider.is_accessibility_authorized():
        print("[AX] This process is not trusted. Requesting Accessibility permission...")
        if not provider.request_authorization():
            print(PERMISSION_HELP)
            return EXIT_PROVIDER

    try:
        signal.signal(signal.SIGTERM, _handle_signal)
    except Exception as sig_e:
        print(f"[WARN] Could not register signal handlers: {sig_e}")

    if log_file:
        print(f"[INFO] Debug log: {os.path.abspath(log_file)}")

    startup = startup_commands(args)
    if command:
        return shell.run_once(startup + [(command, args['command_args'])])
    return shell.run(startup)


if __name__ == "__main__":
    sys.exit(main())
