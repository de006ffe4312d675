"""
Part of the AX Shell.
Accessibility provider boundary: the only module that talks to macOS.

AX Provider - macOS Accessibility access for the navigation engine
==================================================================

AccessibilityProvider is the narrow interface the engine consumes (apps,
windows, attributes, children, actions, trust). MacAXProvider implements it on
PyObjC (ApplicationServices + AppKit + Quartz). Handles are raw AXUIElementRef
objects and stay opaque to everything above this module.

Provider methods are blocking and may hang when the target app is busy; callers
never invoke them directly but through ax_timeout.
"""

# ----------------  Core Imports ----------------
import time
import unicodedata
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional

from ax_errors import NotFound, ProviderError, CODE_APPLICATION_NOT_FOUND, CODE_UNSUPPORTED_ACTION

# ---------------- Accessibility (direct first, fallback bind) ----------------
try:
    import objc
except ImportError:
    objc = None

AX_DIRECT_OK = objc is not None
if AX_DIRECT_OK:
    try:
        from ApplicationServices import (
            AXUIElementCreateApplication, AXUIElementCopyAttributeValue,
            AXUIElementCopyAttributeNames, AXUIElementCopyActionNames,
            AXUIElementPerformAction, AXUIElementSetAttributeValue,
            AXUIElementGetAttributeValueCount, AXUIElementGetPid,
            AXIsProcessTrusted, AXIsProcessTrustedWithOptions,
            kAXTrustedCheckOptionPrompt,
        )
    except Exception:
        AX_DIRECT_OK = False

if objc is not None and not AX_DIRECT_OK:
    framework = objc.loadBundle(
        "ApplicationServices",
        bundle_path="/System/Library/Frameworks/ApplicationServices.framework",
        module_globals=globals(),
    )
    objc.loadBundleFunctions(framework, globals(), [
        ("AXUIElementCreateApplication", b"^{__AXUIElement=}i"),
        ("AXUIElementCopyAttributeValue", b"i^{__AXUIElement=}@o^@"),
        ("AXUIElementCopyAttributeNames", b"i^{__AXUIElement=}o^@"),
        ("AXUIElementCopyActionNames", b"i^{__AXUIElement=}o^@"),
        ("AXUIElementPerformAction", b"i^{__AXUIElement=}@"),
        ("AXUIElementSetAttributeValue", b"i^{__AXUIElement=}@@"),
        ("AXUIElementGetAttributeValueCount", b"i^{__AXUIElement=}@o^q"),
        ("AXUIElementGetPid", b"i^{__AXUIElement=}o^i"),
        ("AXIsProcessTrusted", b"Z"),
        ("AXIsProcessTrustedWithOptions", b"Z@"),
    ])
    kAXTrustedCheckOptionPrompt = "AXTrustedCheckOptionPrompt"
    AX_DIRECT_OK = True

try:
    from AppKit import NSWorkspace, NSRunningApplication
    from AppKit import NSApplicationActivateIgnoringOtherApps
except Exception:
    NSWorkspace = None
    NSRunningApplication = None

# ---------------- Constants ----------------

kAXErrorSuccess = 0
kAXErrorFailure = -25200
kAXErrorInvalidUIElement = -25202
kAXErrorCannotComplete = -25204
kAXErrorAttributeUnsupported = -25205
kAXErrorActionUnsupported = -25206
kAXErrorAPIDisabled = -25211
kAXErrorNoValue = -25212

# Errors that mean "no value here" rather than "the call failed"
AX_ABSENT_ERRORS = {kAXErrorAttributeUnsupported, kAXErrorNoValue}

AX_ERROR_NAMES = {
    kAXErrorFailure: "failure",
    kAXErrorInvalidUIElement: "invalid UI element (it may have been destroyed)",
    kAXErrorCannotComplete: "cannot complete (application busy or not responding)",
    kAXErrorAttributeUnsupported: "attribute unsupported",
    kAXErrorActionUnsupported: "action unsupported",
    kAXErrorAPIDisabled: "accessibility API disabled",
    kAXErrorNoValue: "no value",
}

# Role sets for classification
EDITABLE_TEXT_ROLES = {
    "AXTextField", "AXTextArea", "AXText", "AXTextBox", "AXSearchField", "AXEditableTextArea",
}

CLICKABLE_ROLES = {
    "AXButton", "AXTab", "AXRadioButton", "AXCheckBox", "AXLink", "AXPopUpButton", "AXMenuItem",
}

SYSTEM_PROCESS_BLACKLIST = {
    "loginwindow", "WindowServer", "SystemUIServer",
    "ControlCenter", "NotificationCenter", "Spotlight", "launchd", "universalaccessd",
}

# Delays around the clipboard paste fallback
PASTE_SETTLE_DELAY = 0.1
KEY_UP_DELAY = 0.05
TYPE_INTERVAL = 0.05
APP_ACTIVATION_DELAY = 0.3  # let the activated app take key focus before typing

PERMISSION_HELP = """Accessibility permissions are required but not granted.

Enable them in System Settings:
  1. Privacy & Security → Accessibility
  2. Enable Terminal (or your Python IDE)
  3. Restart the terminal and run ax-shell again"""


def clean_text(text: str) -> str:
    """Minimal text normalization for app name matching"""
    if not text:
        return ""
    text = text.strip().lower()
    return unicodedata.normalize('NFKD', text).encode('ascii', 'ignore').decode('ascii')


@dataclass(frozen=True)
class ApplicationInfo:
    """One running application as listed by the provider."""
    pid: int
    name: str
    bundle_id: Optional[str] = None

    def __str__(self):
        bundle = f", {self.bundle_id}" if self.bundle_id else ""
        return f"{self.name} (PID: {self.pid}{bundle})"


class AccessibilityProvider(ABC):
    """Interface the navigation engine consumes. Handles are opaque objects."""

    name = "provider"

    @abstractmethod
    def list_applications(self) -> List[ApplicationInfo]:
        """Running applications that expose an accessibility tree."""

    @abstractmethod
    def get_application(self, pid: Optional[int] = None, name: Optional[str] = None) -> Any:
        """Application handle by PID or exact name. Raises NotFound when absent."""

    @abstractmethod
    def get_focused_application(self) -> Optional[ApplicationInfo]:
        """Frontmost application, or None."""

    @abstractmethod
    def get_windows(self, app) -> List[Any]:
        """Window handles of an application, in provider order."""

    @abstractmethod
    def get_focused_window(self, app) -> Optional[Any]:
        """Focused window handle of an application, or None."""

    @abstractmethod
    def get_element_attribute_names(self, element) -> List[str]:
        """Attribute names an element exposes."""

    @abstractmethod
    def get_element_attribute_value(self, element, name: str) -> Any:
        """Raw attribute value; None when the element has no value for it."""

    @abstractmethod
    def get_element_children(self, element) -> List[Any]:
        """Direct child handles, in provider order."""

    def get_element_child_count(self, element) -> int:
        """Number of direct children, without copying them."""
        return len(self.get_element_children(element))

    @abstractmethod
    def get_element_action_names(self, element) -> List[str]:
        """Actions the element supports (AXPress, AXShowMenu, ...)."""

    @abstractmethod
    def perform_action(self, element, action: str) -> None:
        """Perform an action. Raises ProviderError on failure."""

    @abstractmethod
    def set_element_attribute_value(self, element, name: str, value) -> None:
        """Write an attribute. Raises ProviderError on failure."""

    @abstractmethod
    def focus_element(self, element) -> None:
        """Bring the element's application to the front and give the element keyboard focus.

        Raises ProviderError when either step fails.
        """

    @abstractmethod
    def type_text(self, text: str) -> None:
        """Type into whatever has keyboard focus."""

    @abstractmethod
    def is_accessibility_authorized(self) -> bool:
        """True if this process is trusted for accessibility."""

    @abstractmethod
    def request_authorization(self) -> bool:
        """Ask the OS to prompt for trust; returns the resulting status."""

    def describe_window(self, window) -> str:
        """Window title for listings."""
        title = self.get_element_attribute_value(window, "AXTitle")
        return str(title) if title else "Untitled Window"


# ---------------- AX API Wrappers ----------------
def _ax_result(res):
    """Bindings return either (err, value) or the bare value."""
    if isinstance(res, tuple) and len(res) == 2:
        return res
    return kAXErrorSuccess, res


def ax_copy(el, attr):
    """AXUIElementCopyAttributeValue as (err, value)."""
    try:
        return _ax_result(AXUIElementCopyAttributeValue(el, attr, None))
    except TypeError:
        return _ax_result(AXUIElementCopyAttributeValue(el, attr))


def _ax_list(fn, el):
    """Call a Copy*Names function as (err, list)."""
    try:
        err, arr = _ax_result(fn(el, None))
    except TypeError:
        err, arr = _ax_result(fn(el))
    return err, [str(x) for x in arr] if arr else []


def _ax_status(res) -> int:
    """Perform/Set calls return err or (err, None)."""
    if isinstance(res, tuple):
        return int(res[0])
    return int(res or 0)


def _ax_error(what: str, err: int, hint: Optional[str] = None) -> ProviderError:
    reason = AX_ERROR_NAMES.get(err, f"AX error {err}")
    return ProviderError(f"{what} failed: {reason}", hint=hint, ax_error=err)


class MacAXProvider(AccessibilityProvider):
    """AccessibilityProvider backed by the macOS AX API through PyObjC."""

    name = "macOS Accessibility"

    def __init__(self):
        if not AX_DIRECT_OK:
            raise ProviderError(
                "macOS Accessibility API is not available (PyObjC missing or not running on macOS)",
                hint="Install the pyobjc frameworks on macOS, or run 'ax-shell --demo'.",
            )

    # ---- applications ----
    def list_applications(self) -> List[ApplicationInfo]:
        if NSWorkspace is None:
            raise ProviderError("AppKit is not available", hint="Install pyobjc-framework-Cocoa.")
        apps = []
        for app in NSWorkspace.sharedWorkspace().runningApplications() or []:
            name = str(app.localizedName()) if app.localizedName() else None
            if not name or name in SYSTEM_PROCESS_BLACKLIST:
                continue
            # 0 == NSApplicationActivationPolicyRegular (apps with a Dock icon / windows)
            if int(app.activationPolicy()) != 0:
                continue
            bundle = app.bundleIdentifier()
            apps.append(ApplicationInfo(int(app.processIdentifier()), name,
                                        str(bundle) if bundle else None))
        return apps

    def get_application(self, pid: Optional[int] = None, name: Optional[str] = None):
        if pid is None and name is not None:
            wanted = clean_text(name)
            for info in self.list_applications():
                if clean_text(info.name) == wanted:
                    pid = info.pid
                    break
        if pid is None:
            raise NotFound(f"Application not found: {name or pid}",
                           hint="Use 'apps' to list running applications.",
                           code=CODE_APPLICATION_NOT_FOUND)
        if NSRunningApplication is not None and \
                NSRunningApplication.runningApplicationWithProcessIdentifier_(int(pid)) is None:
            raise NotFound(f"No running application with PID {pid}",
                           hint="The application may have quit. Use 'apps' to list running applications.",
                           code=CODE_APPLICATION_NOT_FOUND)
        return AXUIElementCreateApplication(int(pid))

    def get_focused_application(self) -> Optional[ApplicationInfo]:
        if NSWorkspace is None:
            return None
        app = NSWorkspace.sharedWorkspace().frontmostApplication()
        if not app:
            return None
        name = str(app.localizedName()) if app.localizedName() else "Unknown"
        bundle = app.bundleIdentifier()
        return ApplicationInfo(int(app.processIdentifier()), name, str(bundle) if bundle else None)

    # ---- windows ----
    def get_windows(self, app) -> List[Any]:
        return list(self.get_element_attribute_value(app, "AXWindows") or [])

    def get_focused_window(self, app) -> Optional[Any]:
        return self.get_element_attribute_value(app, "AXFocusedWindow")

    # ---- elements ----
    def get_element_attribute_names(self, element) -> List[str]:
        err, names = _ax_list(AXUIElementCopyAttributeNames, element)
        if err != kAXErrorSuccess:
            raise _ax_error("Reading attribute names", err)
        return names

    def get_element_attribute_value(self, element, name: str) -> Any:
        try:
            err, value = ax_copy(element, name)
        except Exception as e:
            raise ProviderError(f"Reading {name} failed: {e}")
        if err in AX_ABSENT_ERRORS:
            return None
        if err != kAXErrorSuccess:
            raise _ax_error(f"Reading {name}", err)
        return value

    def get_element_children(self, element) -> List[Any]:
        return list(self.get_element_attribute_value(element, "AXChildren") or [])

    def get_element_child_count(self, element) -> int:
        try:
            res = AXUIElementGetAttributeValueCount(element, "AXChildren", None)
        except TypeError:
            res = AXUIElementGetAttributeValueCount(element, "AXChildren")
        except Exception as e:
            raise ProviderError(f"Counting AXChildren failed: {e}")
        err, count = _ax_result(res)
        if err in AX_ABSENT_ERRORS:
            return 0
        if err != kAXErrorSuccess:
            raise _ax_error("Counting AXChildren", err)
        return int(count or 0)

    def get_element_action_names(self, element) -> List[str]:
        err, names = _ax_list(AXUIElementCopyActionNames, element)
        if err in AX_ABSENT_ERRORS:
            return []
        if err != kAXErrorSuccess:
            raise _ax_error("Reading actions", err)
        return names

    def perform_action(self, element, action: str) -> None:
        try:
            err = _ax_status(AXUIElementPerformAction(element, action))
        except Exception as e:
            raise ProviderError(f"Action {action} failed: {e}")
        if err == kAXErrorActionUnsupported:
            raise ProviderError(f"Element does not support action {action}",
                                ax_error=err, code=CODE_UNSUPPORTED_ACTION)
        if err != kAXErrorSuccess:
            raise _ax_error(f"Action {action}", err)

    def set_element_attribute_value(self, element, name: str, value) -> None:
        try:
            err = _ax_status(AXUIElementSetAttributeValue(element, name, value))
        except Exception as e:
            raise ProviderError(f"Writing {name} failed: {e}")
        if err != kAXErrorSuccess:
            raise _ax_error(f"Writing {name}", err)

    def element_pid(self, element) -> int:
        try:
            err, pid = _ax_result(AXUIElementGetPid(element, None))
        except TypeError:
            err, pid = _ax_result(AXUIElementGetPid(element))
        except Exception as e:
            raise ProviderError(f"Reading the element's PID failed: {e}")
        if err != kAXErrorSuccess or not pid:
            raise _ax_error("Reading the element's PID", err or kAXErrorFailure)
        return int(pid)

    def focus_element(self, element) -> None:
        """Activate the owning app, then set AXFocused on the element."""
        if NSRunningApplication is None:
            raise ProviderError("AppKit is not available to activate the application",
                                hint="Install pyobjc-framework-Cocoa.")
        pid = self.element_pid(element)
        front_app = NSWorkspace.sharedWorkspace().frontmostApplication()
        if not (front_app and front_app.processIdentifier() == pid):
            app = NSRunningApplication.runningApplicationWithProcessIdentifier_(pid)
            if app is None:
                raise ProviderError(f"No running application with PID {pid}",
                                    code=CODE_APPLICATION_NOT_FOUND)
            app.activateWithOptions_(NSApplicationActivateIgnoringOtherApps)
            time.sleep(APP_ACTIVATION_DELAY)
        self.set_element_attribute_value(element, "AXFocused", True)

    def type_text(self, text: str) -> None:
        """Clipboard + CGEvent Cmd+V paste, falling back to pyautogui keystrokes."""
        if not text:
            return
        try:
            import pyperclip
            from Quartz.CoreGraphics import (
                CGEventCreateKeyboardEvent, CGEventSetFlags, CGEventPost,
                kCGHIDEventTap, kCGEventFlagMaskCommand,
            )

            old_clipboard = pyperclip.paste()
            pyperclip.copy(text)
            time.sleep(PASTE_SETTLE_DELAY)

            # Cmd+V using CGEvent (keycode 9 = 'v')
            v_down = CGEventCreateKeyboardEvent(None, 9, True)
            CGEventSetFlags(v_down, kCGEventFlagMaskCommand)
            CGEventPost(kCGHIDEventTap, v_down)
            time.sleep(KEY_UP_DELAY)
            v_up = CGEventCreateKeyboardEvent(None, 9, False)
            CGEventPost(kCGHIDEventTap, v_up)

            time.sleep(PASTE_SETTLE_DELAY)
            pyperclip.copy(old_clipboard)
            return
        except Exception as paste_error:
            reason = paste_error

        try:
            import pyautogui
            pyautogui.typewrite(text, interval=TYPE_INTERVAL)
        except Exception as e:
            raise ProviderError(f"Typing failed: paste ({reason}), keystrokes ({e})",
                                hint="Check that the target application has keyboard focus.")

    # ---- trust ----
    def is_accessibility_authorized(self) -> bool:
        try:
            return bool(AXIsProcessTrusted())
        except Exception:
            return False

    def request_authorization(self) -> bool:
        try:
            return bool(AXIsProcessTrustedWithOptions({kAXTrustedCheckOptionPrompt: True}))
        except Exception:
            return self.is_accessibility_authorized()
