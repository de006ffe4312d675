"""
AX Shell Errors
===============

Error kinds raised by the navigation engine. Every error carries a one-line
message and an actionable hint; the shell prints both and keeps running.

Kinds:
- OperationTimeout: an external call exceeded its deadline (outcome unknown)
- ProviderError: the accessibility API answered, but with a failure
- NotFound / IndexOutOfRange: no application, window or element matched
- InvalidSelector: malformed path, index or #id
- ContextError: no application / window / element selected yet
- ValidationError: bad configuration or argument values

The numeric codes keep the bands used by the CLI tools this shell grew out of.
"""

from typing import Optional

# Error code bands
CODE_UNKNOWN = 1
CODE_INVALID_ARGUMENT = 2
CODE_ELEMENT_NOT_FOUND = 200
CODE_INVALID_ELEMENT_STATE = 203
CODE_UNSUPPORTED_ACTION = 204
CODE_OPERATION_TIMEOUT = 300
CODE_OPERATION_FAILED = 301
CODE_APPLICATION_NOT_FOUND = 400
CODE_WINDOW_NOT_FOUND = 500


class AXShellError(Exception):
    """Base error: message plus a hint the shell shows on the next line."""

    code = CODE_UNKNOWN
    default_hint = "Check the error details and try again."

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint or self.default_hint

    def __str__(self):
        return self.message


class OperationTimeout(AXShellError, TimeoutError):
    """External call did not finish in time. It may still complete later."""

    code = CODE_OPERATION_TIMEOUT
    default_hint = ("The application may be busy or hung. Try again, or raise the "
                    "timeout with --timeout.")

    def __init__(self, operation: str, duration: float, hint: Optional[str] = None):
        super().__init__(f"Operation '{operation}' timed out after {duration:g} seconds", hint)
        self.operation = operation
        self.duration = duration


class ProviderError(AXShellError):
    """Accessibility API returned an error for a completed call."""

    code = CODE_OPERATION_FAILED
    default_hint = "The accessibility API rejected the request. Use 'refresh' and retry."

    def __init__(self, message: str, hint: Optional[str] = None, ax_error: Optional[int] = None,
                 code: Optional[int] = None):
        super().__init__(message, hint)
        self.ax_error = ax_error
        if code is not None:
            self.code = code


class NotFound(AXShellError):
    """No application, window or element matched a selector."""

    code = CODE_ELEMENT_NOT_FOUND
    default_hint = "Use 'tree' to see valid IDs, or 'elements' to list children."

    def __init__(self, message: str, hint: Optional[str] = None, code: Optional[int] = None):
        super().__init__(message, hint)
        if code is not None:
            self.code = code


class IndexOutOfRange(NotFound):
    """Positional selector outside the candidate list."""

    def __init__(self, index: int, count: int, hint: Optional[str] = None):
        if count:
            message = f"Invalid index: {index} (must be between 0 and {count - 1})"
        else:
            message = f"Invalid index: {index} (nothing to select)"
        super().__init__(message, hint)
        self.index = index
        self.count = count


class InvalidSelector(AXShellError):
    """Malformed path expression, index or #id."""

    code = CODE_INVALID_ARGUMENT
    default_hint = ("Use an index (element 0), an ID (element #12) or a path "
                    "(element window[Main]/button[OK]).")


class ContextError(AXShellError):
    """Command needs a deeper navigation level than the current one."""

    code = CODE_INVALID_ELEMENT_STATE
    default_hint = "Use 'info' to see what is selected."


class ValidationError(AXShellError, ValueError):
    """Invalid argument or configuration value."""

    code = CODE_INVALID_ARGUMENT
    default_hint = "Check the command usage and provide a valid value."

    def __init__(self, name: str, reason: str, hint: Optional[str] = None):
        super().__init__(f"Invalid argument '{name}': {reason}", hint)
        self.name = name
        self.reason = reason
