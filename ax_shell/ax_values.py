"""
AX attribute values as a closed tagged variant.

AXUIElementCopyAttributeValue hands back whatever the app decided to expose:
strings, NSNumber-backed ints/floats/bools, AXValue geometry, arrays, other
elements. normalize_value() folds all of it into one of five cases so display
code has to handle each explicitly and never raises on an odd value.
"""

import numbers
from dataclasses import dataclass
from typing import Union

OPAQUE_PLACEHOLDER = "Complex Value"


@dataclass(frozen=True)
class StringValue:
    text: str

    def display(self) -> str:
        return self.text


@dataclass(frozen=True)
class NumberValue:
    number: Union[int, float]

    def display(self) -> str:
        return str(self.number)


@dataclass(frozen=True)
class BoolValue:
    flag: bool

    def display(self) -> str:
        return "true" if self.flag else "false"


@dataclass(frozen=True)
class OpaqueValue:
    type_name: str

    def display(self) -> str:
        return OPAQUE_PLACEHOLDER


@dataclass(frozen=True)
class Absent:
    def display(self) -> str:
        return ""


AttributeValue = Union[StringValue, NumberValue, BoolValue, OpaqueValue, Absent]

ABSENT = Absent()


def normalize_value(raw) -> AttributeValue:
    """Map a raw provider value onto the variant. Never raises."""
    if raw is None:
        return ABSENT
    # bool before numbers: bool is an int subclass
    if isinstance(raw, bool):
        return BoolValue(raw)
    if isinstance(raw, numbers.Integral):
        return NumberValue(int(raw))
    if isinstance(raw, numbers.Real):
        return NumberValue(float(raw))
    # pyobjc_unicode subclasses str
    if isinstance(raw, str):
        return StringValue(str(raw))
    return OpaqueValue(type(raw).__name__)
