"""Translation between caller-facing setting values and wire values.

Cameras describe legal values in three shapes, and the same caller value
must resolve against all of them:

- bare values: ``["AUTO", "100", "200"]`` or ``[0, 2, 10]``
- id/label pairs: ``[Choice("ISO400", "400"), Choice("AUTO", "AUTO")]``
- gphoto2 choice lines: ``["0 Auto", "1 100", "2 200"]``

``resolve_to_wire_value`` scans the availability list in order and the
first entry that matches wins. Lists with near-duplicate labels depend on
that order, so it is never re-sorted.

Example:
    >>> resolve_to_wire_value("400", [Choice("ISO400", "400"), Choice("AUTO", "AUTO")])
    'ISO400'
    >>> resolve_to_wire_value("200", ["0 Auto", "1 100", "2 200"])
    '2'
    >>> resolve_to_wire_value("P", ["Program Auto", "Aperture"])
    'Program Auto'
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from types import MappingProxyType
from typing import Any, NamedTuple

__all__ = [
    "Choice",
    "DEFAULT_F_NUMBERS",
    "DEFAULT_SHUTTER_SPEEDS",
    "EXPOSURE_MODE_CODES",
    "display_exposure_mode",
    "ev_from_index",
    "ev_to_index",
    "expand_exposure_mode",
    "exposure_compensation_values",
    "format_shutter_speed",
    "label_of",
    "resolve_to_wire_value",
]


class Choice(NamedTuple):
    """Availability entry whose transmitted id differs from its label."""

    id: Any
    label: Any


#: Single-letter exposure program codes and the camera's long names.
EXPOSURE_MODE_CODES = MappingProxyType(
    {"P": "Program Auto", "A": "Aperture", "S": "Shutter", "M": "Manual"}
)
_CODES_BY_NAME = MappingProxyType({v: k for k, v in EXPOSURE_MODE_CODES.items()})

#: Used when a camera reports no aperture candidates.
DEFAULT_F_NUMBERS: tuple[str, ...] = (
    "2.8", "3.5", "4.0", "4.5", "5.0", "5.6", "6.3", "7.1",
    "8.0", "9.0", "10", "11", "13", "16", "20", "22",
)  # fmt: skip

#: Used when a camera reports no shutter speed candidates.
DEFAULT_SHUTTER_SPEEDS: tuple[str, ...] = (
    '30"', '25"', '20"', '15"', '10"', '5"', '4"', '3"', '2"', '1"',
    "1/10", "1/30", "1/60", "1/125", "1/250", "1/400", "1/1000",
)  # fmt: skip


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def _equal(a: Any, b: Any) -> bool:
    """Compare numerically when both sides parse, else as stripped strings."""
    na, nb = _as_number(a), _as_number(b)
    if na is not None and nb is not None:
        return math.isclose(na, nb, rel_tol=1e-9, abs_tol=1e-9)
    return str(a).strip() == str(b).strip()


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


def _wire_form(value: Any) -> Any:
    # Numbers travel as strings; "3 400" style entries keep only the id.
    number = _as_number(value) if not isinstance(value, str) else None
    if number is not None:
        return _format_number(number)
    text = str(value)
    parts = text.split(None, 1)
    if parts and _as_number(parts[0]) is not None:
        return parts[0]
    return text


def _candidates(text: str) -> list[str]:
    alias = EXPOSURE_MODE_CODES.get(text) or _CODES_BY_NAME.get(text)
    return [text, alias] if alias else [text]


def _match(entry: Any, candidates: Sequence[str]) -> Any:
    """Return the matched part of ``entry`` or None."""
    if isinstance(entry, Choice):
        if any(_equal(entry.label, c) for c in candidates):
            return entry.id
        return None
    if isinstance(entry, int | float) and not isinstance(entry, bool):
        if any(_equal(entry, c) for c in candidates):
            return entry
        return None
    text = str(entry).strip()
    parts = text.split(None, 1)
    if len(parts) == 2:
        token, remainder = parts
        if any(_equal(remainder, c) for c in candidates):
            return token
        if any(_equal(token, c) for c in candidates):
            return token
    if any(_equal(text, c) for c in candidates):
        return text
    return None


def resolve_to_wire_value(requested: Any, availability: Iterable[Any] | None) -> Any:
    """Map a caller value onto the identifier the transport sends.

    Args:
        requested: Caller value: label, id, number, or a one-element
            list/tuple wrapping one.
        availability: Legal values in camera order. None is treated as
            an empty list.

    Returns:
        The wire value of the first matching entry. Without a match the
        value itself: stringified when numeric, else its first token when
        that token is numeric, else its string form. A duration that
        carried a seconds mark is tried with and without it and keeps it
        when nothing matches.

    Example:
        >>> resolve_to_wire_value(2, [0, 2, 10])
        '2'
        >>> resolve_to_wire_value("Auto WB", ["Auto WB", "Daylight"])
        'Auto WB'
        >>> resolve_to_wire_value('2\\\\"', ["0 30", "1 2", "2 1/60"])
        '1'
    """
    value = requested
    while isinstance(value, list | tuple) and len(value) == 1:
        value = value[0]
    raw_text = str(value).strip()
    text = raw_text.replace('\\"', "")
    seconds = text != raw_text or text.endswith('"')
    text = text.rstrip('"').strip()
    candidates = _candidates(text)
    if seconds:
        # gphoto2 lists durations bare, Sony lists them as 2"
        candidates.append(f'{text}"')
    for entry in availability or ():
        matched = _match(entry, candidates)
        if matched is not None:
            return _wire_form(matched)
    if isinstance(value, int | float) and not isinstance(value, bool):
        return _format_number(float(value))
    if seconds:
        return f'{text}"'
    return _wire_form(text)


def label_of(entry: Any) -> Any:
    """Caller-facing label of an availability entry.

    Example:
        >>> label_of("3 400")
        '400'
        >>> label_of(Choice("ISO400", "400"))
        '400'
        >>> label_of("Auto WB")
        'Auto WB'
    """
    if isinstance(entry, Choice):
        return entry.label
    if isinstance(entry, str):
        parts = entry.split(None, 1)
        if len(parts) == 2 and parts[0].isdigit():
            return parts[1]
    return entry


def display_exposure_mode(value: Any) -> Any:
    """``"Program Auto"`` -> ``"P"``; other values unchanged."""
    if isinstance(value, str):
        return _CODES_BY_NAME.get(value, value)
    return value


def expand_exposure_mode(value: Any) -> Any:
    """``"p"`` -> ``"Program Auto"``; other values unchanged."""
    if isinstance(value, str):
        return EXPOSURE_MODE_CODES.get(value.strip().upper(), value)
    return value


def format_shutter_speed(seconds: float) -> str:
    """Render an exposure time in camera notation.

    Example:
        >>> format_shutter_speed(2)
        '2"'
        >>> format_shutter_speed(0.01)
        '1/100'
    """
    if seconds <= 0:
        raise ValueError(f"Exposure time must be positive: {seconds}")
    if seconds >= 1:
        return f'{math.ceil(round(seconds, 6))}"'
    return f"1/{math.ceil(round(1.0 / seconds, 6))}"


def _scalar(value: Any) -> Any:
    while isinstance(value, list | tuple) and len(value) == 1:
        value = value[0]
    return value


def exposure_compensation_values(raw: Any, ev_step: float) -> list[int]:
    """Turn a ``[max, min, step]`` index triple into whole EV values.

    Args:
        raw: Triple as returned by getSupportedExposureCompensation; each
            member may be wrapped in a one-element list.
        ev_step: EV per index step.

    Returns:
        Ascending whole EV values reachable in the index range.

    Example:
        >>> exposure_compensation_values([[15], [-15], [1]], 1 / 3)
        [-5, -4, -3, -2, -1, 0, 1, 2, 3, 4, 5]
    """
    if not isinstance(raw, list | tuple) or len(raw) < 3:
        return []
    try:
        top, bottom, step = (int(_scalar(v)) for v in raw[:3])
    except (TypeError, ValueError):
        return []
    step = max(step, 1)
    values: list[int] = []
    for index in range(bottom, top + 1, step):
        ev = round(index * ev_step)
        if ev not in values:
            values.append(ev)
    return values


def ev_to_index(ev: Any, ev_step: float) -> int:
    """Nearest exposure-compensation index for ``ev``."""
    return round(float(ev) / ev_step)


def ev_from_index(index: Any, ev_step: float) -> int | float:
    """EV for a reported index, as an int when it falls on a whole stop."""
    ev = round(float(index) * ev_step, 1)
    return int(ev) if ev.is_integer() else ev
