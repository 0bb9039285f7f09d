"""Value translation and image helpers."""

from alpha_remote.utils.image import FrameGrabber, OpenCVFrameGrabber
from alpha_remote.utils.values import (
    DEFAULT_F_NUMBERS,
    DEFAULT_SHUTTER_SPEEDS,
    Choice,
    display_exposure_mode,
    expand_exposure_mode,
    exposure_compensation_values,
    format_shutter_speed,
    label_of,
    resolve_to_wire_value,
)

__all__ = [
    "Choice",
    "DEFAULT_F_NUMBERS",
    "DEFAULT_SHUTTER_SPEEDS",
    "FrameGrabber",
    "OpenCVFrameGrabber",
    "display_exposure_mode",
    "expand_exposure_mode",
    "exposure_compensation_values",
    "format_shutter_speed",
    "label_of",
    "resolve_to_wire_value",
]
