"""Closed set of camera operations and the per-setting lookup table.

Every remote call goes through an ``Operation`` member; nothing outside
this module spells a method name as a bare string. Transports dispatch on
the enum (the HTTP transport sends ``operation.value`` on the wire, the
gphoto2 transport maps members onto command lines) and the session looks
up a ``SettingSpec`` to find the get/set/supported operations, the
gphoto2 configuration key and the ``getEvent`` record layout of each
setting.

Example:
    >>> spec = SETTINGS[Setting.ISO]
    >>> spec.set_op.value
    'setIsoSpeedRate'
    >>> spec.gphoto2_key
    'iso'
    >>> Setting.from_name("fnumber") is Setting.APERTURE
    True
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any


class Service(Enum):
    """API namespace, appended to ``<endpoint>/sony/``."""

    CAMERA = "camera"
    AV_CONTENT = "avContent"


class Operation(Enum):
    """Remote operations understood by at least one transport."""

    GET_APPLICATION_INFO = "getApplicationInfo"
    GET_VERSIONS = "getVersions"
    GET_AVAILABLE_API_LIST = "getAvailableApiList"
    START_REC_MODE = "startRecMode"
    STOP_REC_MODE = "stopRecMode"
    ACT_TAKE_PICTURE = "actTakePicture"
    AWAIT_TAKE_PICTURE = "awaitTakePicture"
    GET_EVENT = "getEvent"
    START_LIVEVIEW = "startLiveview"
    STOP_LIVEVIEW = "stopLiveView"

    GET_ISO_SPEED_RATE = "getIsoSpeedRate"
    SET_ISO_SPEED_RATE = "setIsoSpeedRate"
    GET_SUPPORTED_ISO_SPEED_RATE = "getSupportedIsoSpeedRate"
    GET_EXPOSURE_MODE = "getExposureMode"
    SET_EXPOSURE_MODE = "setExposureMode"
    GET_SUPPORTED_EXPOSURE_MODE = "getSupportedExposureMode"
    GET_SELF_TIMER = "getSelfTimer"
    SET_SELF_TIMER = "setSelfTimer"
    GET_SUPPORTED_SELF_TIMER = "getSupportedSelfTimer"
    GET_SHUTTER_SPEED = "getShutterSpeed"
    SET_SHUTTER_SPEED = "setShutterSpeed"
    GET_SUPPORTED_SHUTTER_SPEED = "getSupportedShutterSpeed"
    GET_F_NUMBER = "getFNumber"
    SET_F_NUMBER = "setFNumber"
    GET_SUPPORTED_F_NUMBER = "getSupportedFNumber"
    GET_WHITE_BALANCE = "getWhiteBalance"
    SET_WHITE_BALANCE = "setWhiteBalance"
    GET_SUPPORTED_WHITE_BALANCE = "getSupportedWhiteBalance"
    GET_EXPOSURE_COMPENSATION = "getExposureCompensation"
    SET_EXPOSURE_COMPENSATION = "setExposureCompensation"
    GET_SUPPORTED_EXPOSURE_COMPENSATION = "getSupportedExposureCompensation"
    GET_FOCUS_MODE = "getFocusMode"
    SET_FOCUS_MODE = "setFocusMode"
    GET_SUPPORTED_FOCUS_MODE = "getSupportedFocusMode"
    GET_STILL_QUALITY = "getStillQuality"
    SET_STILL_QUALITY = "setStillQuality"
    GET_SUPPORTED_STILL_QUALITY = "getSupportedStillQuality"

    SET_ZOOM_SETTING = "setZoomSetting"
    ACT_ZOOM = "actZoom"
    GET_CAMERA_FUNCTION = "getCameraFunction"
    SET_CAMERA_FUNCTION = "setCameraFunction"

    @property
    def version(self) -> str:
        """Envelope ``version`` field; getEvent uses the 1.2 record layout."""
        return "1.2" if self is Operation.GET_EVENT else "1.0"

    @property
    def is_capture(self) -> bool:
        return self in (Operation.ACT_TAKE_PICTURE, Operation.AWAIT_TAKE_PICTURE)


#: Error code returned while a long exposure is still running.
LONG_EXPOSURE_ERROR_CODE = 40403


class Setting(Enum):
    """Camera parameters managed by the session."""

    ISO = "iso"
    SHUTTER_SPEED = "shutter_speed"
    APERTURE = "aperture"
    WHITE_BALANCE = "white_balance"
    EXPOSURE_COMPENSATION = "exposure_compensation"
    FOCUS_MODE = "focus_mode"
    SELF_TIMER = "self_timer"
    IMAGE_QUALITY = "image_quality"
    EXPOSURE_MODE = "exposure_mode"
    ZOOM = "zoom"

    @classmethod
    def from_name(cls, name: str | Setting) -> Setting:
        """Resolve a member from its value or one of its short aliases.

        Raises:
            ValueError: If ``name`` is not a known setting.
        """
        if isinstance(name, Setting):
            return name
        key = name.strip().lower().replace("-", "_")
        for member in cls:
            if key == member.value or key in SETTINGS[member].aliases:
                return member
        raise ValueError(f"Unknown setting: {name!r}")


def _single(value: Any) -> list[Any]:
    return [value]


def _as_int(value: Any) -> list[Any]:
    return [int(round(float(value)))]


def _as_number(value: Any) -> list[Any]:
    number = float(value)
    return [int(number) if number.is_integer() else number]


def _as_text(value: Any) -> list[Any]:
    return [value if isinstance(value, str) else f"{value:g}"]


def _white_balance(value: Any) -> list[Any]:
    # Numbers select colour temperature mode, rounded to the 100 K grid.
    if isinstance(value, int | float) and not isinstance(value, bool):
        return ["Color Temperature", True, int(round(value / 100.0)) * 100]
    return [str(value), False, -1]


def _still_quality(value: Any) -> list[Any]:
    return [{"stillQuality": str(value)}]


@dataclass(frozen=True, slots=True)
class SettingSpec:
    """How one setting maps onto the remote API.

    Attributes:
        setting: The setting described.
        get_op: Operation returning the current value, if any.
        set_op: Operation changing the value, if any.
        supported_op: Operation listing candidate values, if any.
        gphoto2_key: gphoto2 configuration name, None when gphoto2 has none.
        event_type: ``type`` of the matching getEvent record.
        current_key: Field of that record holding the current value.
        candidates_key: Field of that record holding candidate values.
        aliases: Short names accepted by ``Setting.from_name``.
        encode: Builds the set-operation ``params`` list from a wire value.
    """

    setting: Setting
    get_op: Operation | None
    set_op: Operation | None
    supported_op: Operation | None
    gphoto2_key: str | None
    event_type: str
    current_key: str
    candidates_key: str | None
    aliases: tuple[str, ...] = ()
    encode: Callable[[Any], list[Any]] = _single


SETTINGS: Mapping[Setting, SettingSpec] = MappingProxyType(
    {
        Setting.ISO: SettingSpec(
            Setting.ISO,
            Operation.GET_ISO_SPEED_RATE,
            Operation.SET_ISO_SPEED_RATE,
            Operation.GET_SUPPORTED_ISO_SPEED_RATE,
            "iso",
            "isoSpeedRate",
            "currentIsoSpeedRate",
            "isoSpeedRateCandidates",
            aliases=("iso_speed_rate",),
            encode=_as_text,
        ),
        Setting.SHUTTER_SPEED: SettingSpec(
            Setting.SHUTTER_SPEED,
            Operation.GET_SHUTTER_SPEED,
            Operation.SET_SHUTTER_SPEED,
            Operation.GET_SUPPORTED_SHUTTER_SPEED,
            "shutterspeed",
            "shutterSpeed",
            "currentShutterSpeed",
            "shutterSpeedCandidates",
            aliases=("shutter", "shutterspeed"),
            encode=_as_text,
        ),
        Setting.APERTURE: SettingSpec(
            Setting.APERTURE,
            Operation.GET_F_NUMBER,
            Operation.SET_F_NUMBER,
            Operation.GET_SUPPORTED_F_NUMBER,
            "f-number",
            "fNumber",
            "currentFNumber",
            "fNumberCandidates",
            aliases=("fnumber", "f_number"),
            encode=_as_text,
        ),
        Setting.WHITE_BALANCE: SettingSpec(
            Setting.WHITE_BALANCE,
            Operation.GET_WHITE_BALANCE,
            Operation.SET_WHITE_BALANCE,
            Operation.GET_SUPPORTED_WHITE_BALANCE,
            "whitebalance",
            "whiteBalance",
            "currentWhiteBalanceMode",
            "whiteBalanceCandidates",
            aliases=("white", "whitebalance", "wb"),
            encode=_white_balance,
        ),
        Setting.EXPOSURE_COMPENSATION: SettingSpec(
            Setting.EXPOSURE_COMPENSATION,
            Operation.GET_EXPOSURE_COMPENSATION,
            Operation.SET_EXPOSURE_COMPENSATION,
            Operation.GET_SUPPORTED_EXPOSURE_COMPENSATION,
            "exposurecompensation",
            "exposureCompensation",
            "currentExposureCompensation",
            "exposureCompensationCandidates",
            aliases=("exp", "ev", "exposurecompensation"),
            encode=_as_number,
        ),
        Setting.FOCUS_MODE: SettingSpec(
            Setting.FOCUS_MODE,
            Operation.GET_FOCUS_MODE,
            Operation.SET_FOCUS_MODE,
            Operation.GET_SUPPORTED_FOCUS_MODE,
            "focusmode",
            "focusMode",
            "currentFocusMode",
            "focusModeCandidates",
            aliases=("focus", "focusmode"),
        ),
        Setting.SELF_TIMER: SettingSpec(
            Setting.SELF_TIMER,
            Operation.GET_SELF_TIMER,
            Operation.SET_SELF_TIMER,
            Operation.GET_SUPPORTED_SELF_TIMER,
            "capturemode",
            "selfTimer",
            "currentSelfTimer",
            "selfTimerCandidates",
            aliases=("timer", "selftimer"),
            encode=_as_int,
        ),
        Setting.IMAGE_QUALITY: SettingSpec(
            Setting.IMAGE_QUALITY,
            Operation.GET_STILL_QUALITY,
            Operation.SET_STILL_QUALITY,
            Operation.GET_SUPPORTED_STILL_QUALITY,
            "imagequality",
            "stillQuality",
            "stillQuality",
            "candidate",
            aliases=("quality", "still_quality", "imagequality"),
            encode=_still_quality,
        ),
        Setting.EXPOSURE_MODE: SettingSpec(
            Setting.EXPOSURE_MODE,
            Operation.GET_EXPOSURE_MODE,
            Operation.SET_EXPOSURE_MODE,
            Operation.GET_SUPPORTED_EXPOSURE_MODE,
            "expprogram",
            "exposureMode",
            "currentExposureMode",
            "exposureModeCandidates",
            aliases=("mode", "pasm", "expprogram"),
        ),
        Setting.ZOOM: SettingSpec(
            Setting.ZOOM,
            None,
            None,
            None,
            None,
            "zoomInformation",
            "zoomPosition",
            None,
        ),
    }
)

#: Reverse lookup used by the gphoto2 transport: operation -> setting.
SETTING_BY_OPERATION: Mapping[Operation, Setting] = MappingProxyType(
    {
        op: spec.setting
        for spec in SETTINGS.values()
        for op in (spec.get_op, spec.set_op, spec.supported_op)
        if op is not None
    }
)
