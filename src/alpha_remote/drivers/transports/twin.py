"""Offline transport replaying a recorded Camera Remote API state.

Used when the camera cannot be reached at connect time. The transport
loads a persisted ``getEvent`` response (the packaged
``data/offline_event.json`` unless a path is configured) and answers every
query from it, so the session keeps working in a reduced, clearly flagged
mode. Setters update an in-memory copy of the records. Captures and live
view frames are synthetic JPEG images rendered with OpenCV.

Example:
    transport = OfflineTransport()
    transport.execute(Operation.GET_ISO_SPEED_RATE)             # 'AUTO'
    transport.execute(Operation.SET_ISO_SPEED_RATE, ["400"])
    transport.execute(Operation.GET_ISO_SPEED_RATE)             # '400'
"""

from __future__ import annotations

import copy
import json
import tempfile
import threading
from pathlib import Path
from typing import Any

import cv2
import numpy as np

from alpha_remote.drivers.errors import ProtocolError, UnsupportedOperationError
from alpha_remote.drivers.operations import (
    SETTING_BY_OPERATION,
    SETTINGS,
    Operation,
    Service,
    Setting,
)
from alpha_remote.drivers.transports.base import RawResult, collapse_single
from alpha_remote.drivers.transports.http_rpc import EXPOSURE_COMPENSATION_STEP
from alpha_remote.observability import get_logger

logger = get_logger(__name__)

#: Packaged reference payload.
DEFAULT_SNAPSHOT_PATH = (
    Path(__file__).resolve().parent.parent.parent / "data" / "offline_event.json"
)

#: White balance modes reported by getSupportedWhiteBalance.
_WHITE_BALANCE_MODES: tuple[str, ...] = (
    "Auto WB",
    "Daylight",
    "Shade",
    "Cloudy",
    "Incandescent",
    "Fluorescent: Warm White (-1)",
    "Fluorescent: Cool White (0)",
    "Fluorescent: Day White (+1)",
    "Fluorescent: Daylight (+2)",
    "Flash",
    "Color Temperature",
)

_FRAME_SIZE = (426, 640)  # rows, cols
_JPEG_QUALITY = 85
_ZOOM_STEP = 10
_CARD_SETTINGS = (
    Setting.EXPOSURE_MODE,
    Setting.SHUTTER_SPEED,
    Setting.APERTURE,
    Setting.ISO,
)


def load_snapshot(path: Path | None = None) -> list[Any]:
    """Read a recorded getEvent response and return its record list.

    Accepts either the full response object (``{"result": [...]}``) or a
    bare record list.

    Raises:
        ProtocolError: File missing or not a getEvent payload.
    """
    source = path or DEFAULT_SNAPSHOT_PATH
    try:
        payload = json.loads(Path(source).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ProtocolError(f"Cannot load offline snapshot {source}: {e}") from e
    records = payload.get("result") if isinstance(payload, dict) else payload
    if not isinstance(records, list):
        raise ProtocolError(f"Offline snapshot {source} holds no record list")
    return records


def render_frame(lines: list[str]) -> bytes:
    """Draw a simple test card with ``lines`` of text and JPEG-encode it."""
    rows, cols = _FRAME_SIZE
    gradient = np.linspace(40, 200, cols, dtype=np.uint8)
    img = np.zeros((rows, cols, 3), dtype=np.uint8)
    img[:, :, 0] = gradient
    img[:, :, 1] = gradient[::-1]
    img[:, :, 2] = 90
    cv2.rectangle(img, (20, 20), (cols - 20, rows - 20), (255, 255, 255), 1)
    for index, text in enumerate(lines):
        cv2.putText(
            img,
            text,
            (40, 60 + 32 * index),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.7,
            (255, 255, 255),
            1,
            cv2.LINE_AA,
        )
    ok, jpeg = cv2.imencode(".jpg", img, [cv2.IMWRITE_JPEG_QUALITY, _JPEG_QUALITY])
    if not ok:
        raise ProtocolError("JPEG encoding failed")
    return jpeg.tobytes()


class OfflineBackground:
    """Background job that completed before it was returned."""

    def __init__(self, result_path: Path) -> None:
        self.result_path = result_path

    def done(self) -> bool:
        return True

    def result(self) -> RawResult:
        try:
            payload = json.loads(self.result_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise ProtocolError(f"Unreadable background result: {e}") from e
        return collapse_single(payload["result"])

    def cancel(self) -> None:
        pass


class OfflineTransport:
    """Transport answering from a recorded getEvent payload.

    Args:
        snapshot_path: Alternate recorded payload.
        output_dir: Where synthetic captures are written. A fresh temporary
            directory when None.
    """

    kind = "offline"
    ev_step: float | None = EXPOSURE_COMPENSATION_STEP

    def __init__(
        self, snapshot_path: Path | None = None, output_dir: Path | None = None
    ) -> None:
        self.snapshot_path = snapshot_path or DEFAULT_SNAPSHOT_PATH
        self._records = load_snapshot(snapshot_path)
        self._output_dir = output_dir
        self._counter = 0
        self._lock = threading.Lock()
        logger.info("Offline snapshot loaded", path=str(self.snapshot_path))

    @property
    def output_dir(self) -> Path:
        if self._output_dir is None:
            self._output_dir = Path(tempfile.mkdtemp(prefix="alpha-remote-offline-"))
        return self._output_dir

    def _record(self, event_type: str) -> dict[str, Any] | None:
        for item in self._records:
            record = collapse_single(item) if isinstance(item, list) else item
            if isinstance(record, dict) and record.get("type") == event_type:
                return record
        return None

    def _write_frame(self, prefix: str) -> str:
        with self._lock:
            self._counter += 1
            number = self._counter
        settings = []
        for setting in _CARD_SETTINGS:
            spec = SETTINGS[setting]
            record = self._record(spec.event_type) or {}
            settings.append(f"{spec.event_type}: {record.get(spec.current_key)}")
        path = self.output_dir / f"{prefix}{number:04d}.jpg"
        path.write_bytes(render_frame(["alpha-remote offline", *settings]))
        return str(path)

    def _supported(self, setting: Setting) -> Any:
        spec = SETTINGS[setting]
        if setting is Setting.WHITE_BALANCE:
            return [
                {"whiteBalanceMode": mode, "colorTemperatureRange": []}
                for mode in _WHITE_BALANCE_MODES
            ]
        record = self._record(spec.event_type)
        if record is None:
            return []
        if setting is Setting.EXPOSURE_COMPENSATION:
            return [
                [record.get("maxExposureCompensation", 0)],
                [record.get("minExposureCompensation", 0)],
                [record.get("stepIndexOfExposureCompensation", 1)],
            ]
        return list(record.get(spec.candidates_key or "", []))

    def _set(self, setting: Setting, params: list[Any] | None) -> int:
        if not params:
            raise ProtocolError("set operation without a value")
        spec = SETTINGS[setting]
        record = self._record(spec.event_type)
        if record is None:
            record = {"type": spec.event_type}
            self._records.append(record)
        value = params[0]
        if isinstance(value, dict):
            value = value.get(spec.current_key, next(iter(value.values())))
        record[spec.current_key] = value
        if setting is Setting.WHITE_BALANCE and len(params) > 2:
            record["currentColorTemperature"] = params[2]
        return 0

    def execute(
        self,
        operation: Operation,
        params: list[Any] | None = None,
        service: Service = Service.CAMERA,
    ) -> RawResult:
        logger.debug("Offline call", operation=operation.value)
        if operation is Operation.GET_EVENT:
            return copy.deepcopy(self._records)
        if operation is Operation.GET_APPLICATION_INFO:
            return ["Offline Replay", "2.40"]
        if operation is Operation.GET_VERSIONS:
            return ["1.0", "1.1", "1.2"]
        if operation is Operation.GET_AVAILABLE_API_LIST:
            record = self._record("availableApiList") or {}
            return list(record.get("names", []))
        if operation in (
            Operation.START_REC_MODE,
            Operation.STOP_REC_MODE,
            Operation.STOP_LIVEVIEW,
            Operation.SET_ZOOM_SETTING,
        ):
            return 0
        if operation in (Operation.ACT_TAKE_PICTURE, Operation.AWAIT_TAKE_PICTURE):
            return [self._write_frame("DSC")]
        if operation is Operation.START_LIVEVIEW:
            return self._write_frame("liveview")
        if operation is Operation.ACT_ZOOM:
            record = self._record("zoomInformation")
            if record is not None:
                direction = params[0] if params else "in"
                delta = _ZOOM_STEP if direction == "in" else -_ZOOM_STEP
                position = int(record.get("zoomPosition", 0)) + delta
                record["zoomPosition"] = max(0, min(100, position))
            return 0
        if operation is Operation.GET_CAMERA_FUNCTION:
            return (self._record("cameraFunction") or {}).get("currentCameraFunction")
        if operation is Operation.SET_CAMERA_FUNCTION:
            record = self._record("cameraFunction")
            if record is not None and params:
                record["currentCameraFunction"] = params[0]
            return 0

        setting = SETTING_BY_OPERATION.get(operation)
        if setting is None:
            raise UnsupportedOperationError(f"{operation.value} has no offline answer")
        spec = SETTINGS[setting]
        if operation is spec.set_op:
            return self._set(setting, params)
        if operation is spec.supported_op:
            return self._supported(setting)
        record = self._record(spec.event_type)
        return None if record is None else record.get(spec.current_key)

    def start_background(
        self, operation: Operation, result_path: Path
    ) -> OfflineBackground:
        result = self.execute(operation)
        result_path.write_text(json.dumps({"id": 1, "result": [result]}))
        return OfflineBackground(result_path)

    def close(self) -> None:
        pass
