"""USB-tethered camera control through the gphoto2 command line.

Operations are emulated with gphoto2 invocations so the session can treat
this backend like the HTTP one:

    =========================  ==========================================
    Operation                  Command
    =========================  ==========================================
    getApplicationInfo         --get-config cameramodel --get-config deviceversion
    getEvent                   --list-all-config
    get<Setting>               --get-config <key>
    getSupported<Setting>      --get-config <key>  (Choice lines)
    set<Setting>               --set-config <key>=<id>
    actTakePicture             --capture-image-and-download --filename=...
    startLiveview              low-quality capture, then restore settings
    startRecMode/stopRecMode   no-op
    =========================  ==========================================

Zoom and camera-function operations have no gphoto2 equivalent and raise
UnsupportedOperationError.

Config output is block oriented. ``--list-all-config`` prefixes each block
with its ``/main/...`` path, ``--get-config`` prints bare blocks in the
order the keys were requested:

    /main/imgsettings/iso
    Label: ISO Speed
    Type: RADIO
    Current: 100
    Choice: 0 Auto
    Choice: 1 100
    END
"""

from __future__ import annotations

import glob
import os
import re
import subprocess
import tempfile
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from alpha_remote.drivers.errors import (
    ConnectionFailedError,
    ProtocolError,
    UnsupportedOperationError,
)
from alpha_remote.drivers.operations import (
    SETTING_BY_OPERATION,
    SETTINGS,
    Operation,
    Service,
    Setting,
)
from alpha_remote.drivers.process import (
    CommandResult,
    CommandRunner,
    RunningProcess,
    SubprocessRunner,
)
from alpha_remote.drivers.transports.base import RawResult
from alpha_remote.observability import RpcStats, get_logger

logger = get_logger(__name__)

DEFAULT_EXECUTABLE = "gphoto2"
DEFAULT_CONFIG_TIMEOUT_S = 30.0
DEFAULT_CAPTURE_TIMEOUT_S = 300.0

#: Filename pattern handed to --filename: original name and extension.
DEFAULT_FILENAME_PATTERN = "%f.%C"

# gphoto2 --filename tokens; replaced by '*' to find what was written.
_FILENAME_TOKEN = re.compile(r"%(?:[aAbBdHkIljmMSynCfF:]|%)")

_UNSUPPORTED = frozenset(
    {
        Operation.SET_ZOOM_SETTING,
        Operation.ACT_ZOOM,
        Operation.GET_CAMERA_FUNCTION,
        Operation.SET_CAMERA_FUNCTION,
        Operation.AWAIT_TAKE_PICTURE,
    }
)

_NO_OPS = frozenset(
    {Operation.START_REC_MODE, Operation.STOP_REC_MODE, Operation.STOP_LIVEVIEW}
)


@dataclass(slots=True)
class ConfigEntry:
    """One parsed gphoto2 configuration block.

    Attributes:
        name: Leaf name of the config path (``iso``, ``f-number``).
        path: Full ``/main/...`` path when gphoto2 printed one.
        label: Human label.
        type: Widget type (RADIO, MENU, RANGE, TEXT, TOGGLE, DATE).
        current: Current value as printed.
        choices: ``"<index> <label>"`` strings from Choice lines.
        bottom: Lower bound of RANGE widgets.
        top: Upper bound of RANGE widgets.
        step: Increment of RANGE widgets.
    """

    name: str
    path: str = ""
    label: str = ""
    type: str = ""
    current: str | None = None
    choices: list[str] = field(default_factory=list)
    bottom: float | None = None
    top: float | None = None
    step: float | None = None


def _split_blocks(output: str) -> list[list[str]]:
    blocks: list[list[str]] = []
    current: list[str] = []
    has_label = False
    for raw in output.splitlines():
        line = raw.strip()
        if not line or line == "END":
            continue
        starts_block = line.startswith("/main") or (
            line.startswith("Label:") and has_label
        )
        if starts_block and current:
            blocks.append(current)
            current, has_label = [], False
        current.append(line)
        if line.startswith("Label:"):
            has_label = True
    if current:
        blocks.append(current)
    return blocks


def _parse_float(text: str) -> float | None:
    try:
        return float(text)
    except ValueError:
        return None


def parse_config_output(
    output: str, names: Sequence[str] | None = None
) -> dict[str, ConfigEntry]:
    """Parse gphoto2 config output into entries keyed by leaf name.

    Args:
        output: Text printed by ``--get-config`` or ``--list-all-config``.
        names: Requested keys, used to name bare ``--get-config`` blocks.

    Returns:
        Mapping of leaf name to ConfigEntry, in output order.
    """
    entries: dict[str, ConfigEntry] = {}
    for index, block in enumerate(_split_blocks(output)):
        path = block[0] if block[0].startswith("/main") else ""
        if path:
            name = path.rsplit("/", 1)[-1]
        elif names is not None and index < len(names):
            name = names[index]
        else:
            name = f"config{index}"
        entry = ConfigEntry(name=name, path=path)
        for line in block:
            key, sep, value = line.partition(":")
            if not sep:
                continue
            value = value.strip()
            if key == "Label":
                entry.label = value
            elif key == "Type":
                entry.type = value
            elif key == "Current":
                entry.current = value
            elif key == "Choice":
                entry.choices.append(value)
            elif key == "Bottom":
                entry.bottom = _parse_float(value)
            elif key == "Top":
                entry.top = _parse_float(value)
            elif key == "Step":
                entry.step = _parse_float(value)
        entries[name] = entry
    return entries


def _range_choices(entry: ConfigEntry) -> list[str]:
    if entry.bottom is None or entry.top is None or not entry.step:
        return []
    values: list[str] = []
    value = entry.bottom
    while value <= entry.top + 1e-9:
        values.append(f"{round(value, 3):g}")
        value += entry.step
    return values


def file_stamps(pattern: str) -> dict[str, int]:
    """Modification times of the files matching ``pattern``."""
    stamps: dict[str, int] = {}
    for path in glob.glob(pattern):
        try:
            stat = os.stat(path)
        except OSError:
            continue
        if Path(path).is_file():
            stamps[path] = stat.st_mtime_ns
    return stamps


def new_files(pattern: str, before: dict[str, int]) -> list[str]:
    """Files matching ``pattern`` that are new or changed since ``before``."""
    after = file_stamps(pattern)
    return sorted(path for path, stamp in after.items() if before.get(path) != stamp)


def _set_value(params: list[Any] | None) -> str:
    if not params:
        raise ProtocolError("set operation without a value")
    value = params[0]
    if isinstance(value, dict):
        value = next(iter(value.values()))
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


class Gphoto2Background:
    """Detached gphoto2 capture whose output goes to ``result_path``."""

    def __init__(
        self,
        process: RunningProcess,
        result_path: Path,
        file_glob: str,
        before: dict[str, int] | None = None,
    ) -> None:
        self.result_path = result_path
        self._process = process
        self._file_glob = file_glob
        self._before = before or {}

    def done(self) -> bool:
        return self._process.poll() is not None

    def result(self) -> RawResult:
        code = self._process.poll()
        try:
            output = self.result_path.read_text(errors="replace")
        except OSError:
            output = ""
        if code != 0:
            raise ConnectionFailedError(
                "gphoto2 background capture failed",
                returncode=code,
                stdout=output,
            )
        return new_files(self._file_glob, self._before)

    def cancel(self) -> None:
        if self._process.poll() is None:
            self._process.terminate()


class Gphoto2Transport:
    """Transport for cameras attached over USB and driven by gphoto2.

    Args:
        executable: gphoto2 binary name or path.
        runner: Command runner; defaults to a SubprocessRunner with a
            sanitized environment.
        capture_dir: Where captured files are downloaded. A fresh
            temporary directory when None.
        filename_pattern: gphoto2 ``--filename`` pattern inside capture_dir.
        config_timeout: Timeout for config queries and sets.
        capture_timeout: Timeout for captures.
        stats: Optional statistics sink.
    """

    kind = "gphoto2"
    # Exposure compensation choices are already expressed in EV.
    ev_step: float | None = None

    def __init__(
        self,
        executable: str = DEFAULT_EXECUTABLE,
        runner: CommandRunner | None = None,
        capture_dir: Path | None = None,
        filename_pattern: str = DEFAULT_FILENAME_PATTERN,
        config_timeout: float = DEFAULT_CONFIG_TIMEOUT_S,
        capture_timeout: float = DEFAULT_CAPTURE_TIMEOUT_S,
        stats: RpcStats | None = None,
    ) -> None:
        self.executable = executable
        self._runner = runner if runner is not None else SubprocessRunner()
        self._capture_dir = capture_dir
        self.filename_pattern = filename_pattern
        self.config_timeout = config_timeout
        self.capture_timeout = capture_timeout
        self._stats = stats

    @property
    def capture_dir(self) -> Path:
        if self._capture_dir is None:
            self._capture_dir = Path(tempfile.mkdtemp(prefix="alpha-remote-"))
        return self._capture_dir

    # -- command execution -------------------------------------------------

    def _run(
        self, operation: Operation, args: list[str], timeout: float | None = None
    ) -> CommandResult:
        argv = [self.executable, "-q", *args]
        start = time.perf_counter()
        try:
            result = self._runner.run(argv, timeout or self.config_timeout)
        except subprocess.TimeoutExpired as e:
            self._record(operation, start, "timeout")
            raise ConnectionFailedError(
                f"gphoto2 timed out after {e.timeout}s", command=argv
            ) from e
        except OSError as e:
            self._record(operation, start, "not_found")
            raise ConnectionFailedError(
                f"gphoto2 could not be started: {e}", command=argv
            ) from e

        if result.returncode != 0:
            self._record(operation, start, "connection_failed")
            logger.warning(
                "gphoto2 failed",
                operation=operation.value,
                returncode=result.returncode,
                stderr=result.stderr.strip()[:500],
            )
            raise ConnectionFailedError(
                "GPhoto is not available, or camera is not connected.",
                command=argv,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        self._record(operation, start, None)
        logger.debug(
            "gphoto2 call",
            operation=operation.value,
            duration_ms=round((time.perf_counter() - start) * 1000, 1),
        )
        return result

    def _record(
        self, operation: Operation, start: float, error_type: str | None
    ) -> None:
        if self._stats is not None:
            self._stats.record(
                operation.value,
                duration_ms=(time.perf_counter() - start) * 1000,
                success=error_type is None,
                error_type=error_type,
            )

    def get_config(
        self, operation: Operation, *keys: str
    ) -> dict[str, ConfigEntry]:
        """Query ``keys`` (all config when empty) in one invocation."""
        if keys:
            args: list[str] = []
            for key in keys:
                args += ["--get-config", key]
            result = self._run(operation, args)
            return parse_config_output(result.stdout, keys)
        result = self._run(operation, ["--list-all-config"])
        return parse_config_output(result.stdout)

    def capture_args(self, filename: str | None = None) -> list[str]:
        target = filename or str(self.capture_dir / self.filename_pattern)
        return [
            "--capture-image-and-download",
            f"--filename={target}",
            "--force-overwrite",
        ]

    def _capture(self) -> list[str]:
        target = str(self.capture_dir / self.filename_pattern)
        pattern = _FILENAME_TOKEN.sub("*", target)
        before = file_stamps(pattern)
        self._run(
            Operation.ACT_TAKE_PICTURE, self.capture_args(target), self.capture_timeout
        )
        return new_files(pattern, before)

    def _liveview(self) -> str:
        # One reduced-quality shot, then the previous quality and drive mode.
        target = self.capture_dir / "LiveView.jpg"
        config = self.get_config(
            Operation.START_LIVEVIEW, "imagequality", "capturemode"
        )
        before: list[str] = []
        after: list[str] = []
        for key in ("imagequality", "capturemode"):
            entry = config.get(key)
            if entry is None or not entry.choices or entry.current is None:
                continue
            before += ["--set-config", f"{key}=0"]
            after += ["--set-config", f"{key}={entry.current}"]
        self._run(
            Operation.START_LIVEVIEW,
            [*before, *self.capture_args(str(target)), *after],
            self.capture_timeout,
        )
        return str(target)

    # -- status emulation --------------------------------------------------

    @staticmethod
    def build_event(config: dict[str, ConfigEntry]) -> list[dict[str, Any]]:
        """Shape ``--list-all-config`` entries like getEvent records."""
        records: list[dict[str, Any]] = [
            {"type": "cameraStatus", "cameraStatus": "IDLE"},
            {"type": "shootMode", "currentShootMode": "still"},
        ]
        for spec in SETTINGS.values():
            if spec.gphoto2_key is None:
                continue
            entry = config.get(spec.gphoto2_key)
            if entry is None:
                continue
            record: dict[str, Any] = {
                "type": spec.event_type,
                spec.current_key: entry.current,
                "label": entry.label,
            }
            if spec.candidates_key is not None:
                record[spec.candidates_key] = entry.choices or _range_choices(entry)
            records.append(record)
        return records

    # -- Transport ---------------------------------------------------------

    def execute(
        self,
        operation: Operation,
        params: list[Any] | None = None,
        service: Service = Service.CAMERA,
    ) -> RawResult:
        if operation in _UNSUPPORTED or service is not Service.CAMERA:
            raise UnsupportedOperationError(
                f"{operation.value} is not available over gphoto2"
            )
        if operation in _NO_OPS:
            return 0
        if operation is Operation.GET_APPLICATION_INFO:
            config = self.get_config(operation, "cameramodel", "deviceversion")
            model = config.get("cameramodel")
            version = config.get("deviceversion")
            return " ".join(
                e.current for e in (model, version) if e is not None and e.current
            )
        if operation is Operation.GET_VERSIONS:
            return ["1.0"]
        if operation is Operation.GET_AVAILABLE_API_LIST:
            return [
                op.value
                for op in Operation
                if op not in _UNSUPPORTED and op is not Operation.GET_CAMERA_FUNCTION
            ]
        if operation is Operation.GET_EVENT:
            return self.build_event(self.get_config(operation))
        if operation is Operation.ACT_TAKE_PICTURE:
            return self._capture()
        if operation is Operation.START_LIVEVIEW:
            return self._liveview()

        setting = SETTING_BY_OPERATION.get(operation)
        spec = SETTINGS[setting] if setting is not None else None
        if spec is None or spec.gphoto2_key is None:
            raise UnsupportedOperationError(
                f"{operation.value} is not available over gphoto2"
            )
        key = spec.gphoto2_key
        if operation is spec.set_op:
            value = _set_value(params)
            colour_temperature = (
                setting is Setting.WHITE_BALANCE
                and params is not None
                and len(params) > 1
                and params[1] is True
            )
            if colour_temperature:
                raise UnsupportedOperationError(
                    "Colour temperature white balance is not available over gphoto2"
                )
            self._run(operation, ["--set-config", f"{key}={value}"])
            return 0
        entry = self.get_config(operation, key).get(key)
        if entry is None:
            return None
        if operation is spec.supported_op:
            return entry.choices or _range_choices(entry)
        return entry.current

    def start_background(
        self, operation: Operation, result_path: Path
    ) -> Gphoto2Background:
        """Launch a capture as a detached process (own session)."""
        if operation is not Operation.ACT_TAKE_PICTURE:
            raise UnsupportedOperationError(
                f"{operation.value} cannot run in the background over gphoto2"
            )
        target = str(self.capture_dir / self.filename_pattern)
        argv = [self.executable, "-q", *self.capture_args(target)]
        pattern = _FILENAME_TOKEN.sub("*", target)
        before = file_stamps(pattern)
        try:
            process = self._runner.spawn(argv, result_path)
        except OSError as e:
            raise ConnectionFailedError(
                f"gphoto2 could not be started: {e}", command=argv
            ) from e
        logger.info("Background capture launched", command=" ".join(argv))
        return Gphoto2Background(process, result_path, pattern, before)

    def close(self) -> None:
        pass
