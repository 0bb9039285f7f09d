"""Decoding of ``getEvent`` payloads into a StatusSnapshot.

A getEvent result is a positional list with one slot per record type.
Slots the camera has nothing to report for are ``null`` or ``[]``, some
records arrive wrapped in a one-element list, and a few records carry
their value under a key named after their own type:

    [
        {"type": "cameraStatus", "cameraStatus": "IDLE"},
        null,
        [{"type": "storageInformation", "storageID": "Memory Card 1"}],
        {"type": "isoSpeedRate", "currentIsoSpeedRate": "AUTO",
         "isoSpeedRateCandidates": ["AUTO", "100"]},
    ]

``normalize`` walks the list once, keys records by type and fills the
per-setting values from ``SETTINGS``. The snapshot is immutable and
rebuilt from scratch on every refresh.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from alpha_remote.drivers.operations import SETTINGS, Setting
from alpha_remote.drivers.transports import collapse_single

__all__ = ["StatusSnapshot", "normalize"]


def _empty_mapping() -> Mapping[Any, Any]:
    return MappingProxyType({})


@dataclass(frozen=True, slots=True)
class StatusSnapshot:
    """Decoded camera state.

    Attributes:
        camera_status: ``IDLE``, ``StillCapturing``, ... or None if absent.
        zoom_position: Zoom position 0-100, or None.
        shoot_mode: ``still``, ``movie``, ... or None.
        values: Current value per reported setting. Settings the camera
            did not report have no key.
        candidates: Candidate list per setting that reported one.
        records: Every typed record keyed by its ``type``.
        unsorted: Entries that carried no usable ``type``.
    """

    camera_status: str | None = None
    zoom_position: int | None = None
    shoot_mode: str | None = None
    values: Mapping[Setting, Any] = field(default_factory=_empty_mapping)
    candidates: Mapping[Setting, tuple[Any, ...]] = field(
        default_factory=_empty_mapping
    )
    records: Mapping[str, Any] = field(default_factory=_empty_mapping)
    unsorted: tuple[Any, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.records and not self.unsorted

    def value(self, setting: Setting) -> Any:
        return self.values.get(setting)


def _is_blank(item: Any) -> bool:
    return item is None or (isinstance(item, list | tuple | dict) and not item)


def _unwrap_record(record: dict[str, Any]) -> tuple[str, Any] | None:
    kind = record.get("type")
    if not isinstance(kind, str) or not kind:
        return None
    if kind != "type" and kind in record:
        return kind, collapse_single(record[kind])
    return kind, record


def _field(record: Any, key: str | None) -> Any:
    if key is None:
        return None
    if isinstance(record, Mapping):
        return record.get(key)
    return None


def normalize(raw: Any) -> StatusSnapshot:
    """Build a StatusSnapshot from a getEvent result.

    Args:
        raw: The (already collapsed) getEvent result. None or an empty
            list yields an empty snapshot.

    Returns:
        Snapshot holding only the settings the camera reported.

    Example:
        >>> snap = normalize([{"type": "cameraStatus", "cameraStatus": "IDLE"}])
        >>> snap.camera_status
        'IDLE'
        >>> normalize([]).is_empty
        True
    """
    if raw is None:
        items: list[Any] = []
    elif isinstance(raw, list | tuple):
        items = list(raw)
    else:
        items = [raw]

    records: dict[str, Any] = {}
    unsorted: list[Any] = []
    for item in items:
        if _is_blank(item):
            continue
        item = collapse_single(item)
        if _is_blank(item):
            continue
        unwrapped = _unwrap_record(item) if isinstance(item, dict) else None
        if unwrapped is None:
            unsorted.append(item)
            continue
        kind, value = unwrapped
        records[kind] = value

    values: dict[Setting, Any] = {}
    candidates: dict[Setting, tuple[Any, ...]] = {}
    for setting, spec in SETTINGS.items():
        if spec.event_type not in records:
            continue
        record = records[spec.event_type]
        if isinstance(record, Mapping):
            current = record.get(spec.current_key)
            found = _field(record, spec.candidates_key)
            if isinstance(found, list | tuple):
                candidates[setting] = tuple(found)
        else:
            # Unwrapped scalar records are the current value itself.
            current = record
        if current is not None:
            values[setting] = current

    camera_status = records.get("cameraStatus")
    if isinstance(camera_status, Mapping):
        camera_status = camera_status.get("cameraStatus")
    zoom = values.get(Setting.ZOOM)

    return StatusSnapshot(
        camera_status=camera_status if isinstance(camera_status, str) else None,
        zoom_position=int(zoom) if isinstance(zoom, int | float) else None,
        shoot_mode=_field(records.get("shootMode"), "currentShootMode"),
        values=MappingProxyType(values),
        candidates=MappingProxyType(candidates),
        records=MappingProxyType(records),
        unsorted=tuple(unsorted),
    )
