from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .const import IDLE_STAGE, STAGE_NAMES
from .files import NullFileSource, PrintFileSource, candidate_paths
from .layout import PREVIEW_KEY
from .obs import ObsNotConnectedError

_LOGGER = logging.getLogger(__name__)

# push_status payloads missing any rendered field are deltas and are skipped
STATUS_FIELDS = (
    "chamber_temper",
    "bed_temper",
    "bed_target_temper",
    "nozzle_temper",
    "nozzle_target_temper",
    "cooling_fan_speed",
    "big_fan1_speed",
    "big_fan2_speed",
    "mc_percent",
    "layer_num",
    "total_layer_num",
    "mc_remaining_time",
    "subtask_name",
    "stg_cur",
)


class MessageKind(enum.Enum):
    PRINT = "print"
    UNKNOWN = "unknown"


@dataclass
class Report:
    kind: MessageKind
    key: str
    body: Any


def parse_report(payload: Any) -> Report:
    """Decode a report; its single top-level key names the message kind."""
    if isinstance(payload, (bytes, bytearray, memoryview)):
        payload = bytes(payload).decode("utf-8")
    data = json.loads(payload)
    if not isinstance(data, dict) or not data:
        raise ValueError("report is not a non-empty JSON object")
    key = next(iter(data))
    try:
        kind = MessageKind(key)
    except ValueError:
        kind = MessageKind.UNKNOWN
    return Report(kind, key, data[key])


def is_status_update(body: Any) -> bool:
    return (
        isinstance(body, dict)
        and body.get("command") == "push_status"
        and all(k in body for k in STATUS_FIELDS)
    )


# ---------- Snapshot ----------

def _num(x, default=0.0) -> float:
    try:
        return float(x)
    except (TypeError, ValueError):
        return default


def _int(x, default=0) -> int:
    try:
        return int(float(x))
    except (TypeError, ValueError):
        return default


@dataclass
class Tray:
    tray_type: str = ""
    tray_color: str = ""


def _current_tray(body: dict) -> Optional[Tray]:
    """Resolve ``ams.tray_now``: 255 = nothing loaded, 254 = external spool."""
    ams = body.get("ams")
    if not isinstance(ams, dict):
        return None
    tray_now = _int(ams.get("tray_now"), 255)
    if tray_now == 255:
        return None
    if tray_now == 254:
        raw = body.get("vt_tray")
    else:
        unit_id, slot_id = divmod(tray_now, 4)
        raw = None
        for unit in ams.get("ams") or []:
            if _int(unit.get("id"), -1) != unit_id:
                continue
            for tray in unit.get("tray") or []:
                if _int(tray.get("id"), -1) == slot_id:
                    raw = tray
    if not isinstance(raw, dict):
        return None
    return Tray(tray_type=str(raw.get("tray_type") or ""), tray_color=str(raw.get("tray_color") or ""))


@dataclass
class PrintStatus:
    chamber_temper: float = 0.0
    bed_temper: float = 0.0
    bed_target_temper: float = 0.0
    nozzle_temper: float = 0.0
    nozzle_target_temper: float = 0.0
    # fan levels arrive as text on a 0-15 scale
    cooling_fan_speed: str = "0"
    big_fan1_speed: str = "0"
    big_fan2_speed: str = "0"
    mc_percent: int = 0
    layer_num: int = 0
    total_layer_num: int = 0
    mc_remaining_time: int = 0
    subtask_name: str = ""
    stage: int = IDLE_STAGE
    tray: Optional[Tray] = None

    @property
    def is_idle(self) -> bool:
        return self.stage == IDLE_STAGE

    @property
    def stage_name(self) -> str:
        return STAGE_NAMES.get(self.stage, f"Unknown stage ({self.stage})")

    @classmethod
    def from_report(cls, body: dict) -> "PrintStatus":
        stage = _int(body.get("stg_cur"), IDLE_STAGE)
        if stage == 255:
            stage = IDLE_STAGE
        return cls(
            chamber_temper=_num(body.get("chamber_temper")),
            bed_temper=_num(body.get("bed_temper")),
            bed_target_temper=_num(body.get("bed_target_temper")),
            nozzle_temper=_num(body.get("nozzle_temper")),
            nozzle_target_temper=_num(body.get("nozzle_target_temper")),
            cooling_fan_speed=str(body.get("cooling_fan_speed", "0")),
            big_fan1_speed=str(body.get("big_fan1_speed", "0")),
            big_fan2_speed=str(body.get("big_fan2_speed", "0")),
            mc_percent=_int(body.get("mc_percent")),
            layer_num=_int(body.get("layer_num")),
            total_layer_num=_int(body.get("total_layer_num")),
            mc_remaining_time=_int(body.get("mc_remaining_time")),
            subtask_name=str(body.get("subtask_name") or ""),
            stage=stage,
            tray=_current_tray(body),
        )


# ---------- Presentation ----------

def format_number(value: float) -> str:
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return f"{value:.1f}"


def format_temperature(value: float) -> str:
    return f"{format_number(value)} °C"


def format_target_temperature(target: float) -> str:
    if target == 0:
        return ""
    return f" / {format_number(target)} °C"


def format_time_remaining(minutes: int) -> str:
    minutes = max(0, int(minutes))
    if minutes >= 60:
        hours, minutes = divmod(minutes, 60)
        return f"-{hours}h{minutes}m"
    return f"-{minutes}m"


def fan_is_on(speed: str) -> bool:
    return speed != "0"


def fan_speed_percent(speed: str) -> int:
    level = _int(speed)
    # the slicer shows fan levels in steps of 10%
    return int(round(level / 1.5)) * 10


# ---------- Projector ----------

class TelemetryProjector:
    """Turns printer reports into overlay text and icon updates."""

    def __init__(
        self,
        reconciler: Any,
        files: Optional[PrintFileSource] = None,
        *,
        logger: Optional[logging.Logger] = None,
    ):
        self._reconciler = reconciler
        self._files = files or NullFileSource()
        self._log = logger or _LOGGER
        self._last_layer: Optional[int] = None
        self._subtask_name: Optional[str] = None

    async def project(self, payload: Any, overlay: Any) -> Optional[PrintStatus]:
        """Apply one report to the overlay. Returns the snapshot if it was a full status."""
        report = parse_report(payload)
        if report.kind is MessageKind.PRINT:
            return await self._project_print(report.body, overlay)
        elif report.kind is MessageKind.UNKNOWN:
            self._log.debug("Unknown message type: %s", report.key)
        return None

    async def _project_print(self, body: Any, overlay: Any) -> Optional[PrintStatus]:
        if overlay is None or not is_status_update(body):
            return None

        p = PrintStatus.from_report(body)
        r = self._reconciler
        h = overlay.get

        await r.update_text(h("chamber_temp"), format_temperature(p.chamber_temper))
        await r.update_text(h("bed_temp"), format_temperature(p.bed_temper))
        await r.update_text(h("target_bed_temp"), format_target_temperature(p.bed_target_temper))
        await r.update_text(h("nozzle_temp"), format_temperature(p.nozzle_temper))
        await r.update_text(h("target_nozzle_temp"), format_target_temperature(p.nozzle_target_temper))
        await r.set_icon_state(h("bed_temp_icon"), p.bed_target_temper > 0)
        await r.set_icon_state(h("nozzle_temp_icon"), p.nozzle_target_temper > 0)

        percent_msg = f"{p.mc_percent}% complete"
        layer_msg = f"Layers: {p.layer_num}/{p.total_layer_num}"
        await r.update_text(h("percent_complete"), percent_msg)
        await r.update_text(h("layers"), layer_msg)
        if self._last_layer != p.layer_num:
            self._log.info("%s: %s", percent_msg, layer_msg)
            self._last_layer = p.layer_num

        await r.update_text(h("time_remaining"), format_time_remaining(p.mc_remaining_time))
        await r.update_text(h("subtask_name"), f"Model: {p.subtask_name}")
        await r.update_text(h("stage"), f"Stage: {p.stage_name}")

        await r.update_text(h("part_fan"), f"Part: {fan_speed_percent(p.cooling_fan_speed)}%")
        await r.update_text(h("aux_fan"), f"Aux: {fan_speed_percent(p.big_fan1_speed)}%")
        await r.update_text(h("chamber_fan"), f"Chamber: {fan_speed_percent(p.big_fan2_speed)}%")
        await r.set_icon_state(h("part_fan_icon"), fan_is_on(p.cooling_fan_speed))
        await r.set_icon_state(h("aux_fan_icon"), fan_is_on(p.big_fan1_speed))
        await r.set_icon_state(h("chamber_fan_icon"), fan_is_on(p.big_fan2_speed))

        if p.tray is not None:
            await r.update_text(h("filament"), p.tray.tray_type)

        if p.subtask_name and p.subtask_name != self._subtask_name:
            self._subtask_name = p.subtask_name
            await self._lookup_print_file(p.subtask_name, overlay)

        return p

    # ---------- Print file side path ----------

    async def determine_file_location(self, subtask_name: str) -> Optional[str]:
        for path in candidate_paths(subtask_name):
            if await self._files.file_exists(path):
                self._log.info("Found print file at: %s", path)
                return path
        self._log.warning("Couldn't find location of print file '%s.3mf'", subtask_name)
        return None

    async def _lookup_print_file(self, subtask_name: str, overlay: Any) -> None:
        try:
            location = await self.determine_file_location(subtask_name)
        except Exception:
            self._log.exception("Failed to locate print file '%s'", subtask_name)
            location = None
        if not location:
            self._log.warning("Image preview and print weight unavailable.")
            return
        await self._update_preview(location, overlay.get(PREVIEW_KEY))
        await self._update_weight(location, overlay.get("print_weight"))

    async def _update_preview(self, location: str, handle: Any) -> None:
        if handle is None or not handle.descriptor.enabled_icon_path:
            return
        self._log.info("Getting %s from printer", location)
        try:
            data = await self._files.get_thumbnail(location)
            if not data:
                self._log.warning("No image preview in %s", location)
                return
            Path(handle.descriptor.enabled_icon_path).write_bytes(data)
            # same path as before, so force OBS to reload the file
            await self._reconciler.set_icon_state(handle, True, refresh=True)
            self._log.info("Updated image preview")
        except ObsNotConnectedError:
            raise
        except Exception:
            self._log.exception("Failed to get image preview")

    async def _update_weight(self, location: str, handle: Any) -> None:
        try:
            weight = await self._files.get_print_weight(location)
        except Exception:
            self._log.exception("Failed to get print weight")
            return
        if weight is None:
            self._log.warning("Print weight unavailable for %s", location)
            return
        await self._reconciler.update_text(handle, f"{weight}g")
