"""Overlay layout: every input the bridge provisions, in z-order."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .const import FFMPEG_OPTIONS, VIDEO_HEIGHT, VIDEO_WIDTH
from .models import ResourceDescriptor, ResourceKind

COLOR_SOURCE = "ColorSource"
# status bar along the bottom edge
BAR_HEIGHT = 130
BAR_TOP = VIDEO_HEIGHT - BAR_HEIGHT
ROW_1 = BAR_TOP + 15
ROW_2 = BAR_TOP + 70

# key, input name, position
TEXTS = [
    ("chamber_temp", "ChamberTemp", (460, ROW_1)),
    ("bed_temp", "BedTemp", (70, ROW_2)),
    ("target_bed_temp", "TargetBedTemp", (190, ROW_2)),
    ("nozzle_temp", "NozzleTemp", (70, ROW_1)),
    ("target_nozzle_temp", "TargetNozzleTemp", (190, ROW_1)),
    ("percent_complete", "PercentComplete", (1010, ROW_2)),
    ("layers", "Layers", (1260, ROW_2)),
    ("time_remaining", "TimeRemaining", (1010, ROW_1)),
    ("subtask_name", "SubtaskName", (1260, ROW_1)),
    ("stage", "Stage", (1500, ROW_2)),
    ("part_fan", "PartFan", (460, ROW_2)),
    ("aux_fan", "AuxFan", (740, ROW_1)),
    ("chamber_fan", "ChamberFan", (740, ROW_2)),
    ("filament", "Filament", (1560, ROW_1)),
    ("print_weight", "PrintWeight", (1680, ROW_1)),
]

# key, input name, icon file stem, position, scale; toggles have an "<stem>_on.png"
TOGGLE_ICONS = [
    ("nozzle_temp_icon", "NozzleTempIcon", "nozzle_temp", (20, ROW_1), 0.4),
    ("bed_temp_icon", "BedTempIcon", "bed_temp", (20, ROW_2), 0.4),
    ("part_fan_icon", "PartFanIcon", "part_fan", (410, ROW_2), 0.4),
    ("aux_fan_icon", "AuxFanIcon", "aux_fan", (690, ROW_1), 0.4),
    ("chamber_fan_icon", "ChamberFanIcon", "chamber_fan", (690, ROW_2), 0.4),
]

STATIC_ICONS = [
    ("chamber_temp_icon", "ChamberTempIcon", "chamber_temp", (410, ROW_1), 0.4),
    ("time_icon", "TimeIcon", "time", (960, ROW_1), 0.4),
    ("filament_icon", "FilamentIcon", "filament", (1510, ROW_1), 0.4),
]

PREVIEW_KEY = "preview_image"


@dataclass
class Layout:
    stream: ResourceDescriptor
    backdrop: ResourceDescriptor
    inputs: List[ResourceDescriptor] = field(default_factory=list)
    keys: Dict[str, str] = field(default_factory=dict)  # key -> input name


def text_settings() -> dict:
    return {"text": "", "font": {"face": "Arial", "size": 36, "style": "regular"}}


def image_settings(path: str) -> dict:
    return {"file": path, "linear_alpha": True, "unload": True}


def build_layout(image_dir: str | Path, stream_source: str, path_to_sdp: Optional[str]) -> Layout:
    images = Path(image_dir).resolve()

    stream = ResourceDescriptor(
        name=stream_source,
        kind=ResourceKind.VIDEO,
        z_index=0,
        settings={
            "ffmpeg_options": FFMPEG_OPTIONS,
            "hw_decode": True,
            "input": f"file:{path_to_sdp}" if path_to_sdp else "",
            "is_local_file": False,
            "reconnect_delay_sec": 2,
        },
        scale=1.0,
        transform={
            "boundsType": "OBS_BOUNDS_SCALE_INNER",
            "boundsAlignment": 0,
            "boundsWidth": VIDEO_WIDTH,
            "boundsHeight": VIDEO_HEIGHT,
        },
    )
    backdrop = ResourceDescriptor(
        name=COLOR_SOURCE,
        kind=ResourceKind.COLOR,
        position=(0, BAR_TOP),
        z_index=1,
        settings={"color": 0xF0000000, "width": VIDEO_WIDTH, "height": BAR_HEIGHT},
    )
    layout = Layout(stream=stream, backdrop=backdrop)

    # z-index 0 and 1 belong to the stream and the backdrop
    z = 2
    for key, name, pos in TEXTS:
        layout.inputs.append(
            ResourceDescriptor(name=name, kind=ResourceKind.TEXT, position=pos, z_index=z, settings=text_settings())
        )
        layout.keys[key] = name
        z += 1

    for key, name, stem, pos, scale in TOGGLE_ICONS:
        off = str(images / f"{stem}.png")
        layout.inputs.append(
            ResourceDescriptor(
                name=name,
                kind=ResourceKind.IMAGE,
                position=pos,
                scale=scale,
                z_index=z,
                settings=image_settings(off),
                icon_path=off,
                enabled_icon_path=str(images / f"{stem}_on.png"),
            )
        )
        layout.keys[key] = name
        z += 1

    # the "on" file is overwritten with each new job's thumbnail
    placeholder = str(images / "preview_placeholder.png")
    layout.inputs.append(
        ResourceDescriptor(
            name="PreviewImage",
            kind=ResourceKind.IMAGE,
            position=(VIDEO_WIDTH - 140, BAR_TOP + 2),
            scale=0.25,
            z_index=z,
            settings=image_settings(placeholder),
            icon_path=placeholder,
            enabled_icon_path=str(images / "preview.png"),
        )
    )
    layout.keys[PREVIEW_KEY] = "PreviewImage"
    z += 1

    for key, name, stem, pos, scale in STATIC_ICONS:
        path = str(images / f"{stem}.png")
        layout.inputs.append(
            ResourceDescriptor(
                name=name,
                kind=ResourceKind.IMAGE,
                position=pos,
                scale=scale,
                z_index=z,
                settings=image_settings(path),
                icon_path=path,
            )
        )
        layout.keys[key] = name
        z += 1

    return layout
