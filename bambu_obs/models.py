from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"  # terminal


class ResourceKind(enum.Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    COLOR = "color"


@dataclass
class ResourceDescriptor:
    """Declared shape of one OBS input. ``name`` is the idempotency key."""

    name: str
    kind: ResourceKind
    position: Tuple[float, float] = (0.0, 0.0)
    scale: Optional[float] = None
    z_index: Optional[int] = None
    # kind-specific input settings sent on creation
    settings: Dict[str, Any] = field(default_factory=dict)
    # extra scene-item transform keys (bounds etc.)
    transform: Dict[str, Any] = field(default_factory=dict)
    # image inputs: the default ("off") file and, for toggles, the "on" file
    icon_path: Optional[str] = None
    enabled_icon_path: Optional[str] = None

    def icon_for(self, enabled: bool) -> Optional[str]:
        if enabled and self.enabled_icon_path:
            return self.enabled_icon_path
        return self.icon_path

    def scene_item_transform(self) -> Dict[str, Any]:
        t: Dict[str, Any] = {"positionX": self.position[0], "positionY": self.position[1]}
        if self.scale is not None:
            t["scaleX"] = self.scale
            t["scaleY"] = self.scale
        t.update(self.transform)
        return t


@dataclass
class InputHandle:
    """A provisioned input plus the last settings we know it holds."""

    descriptor: ResourceDescriptor
    settings: Dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.descriptor.name
