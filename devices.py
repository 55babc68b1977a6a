"""Device profile catalog for controllable browser targets."""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional

import yaml

from exceptions import ProfileNotFound, TaskLoadError

Platform = Literal["desktop", "ios", "android"]
PLATFORMS = ("desktop", "ios", "android")


@dataclass(frozen=True)
class DeviceProfile:
    """Named viewport, input capability and platform for one target."""

    name: str
    platform: Platform
    viewport_width: int
    viewport_height: int
    device_scale_factor: float
    user_agent: str
    is_mobile: bool = True
    has_touch: bool = True

    @property
    def viewport(self) -> Dict[str, int]:
        return {"width": self.viewport_width, "height": self.viewport_height}

    @property
    def touch_capable(self) -> bool:
        return self.has_touch

    def to_dict(self) -> Dict[str, Any]:
        """Client-facing description of the profile."""
        return {
            "name": self.name,
            "platform": self.platform,
            "viewport": self.viewport,
            "userAgent": self.user_agent,
            "deviceScaleFactor": self.device_scale_factor,
            "isMobile": self.is_mobile,
            "hasTouch": self.has_touch,
        }


_IOS_17_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
_IOS_16_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 16_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/16.0 Mobile/15E148 Safari/604.1"
)

DEFAULT_DEVICES: List[DeviceProfile] = [
    DeviceProfile("iPhone 15 Pro", "ios", 393, 852, 3, _IOS_17_UA),
    DeviceProfile("iPhone 14", "ios", 390, 844, 3, _IOS_16_UA),
    DeviceProfile("iPhone SE", "ios", 375, 667, 2, _IOS_16_UA),
    DeviceProfile(
        "Samsung Galaxy S24",
        "android",
        360,
        780,
        3,
        "Mozilla/5.0 (Linux; Android 14; SM-S921B) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36",
    ),
    DeviceProfile(
        "Samsung Galaxy S23",
        "android",
        360,
        780,
        3,
        "Mozilla/5.0 (Linux; Android 13; SM-S911B) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/112.0.0.0 Mobile Safari/537.36",
    ),
    DeviceProfile(
        "Google Pixel 8",
        "android",
        412,
        915,
        2.625,
        "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36",
    ),
    DeviceProfile(
        "Desktop Chrome",
        "desktop",
        1440,
        900,
        1,
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
        is_mobile=False,
        has_touch=False,
    ),
]


def _profile_from_dict(name: str, data: Mapping[str, Any]) -> DeviceProfile:
    """Build a profile from a file entry (camelCase or snake_case keys)."""
    platform = data.get("platform")
    if platform not in PLATFORMS:
        raise TaskLoadError(f"Device {name} has invalid platform: {platform!r}")
    viewport = data.get("viewport") or {}
    try:
        width = int(viewport.get("width", data.get("viewport_width")))
        height = int(viewport.get("height", data.get("viewport_height")))
    except (TypeError, ValueError) as exc:
        raise TaskLoadError(f"Device {name} needs a viewport width and height") from exc
    is_mobile = data.get("isMobile", data.get("is_mobile", platform != "desktop"))
    has_touch = data.get("hasTouch", data.get("has_touch", platform != "desktop"))
    return DeviceProfile(
        name=name,
        platform=platform,
        viewport_width=width,
        viewport_height=height,
        device_scale_factor=float(data.get("deviceScaleFactor", data.get("device_scale_factor", 1))),
        user_agent=str(data.get("userAgent", data.get("user_agent", ""))),
        is_mobile=bool(is_mobile),
        has_touch=bool(has_touch),
    )


class DeviceCatalog:
    """Read-only mapping from device name to profile."""

    def __init__(self, profiles: Optional[Iterable[DeviceProfile]] = None):
        entries = {p.name: p for p in (DEFAULT_DEVICES if profiles is None else profiles)}
        self._profiles: Mapping[str, DeviceProfile] = MappingProxyType(entries)

    @classmethod
    def from_file(cls, path: Path, include_defaults: bool = True) -> "DeviceCatalog":
        """Load extra profiles from a YAML/JSON file keyed by device name."""
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise TaskLoadError(f"Failed to read devices file: {exc}", file_path=str(path)) from exc

        try:
            if path.suffix in {".yaml", ".yml"}:
                raw = yaml.safe_load(text) or {}
            else:
                raw = json.loads(text)
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise TaskLoadError(f"Failed to parse devices file: {exc}", file_path=str(path)) from exc

        if isinstance(raw, list):
            raw = {str(item.get("name")): item for item in raw if isinstance(item, dict)}
        if not isinstance(raw, dict):
            raise TaskLoadError("Devices file must be a mapping or a list", file_path=str(path))

        profiles = {p.name: p for p in DEFAULT_DEVICES} if include_defaults else {}
        for name, data in raw.items():
            profiles[name] = _profile_from_dict(name, data)
        return cls(profiles.values())

    def list(self) -> List[str]:
        return list(self._profiles)

    def get(self, name: str) -> DeviceProfile:
        profile = self._profiles.get(name)
        if profile is None:
            raise ProfileNotFound(name, self._profiles.keys())
        return profile

    def __contains__(self, name: object) -> bool:
        return name in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)

    def describe(self) -> List[Dict[str, Any]]:
        return [p.to_dict() for p in self._profiles.values()]


default_catalog = DeviceCatalog()
