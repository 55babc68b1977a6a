"""Unit tests for the device profile catalog."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from devices import DEFAULT_DEVICES, DeviceCatalog, DeviceProfile, default_catalog
from exceptions import ProfileNotFound, TaskLoadError


class TestDefaultCatalog:
    """Tests for the built-in profiles."""

    def test_lists_every_default_device(self):
        assert default_catalog.list() == [p.name for p in DEFAULT_DEVICES]
        assert len(default_catalog) == len(DEFAULT_DEVICES)

    def test_iphone_14_profile(self):
        profile = default_catalog.get("iPhone 14")
        assert profile.platform == "ios"
        assert profile.viewport == {"width": 390, "height": 844}
        assert profile.touch_capable is True
        assert "iPhone" in profile.user_agent

    def test_desktop_profile_is_pointer_only(self):
        profile = default_catalog.get("Desktop Chrome")
        assert profile.platform == "desktop"
        assert profile.touch_capable is False
        assert profile.is_mobile is False

    def test_names_are_unique(self):
        names = [p.name for p in DEFAULT_DEVICES]
        assert len(names) == len(set(names))

    def test_unknown_device_raises(self):
        with pytest.raises(ProfileNotFound) as exc_info:
            default_catalog.get("Nokia 3310")
        assert exc_info.value.device_name == "Nokia 3310"
        assert "iPhone 14" in exc_info.value.available
        assert "Available devices:" in str(exc_info.value)

    def test_contains(self):
        assert "Google Pixel 8" in default_catalog
        assert "Nokia 3310" not in default_catalog

    def test_catalog_is_read_only(self):
        with pytest.raises(TypeError):
            default_catalog._profiles["Fake"] = DEFAULT_DEVICES[0]

    def test_profiles_are_frozen(self):
        with pytest.raises(Exception):
            default_catalog.get("iPhone 14").viewport_width = 10

    def test_describe_uses_client_keys(self):
        entry = next(d for d in default_catalog.describe() if d["name"] == "iPhone 14")
        assert entry["viewport"] == {"width": 390, "height": 844}
        assert entry["hasTouch"] is True
        assert entry["isMobile"] is True
        assert entry["deviceScaleFactor"] == 3


class TestCatalogFromFile:
    """Tests for loading extra profiles from disk."""

    def test_yaml_entries_are_added(self, temp_dir: Path):
        devices_file = temp_dir / "devices.yaml"
        devices_file.write_text(
            """
Tablet:
  platform: android
  viewport: {width: 800, height: 1280}
  deviceScaleFactor: 2
  userAgent: Tablet UA
"""
        )
        catalog = DeviceCatalog.from_file(devices_file)

        tablet = catalog.get("Tablet")
        assert tablet.viewport == {"width": 800, "height": 1280}
        assert tablet.touch_capable is True
        assert "iPhone 14" in catalog

    def test_json_list_without_defaults(self, temp_dir: Path):
        devices_file = temp_dir / "devices.json"
        devices_file.write_text(
            json.dumps([{"name": "Laptop", "platform": "desktop", "viewport_width": 1280, "viewport_height": 720}])
        )
        catalog = DeviceCatalog.from_file(devices_file, include_defaults=False)

        assert catalog.list() == ["Laptop"]
        assert catalog.get("Laptop").touch_capable is False

    def test_invalid_platform_rejected(self, temp_dir: Path):
        devices_file = temp_dir / "devices.yaml"
        devices_file.write_text("Watch:\n  platform: wearos\n  viewport: {width: 200, height: 200}\n")

        with pytest.raises(TaskLoadError):
            DeviceCatalog.from_file(devices_file)

    def test_missing_viewport_rejected(self, temp_dir: Path):
        devices_file = temp_dir / "devices.yaml"
        devices_file.write_text("Phone:\n  platform: ios\n")

        with pytest.raises(TaskLoadError):
            DeviceCatalog.from_file(devices_file)

    def test_missing_file(self, temp_dir: Path):
        with pytest.raises(TaskLoadError):
            DeviceCatalog.from_file(temp_dir / "absent.yaml")

    def test_custom_profile_instances(self):
        profile = DeviceProfile("Mini", "ios", 320, 568, 2, "UA")
        catalog = DeviceCatalog([profile])
        assert catalog.get("Mini") is profile
