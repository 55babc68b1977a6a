"""Pydantic configuration models for the CUA test harness."""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator


# Load .env file if present
load_dotenv()


DEFAULT_CHROMIUM_ARGS = [
    "--disable-web-security",
    "--disable-features=VizDisplayCompositor",
    "--disable-dev-shm-usage",
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-extensions",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--disable-field-trial-config",
    "--disable-back-forward-cache",
    "--disable-ipc-flooding-protection",
    "--enable-features=NetworkService,NetworkServiceInProcess",
    "--force-color-profile=srgb",
    "--metrics-recording-only",
    "--use-mock-keychain",
    "--disable-background-networking",
]


class DecisionConfig(BaseModel):
    """Computer-use model (decision service) configuration."""

    model: str = Field(
        default="computer-use-preview",
        description="Model name used for computer-use turns",
    )
    api_key: Optional[str] = Field(
        default=None,
        description="API key for the model service",
    )
    base_url: Optional[str] = Field(
        default=None,
        description="Optional base URL for an OpenAI-compatible endpoint",
    )
    request_timeout: float = Field(
        default=120.0,
        gt=0,
        le=600,
        description="Per-request timeout in seconds",
    )
    environment: Literal["browser", "mac", "windows", "ubuntu"] = Field(
        default="browser",
        description="Environment hint passed to the computer-use tool",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: Optional[str]) -> Optional[str]:
        """Ensure base_url doesn't have trailing slash."""
        return v.rstrip("/") if v else v

    @model_validator(mode="before")
    @classmethod
    def load_from_env(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Load values from environment variables if not explicitly set."""
        env_mapping = {
            "model": "CUA_MODEL",
            "api_key": "OPENAI_API_KEY",
            "base_url": "OPENAI_BASE_URL",
        }
        for field_name, env_var in env_mapping.items():
            if field_name not in data or data[field_name] is None:
                env_value = os.getenv(env_var)
                if env_value:
                    data[field_name] = env_value
        return data


class ReviewConfig(BaseModel):
    """Reviewer agent configuration."""

    enabled: bool = Field(
        default=True,
        description="Run screenshot reviews alongside the execution loop",
    )
    model: str = Field(
        default="gpt-4o",
        description="Model used by the test script review agent",
    )
    watch_interval_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        le=600,
        description="Interval for the periodic review watcher (None disables it)",
    )

    @model_validator(mode="before")
    @classmethod
    def load_from_env(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Load the review model from the environment if not explicitly set."""
        if data.get("model") is None:
            env_value = os.getenv("CUA_REVIEW_MODEL")
            if env_value:
                data["model"] = env_value
        return data


class PlannerConfig(BaseModel):
    """Test case agent configuration."""

    enabled: bool = Field(
        default=True,
        description="Turn free-form test cases into steps with a model (falls back to local splitting)",
    )
    model: str = Field(
        default="gpt-4o",
        description="Model used by the test case agent",
    )

    @model_validator(mode="before")
    @classmethod
    def load_from_env(cls, data: dict[str, Any]) -> dict[str, Any]:
        """Load the planner model from the environment if not explicitly set."""
        if data.get("model") is None:
            env_value = os.getenv("CUA_PLANNER_MODEL")
            if env_value:
                data["model"] = env_value
        return data


class LoginConfig(BaseModel):
    """Login form selectors used when a request asks for a login step."""

    username_selector: str = Field(
        default='input[name="username"], input[type="email"], #username',
        description="Selector of the user name field",
    )
    password_selector: str = Field(
        default='input[type="password"]',
        description="Selector of the password field",
    )
    submit_selector: str = Field(
        default='button[type="submit"], input[type="submit"]',
        description="Selector of the login button",
    )
    settle_ms: int = Field(
        default=5000,
        ge=0,
        le=60000,
        description="Wait after filling the credentials before the post-login capture",
    )


class BrowserConfig(BaseModel):
    """Browser engine and context baseline configuration."""

    headless: bool = Field(
        default=True,
        description="Run browser in headless mode",
    )
    slow_mo: int = Field(
        default=0,
        ge=0,
        le=5000,
        description="Slow down browser operations by this many ms",
    )
    chromium_args: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CHROMIUM_ARGS),
        description="Extra launch flags for chromium-class engines",
    )
    locale: str = Field(default="en-US", description="Context locale")
    timezone_id: str = Field(default="America/New_York", description="Context timezone")
    permissions: list[str] = Field(
        default_factory=lambda: ["geolocation", "notifications"],
        description="Permissions granted to every context",
    )
    geolocation: dict[str, float] = Field(
        default_factory=lambda: {"latitude": 37.7749, "longitude": -122.4194},
        description="Fixed geolocation reported to pages",
    )
    color_scheme: Literal["light", "dark", "no-preference"] = Field(
        default="light",
        description="Preferred color scheme",
    )

    @field_validator("geolocation")
    @classmethod
    def validate_geolocation(cls, v: dict[str, float]) -> dict[str, float]:
        """Require both latitude and longitude."""
        if "latitude" not in v or "longitude" not in v:
            raise ValueError("geolocation needs latitude and longitude")
        return v


class LoopConfig(BaseModel):
    """Execution loop timing configuration."""

    mobile_settle_ms: int = Field(
        default=1500,
        ge=0,
        le=30000,
        description="Wait after each action on touch devices",
    )
    desktop_settle_ms: int = Field(
        default=500,
        ge=0,
        le=30000,
        description="Wait after each action on pointer devices",
    )
    capture_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Screenshot capture attempts before the session aborts",
    )
    capture_backoff_seconds: float = Field(
        default=2.0,
        ge=0.0,
        le=60.0,
        description="Fixed wait between screenshot capture attempts",
    )
    navigation_settle_ms: int = Field(
        default=3000,
        ge=0,
        le=60000,
        description="Wait after the initial navigation before the first capture",
    )


class ReportingConfig(BaseModel):
    """Screenshot persistence configuration."""

    save_screenshots: bool = Field(
        default=False,
        description="Save screenshots captured during the loop",
    )
    screenshots_folder: Path = Field(
        default=Path("./screenshots"),
        description="Directory for saving screenshots",
    )

    @field_validator("screenshots_folder", mode="before")
    @classmethod
    def convert_to_path(cls, v: Any) -> Path:
        """Convert string to Path."""
        if isinstance(v, str):
            return Path(v)
        return v


class HarnessConfig(BaseModel):
    """Root configuration model combining all config sections."""

    decision: DecisionConfig = Field(default_factory=DecisionConfig)
    review: ReviewConfig = Field(default_factory=ReviewConfig)
    planner: PlannerConfig = Field(default_factory=PlannerConfig)
    login: LoginConfig = Field(default_factory=LoginConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    loop: LoopConfig = Field(default_factory=LoopConfig)
    reporting: ReportingConfig = Field(default_factory=ReportingConfig)

    devices_file: Optional[Path] = Field(
        default=None,
        description="Optional YAML/JSON file with extra device profiles",
    )
    verbose: bool = Field(
        default=False,
        description="Enable verbose logging",
    )

    @classmethod
    def from_flat_dict(cls, data: dict[str, Any]) -> "HarnessConfig":
        """Create config from a flat dictionary."""
        sections = {
            "decision": {"model", "api_key", "base_url", "request_timeout", "environment"},
            "review": {"enabled", "watch_interval_seconds"},
            "browser": {
                "headless", "slow_mo", "chromium_args", "locale",
                "timezone_id", "permissions", "geolocation", "color_scheme",
            },
            "loop": {
                "mobile_settle_ms", "desktop_settle_ms", "capture_attempts",
                "capture_backoff_seconds", "navigation_settle_ms",
            },
            "reporting": {"save_screenshots", "screenshots_folder"},
            "login": {"username_selector", "password_selector", "submit_selector"},
        }
        prefixed = {
            "review_model": ("review", "model"),
            "planner_model": ("planner", "model"),
            "planner_enabled": ("planner", "enabled"),
            "login_settle_ms": ("login", "settle_ms"),
        }

        nested: dict[str, Any] = {name: {} for name in sections}
        nested["planner"] = {}

        for key, value in data.items():
            if key in prefixed:
                section, field = prefixed[key]
                nested[section][field] = value
                continue
            if key in ("devices_file", "verbose"):
                nested[key] = value
                continue
            for section, keys in sections.items():
                if key in keys:
                    nested[section][key] = value
                    break

        return cls.model_validate(nested)


def load_config(
    config_path: Optional[Path] = None,
    cli_overrides: Optional[dict[str, Any]] = None,
) -> HarnessConfig:
    """
    Load configuration from file with CLI overrides.

    Priority (highest to lowest):
    1. CLI arguments
    2. Environment variables
    3. Config file
    4. Defaults
    """
    config_data: dict[str, Any] = {}

    if config_path is None:
        config_path = Path("config.json")

    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            if config_path.suffix in {".yaml", ".yml"}:
                import yaml
                config_data = yaml.safe_load(f) or {}
            else:
                config_data = json.load(f)

    # Flat files name model settings at the top level
    is_flat = any(key in config_data for key in ["model", "api_key", "headless"])

    if is_flat:
        config = HarnessConfig.from_flat_dict(config_data)
    else:
        config = HarnessConfig.model_validate(config_data)

    if cli_overrides:
        config_dict = config.model_dump()
        _apply_overrides(config_dict, cli_overrides)
        config = HarnessConfig.model_validate(config_dict)

    return config


def _apply_overrides(config_dict: dict[str, Any], overrides: dict[str, Any]) -> None:
    """Apply CLI overrides to config dictionary."""
    override_mapping = {
        "headless": ("browser", "headless"),
        "headful": ("browser", "headless"),  # inverted
        "model": ("decision", "model"),
        "review_model": ("review", "model"),
        "no_review": ("review", "enabled"),  # inverted
        "no_planner": ("planner", "enabled"),  # inverted
        "watch_interval": ("review", "watch_interval_seconds"),
        "save_screenshots": ("reporting", "save_screenshots"),
        "devices_file": ("devices_file", None),
        "verbose": ("verbose", None),
    }

    for key, value in overrides.items():
        if value is None:
            continue

        if key == "headful":
            config_dict["browser"]["headless"] = not value
            continue
        if key == "no_review":
            config_dict["review"]["enabled"] = not value
            continue
        if key == "no_planner":
            config_dict["planner"]["enabled"] = not value
            continue

        mapping = override_mapping.get(key)
        if mapping:
            section, field = mapping
            if field is None:
                config_dict[section] = value
            else:
                config_dict[section][field] = value
