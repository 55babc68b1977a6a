"""Configuration module for the CUA test harness."""
from config.models import (
    BrowserConfig,
    DecisionConfig,
    HarnessConfig,
    LoginConfig,
    LoopConfig,
    PlannerConfig,
    ReportingConfig,
    ReviewConfig,
    load_config,
)

__all__ = [
    "BrowserConfig",
    "DecisionConfig",
    "HarnessConfig",
    "LoginConfig",
    "LoopConfig",
    "PlannerConfig",
    "ReportingConfig",
    "ReviewConfig",
    "load_config",
]
