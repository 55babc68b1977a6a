"""Filesystem-backed loader for test session requests."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml

from exceptions import TaskLoadError, TaskValidationError
from session_types import SessionRequest


def _as_text(value: Any, task_id: str, field: str) -> str:
    """Accept a string or a list of lines."""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, list):
        return "\n".join(str(item).strip() for item in value if str(item).strip())
    raise TaskValidationError(
        f"{field} must be a string or list, got {type(value).__name__}",
        task_id=task_id,
        field=field,
    )


def _user_info_text(value: Any, task_id: str) -> Optional[str]:
    """User info may be free text or a mapping rendered as key: value lines."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return "\n".join(f"{k}: {v}" for k, v in value.items())
    raise TaskValidationError("user_info must be a string or mapping", task_id=task_id, field="user_info")


def parse_request(data: Dict[str, Any], fallback_id: str, default_device: Optional[str] = None) -> SessionRequest:
    """Parse a dictionary into a SessionRequest."""
    if not isinstance(data, dict):
        raise TaskLoadError("Request payload must be a mapping")

    task_id = str(data.get("id") or fallback_id)

    raw_case = data.get("test_case") or data.get("task") or data.get("steps")
    if not raw_case:
        raise TaskValidationError("Request is missing a 'test_case' field", task_id=task_id, field="test_case")
    test_case = _as_text(raw_case, task_id, "test_case")

    url = data.get("url") or data.get("start_url")
    if not url:
        raise TaskValidationError("Request is missing a 'url' field", task_id=task_id, field="url")

    device = data.get("device") or data.get("device_name") or default_device
    if not device:
        raise TaskValidationError("Request is missing a 'device' field", task_id=task_id, field="device")

    user_name = data.get("user_name") or data.get("userName") or data.get("username")
    password = data.get("password")
    login_required = bool(data.get("login_required", data.get("loginRequired", False)))
    if login_required and not (user_name and password):
        raise TaskValidationError(
            "Login requires both 'user_name' and 'password'",
            task_id=task_id,
            field="password" if user_name else "user_name",
        )

    return SessionRequest(
        id=task_id,
        test_case=test_case,
        url=str(url),
        device_name=str(device),
        user_info=_user_info_text(data.get("user_info") or data.get("userInfo"), task_id),
        notes=data.get("notes"),
        login_required=login_required,
        user_name=str(user_name) if user_name else None,
        password=str(password) if password else None,
    )


def load_request_file(path: Path, default_device: Optional[str] = None) -> SessionRequest:
    """Load a single request file (YAML or JSON)."""
    try:
        raw = path.read_text(encoding="utf-8")
        if path.suffix.lower() in {".yml", ".yaml"}:
            data = yaml.safe_load(raw)
        else:
            data = json.loads(raw)
        return parse_request(data, fallback_id=path.stem, default_device=default_device)
    except (TaskLoadError, TaskValidationError):
        raise
    except Exception as exc:
        raise TaskLoadError(f"Failed to load request file: {exc}", file_path=str(path)) from exc


def discover_requests(
    requests_dir: Path,
    only_ids: Optional[Iterable[str]] = None,
    default_device: Optional[str] = None,
) -> List[SessionRequest]:
    """Load every YAML/JSON request in a directory, optionally filtered by id."""
    requests_dir = requests_dir.expanduser().resolve()

    if not requests_dir.exists():
        raise TaskLoadError(f"Requests directory does not exist: {requests_dir}")

    id_filter = set(only_ids or [])
    paths = (
        sorted(requests_dir.glob("*.yaml"))
        + sorted(requests_dir.glob("*.yml"))
        + sorted(requests_dir.glob("*.json"))
    )

    found: List[SessionRequest] = []
    for path in paths:
        request = load_request_file(path, default_device=default_device)
        if id_filter and request.id not in id_filter:
            continue
        found.append(request)

    if id_filter:
        missing = id_filter - {r.id for r in found}
        if missing:
            raise TaskLoadError(f"Requests not found: {', '.join(sorted(missing))}")

    return found
