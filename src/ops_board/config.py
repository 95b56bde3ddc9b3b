"""Load optional board configuration from `.ops_board/config.yaml`."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from .constants import (
    CONFIG_FILE,
    CYCLE_POLICIES,
    CYCLE_POLICY_TOLERATE,
    DEFAULT_STAGES,
    DEFAULT_TEMPLATES,
    MISSING_DEPENDENCY_LOCKED,
    MISSING_DEPENDENCY_POLICIES,
    STATE_DIR_NAME,
)
from .io_utils import _load_data_with_error


def load_board_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional board config file.

    Args:
        project_dir: Directory holding the `.ops_board/` state directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    project_dir = Path(project_dir).resolve()
    path = project_dir / STATE_DIR_NAME / CONFIG_FILE
    if not path.exists():
        return {}, None
    data, err = _load_data_with_error(path, {})
    if err:
        return {}, err
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def get_dependency_config(config: dict[str, Any]) -> dict[str, str]:
    """Extract the dependency policy block.

    Unknown values fall back to the observed behavior: missing dependencies
    keep a task locked and cycles are tolerated.
    """
    raw = _get_nested(config, "dependencies")
    raw = raw if isinstance(raw, dict) else {}
    missing = raw.get("missing_dependency")
    cycles = raw.get("cycle_policy")
    return {
        "missing_dependency": missing if missing in MISSING_DEPENDENCY_POLICIES else MISSING_DEPENDENCY_LOCKED,
        "cycle_policy": cycles if cycles in CYCLE_POLICIES else CYCLE_POLICY_TOLERATE,
    }


def get_notification_config(config: dict[str, Any]) -> dict[str, Any]:
    """Extract the notifications block, merging user templates over the built-ins."""
    raw = _get_nested(config, "notifications")
    raw = raw if isinstance(raw, dict) else {}
    templates: dict[str, dict[str, str]] = {k: dict(v) for k, v in DEFAULT_TEMPLATES.items()}
    user_templates = raw.get("templates")
    if isinstance(user_templates, dict):
        for key, tpl in user_templates.items():
            if isinstance(tpl, dict):
                templates[str(key)] = {
                    "title": str(tpl.get("title") or ""),
                    "message": str(tpl.get("message") or ""),
                    "link": str(tpl.get("link") or ""),
                }
    enabled = raw.get("enabled", True)
    return {"enabled": bool(enabled), "templates": templates}


def get_board_config(config: dict[str, Any]) -> dict[str, Any]:
    """Extract the board block (default stages seeded for new projects)."""
    raw = _get_nested(config, "board", "default_stages")
    stages: list[dict[str, Any]] = []
    if isinstance(raw, list):
        for idx, item in enumerate(raw, start=1):
            if not isinstance(item, dict) or not str(item.get("name") or "").strip():
                continue
            try:
                order = int(item.get("order", idx))
            except (TypeError, ValueError):
                order = idx
            stages.append(
                {
                    "name": str(item["name"]).strip(),
                    "order": order,
                    "description": item.get("description"),
                }
            )
    if not stages:
        stages = [dict(s) for s in DEFAULT_STAGES]
    return {"default_stages": stages}
