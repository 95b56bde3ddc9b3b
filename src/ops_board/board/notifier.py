"""In-app assignment notifications.

The notifier resolves a stored template by key, substitutes ``{{field}}``
placeholders and appends the result to the target user's feed.  Delivery
problems never reach the caller: they are logged and dropped, and the
mutation that triggered them stands.

:func:`notify_assignment` is the assignment contract shared by tasks and
assets: one notification to the new assignee when responsibility actually
changes hands, none otherwise.
"""

from __future__ import annotations

import re
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from loguru import logger

from ..constants import NOTIFICATION_FEED_LIMIT, TEMPLATE_TASK_ASSIGNED
from ..config import get_notification_config
from ..io_utils import FileLock, _atomic_write_yaml, _load_data_with_error
from ..utils import _generate_id, _now_iso
from .errors import NotificationError

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z0-9_.]+)\s*\}\}")


def render_template(text: str, data: Mapping[str, Any]) -> str:
    """Substitute ``{{field}}`` placeholders; unknown fields become empty strings."""

    def _sub(match: re.Match[str]) -> str:
        value = data.get(match.group(1))
        return "" if value is None else str(value)

    return _PLACEHOLDER_RE.sub(_sub, text or "")


@dataclass
class Notification:
    """Represents one entry of a user's notification feed."""

    id: str = field(default_factory=lambda: _generate_id("notif"))
    user_id: str = ""
    title: str = ""
    message: str = ""
    link: str = ""
    template_key: Optional[str] = None
    is_read: bool = False
    created_at: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Notification":
        return cls(
            id=str(data.get("id") or _generate_id("notif")),
            user_id=str(data.get("user_id") or ""),
            title=str(data.get("title") or ""),
            message=str(data.get("message") or ""),
            link=str(data.get("link") or ""),
            template_key=data.get("template_key"),
            is_read=bool(data.get("is_read", False)),
            created_at=str(data.get("created_at") or _now_iso()),
        )


class NotificationFeed:
    """Per-user notification feeds, newest first, capped per user.

    Parameters
    ----------
    path:
        Optional YAML file to persist feeds to (written after each change).
    limit:
        Maximum entries kept per user.
    """

    def __init__(self, path: Optional[Path] = None, limit: int = NOTIFICATION_FEED_LIMIT) -> None:
        self._feeds: dict[str, list[Notification]] = defaultdict(list)
        self._limit = limit
        self._path = Path(path) if path is not None else None
        self._mutex = threading.Lock()
        if self._path is not None:
            self._load()

    def _load(self) -> None:
        if self._path is None:
            return
        data, err = _load_data_with_error(self._path, {})
        if err:
            logger.warning("Ignoring unreadable notification feed: {}", err)
            return
        feeds = data.get("feeds") or {}
        if not isinstance(feeds, dict):
            return
        for user_id, items in feeds.items():
            if isinstance(items, list):
                self._feeds[str(user_id)] = [Notification.from_dict(i) for i in items if isinstance(i, dict)]

    def _save(self) -> None:
        if self._path is None:
            return
        payload = {"feeds": {uid: [n.to_dict() for n in items] for uid, items in self._feeds.items()}}
        with FileLock(self._path.with_suffix(".lock")):
            _atomic_write_yaml(self._path, payload)

    def append(self, notification: Notification) -> Notification:
        if not notification.user_id:
            raise NotificationError("Notification has no target user")
        with self._mutex:
            feed = self._feeds[notification.user_id]
            feed.insert(0, notification)
            del feed[self._limit:]
            self._save()
        return notification

    def list_for(self, user_id: str) -> list[Notification]:
        return list(self._feeds.get(user_id, []))

    def unread_count(self, user_id: str) -> int:
        return sum(1 for n in self._feeds.get(user_id, []) if not n.is_read)

    def mark_read(self, user_id: str, notification_id: str) -> bool:
        with self._mutex:
            for n in self._feeds.get(user_id, []):
                if n.id == notification_id:
                    n.is_read = True
                    self._save()
                    return True
        return False

    def mark_all_read(self, user_id: str) -> int:
        with self._mutex:
            unread = [n for n in self._feeds.get(user_id, []) if not n.is_read]
            if not unread:
                return 0
            for n in unread:
                n.is_read = True
            self._save()
        return len(unread)


class AssignmentNotifier(ABC):
    """Tells a user that something was assigned to them."""

    @abstractmethod
    def notify(self, user_id: str, template_key: str, data: Mapping[str, str]) -> None:
        """Deliver a notification; must never raise."""
        raise NotImplementedError


class TemplateNotifier(AssignmentNotifier):
    """Render stored templates into a :class:`NotificationFeed`."""

    def __init__(
        self,
        templates: Mapping[str, Mapping[str, str]],
        feed: Optional[NotificationFeed] = None,
        enabled: bool = True,
    ) -> None:
        self.templates = {k: dict(v) for k, v in templates.items()}
        self.feed = feed or NotificationFeed()
        self.enabled = enabled

    def render(self, user_id: str, template_key: str, data: Mapping[str, Any]) -> Notification:
        template = self.templates.get(template_key)
        if template is None:
            raise NotificationError(f"Unknown notification template {template_key!r}")
        return Notification(
            user_id=user_id,
            title=render_template(template.get("title", ""), data),
            message=render_template(template.get("message", ""), data),
            link=render_template(template.get("link", ""), data),
            template_key=template_key,
        )

    def notify(self, user_id: str, template_key: str, data: Mapping[str, str]) -> None:
        if not self.enabled:
            logger.debug("Notifications disabled; skipping {} for {}", template_key, user_id)
            return
        try:
            notification = self.render(user_id, template_key, data)
            self.feed.append(notification)
            logger.debug("Notification {} sent to {}", template_key, user_id)
        except Exception as e:
            logger.warning("Failed to send notification {} to {}: {}", template_key, user_id, e)


def create_notifier(config: dict[str, Any], feed: Optional[NotificationFeed] = None) -> TemplateNotifier:
    """Create a template notifier from the board config.

    Args:
        config: Configuration dict (``notifications`` block is optional).
        feed: Feed to append to; an in-memory feed is created when omitted.
    """
    notif_config = get_notification_config(config)
    return TemplateNotifier(notif_config["templates"], feed=feed, enabled=notif_config["enabled"])


# ---------------------------------------------------------------------------
# Assignment contract
# ---------------------------------------------------------------------------

def notify_assignment(
    notifier: AssignmentNotifier,
    subject_id: str,
    subject_label: str,
    old_assignee_id: Optional[str],
    new_assignee_id: Optional[str],
    *,
    template_key: str = TEMPLATE_TASK_ASSIGNED,
    extra: Optional[Mapping[str, str]] = None,
) -> bool:
    """Notify the new assignee of a subject if responsibility changed hands.

    Returns True when a notification was issued.  Nothing is sent to the
    previous assignee, nor when the assignee did not change, nor when the
    subject became unassigned.
    """
    if not new_assignee_id or new_assignee_id == old_assignee_id:
        return False
    data: dict[str, str] = {"subjectId": subject_id, "subjectLabel": subject_label}
    if extra:
        data.update({k: str(v) for k, v in extra.items()})
    notifier.notify(new_assignee_id, template_key, data)
    return True


def notify_bulk_reassignment(
    notifier: AssignmentNotifier,
    subjects: Iterable[tuple[str, str, Optional[str]]],
    new_assignee_id: Optional[str],
    *,
    template_key: str = TEMPLATE_TASK_ASSIGNED,
    extra: Optional[Mapping[str, str]] = None,
) -> int:
    """Apply :func:`notify_assignment` to each ``(id, label, old_assignee)``.

    No batching: N changed subjects produce N notifications.
    """
    sent = 0
    for subject_id, label, old_assignee_id in subjects:
        if notify_assignment(
            notifier,
            subject_id,
            label,
            old_assignee_id,
            new_assignee_id,
            template_key=template_key,
            extra=extra,
        ):
            sent += 1
    return sent
