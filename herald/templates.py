"""Notification templates.

A small registry-backed TemplateRenderer. Templates use ``{{variable}}``
placeholders; a placeholder with no value in the context is left in place
and logged.

Usage:
    from herald.templates import TemplateRegistry

    registry = TemplateRegistry.with_defaults()
    rendered = registry.render("new-article", {"title": "Engines", "author": "Ada"})
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from herald.errors import TemplateNotFoundError
from herald.scheduler.clock import Clock, SystemClock
from herald.scheduler.models import NotificationPayload, RenderedTemplate

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")

# Template categories are singular; user preference switches are plural
PREFERENCE_CATEGORY = {
    "article": "articles",
    "comment": "comments",
}

CATEGORY_ACTIONS: dict[str, list[dict[str, str]]] = {
    "article": [
        {"action": "read", "title": "Read Now", "icon": "/icons/read.png"},
        {"action": "bookmark", "title": "Bookmark", "icon": "/icons/bookmark.png"},
    ],
    "comment": [
        {"action": "reply", "title": "Reply", "icon": "/icons/reply.png"},
        {"action": "view", "title": "View", "icon": "/icons/view.png"},
    ],
    "system": [
        {"action": "acknowledge", "title": "OK", "icon": "/icons/check.png"},
    ],
    "marketing": [
        {"action": "view_offer", "title": "View Offer", "icon": "/icons/offer.png"},
        {"action": "dismiss", "title": "Not Interested", "icon": "/icons/close.png"},
    ],
    "engagement": [
        {"action": "explore", "title": "Explore", "icon": "/icons/explore.png"},
        {"action": "later", "title": "Remind Later", "icon": "/icons/clock.png"},
    ],
}


@dataclass
class NotificationTemplate:
    """A notification template.

    Attributes:
        id: Template reference used when scheduling.
        name: Display name.
        title: Title with ``{{variable}}`` placeholders.
        body: Body with ``{{variable}}`` placeholders.
        category: article, comment, system, marketing or engagement.
        icon: Icon URL.
        variables: Variables the template expects.
        default_data: Data merged into the payload; string values are interpolated.
        require_interaction: Keep the notification visible until acted on.
    """

    id: str
    name: str
    title: str
    body: str
    category: str
    icon: str | None = None
    variables: list[str] = field(default_factory=list)
    default_data: dict[str, Any] = field(default_factory=dict)
    require_interaction: bool = False

    @property
    def preference_category(self) -> str:
        """Name of the user preference switch governing this template."""
        return PREFERENCE_CATEGORY.get(self.category, self.category)


DEFAULT_TEMPLATES = [
    NotificationTemplate(
        id="new-article",
        name="New Article Published",
        title="New Article: {{title}}",
        body='A new article "{{title}}" has been published by {{author}}',
        icon="/icons/article-icon.png",
        category="article",
        variables=["title", "author"],
        default_data={"url": "/articles/{{slug}}"},
    ),
    NotificationTemplate(
        id="comment-reply",
        name="Comment Reply",
        title="New reply to your comment",
        body='{{author}} replied to your comment on "{{articleTitle}}"',
        icon="/icons/comment-icon.png",
        category="comment",
        variables=["author", "articleTitle"],
        default_data={"url": "/articles/{{articleSlug}}#comment-{{commentId}}"},
    ),
    NotificationTemplate(
        id="system-maintenance",
        name="System Maintenance",
        title="Scheduled Maintenance",
        body="System maintenance scheduled for {{date}} at {{time}}",
        icon="/icons/system-icon.png",
        category="system",
        variables=["date", "time"],
        require_interaction=True,
    ),
    NotificationTemplate(
        id="weekly-digest",
        name="Weekly Digest",
        title="Your Weekly Digest",
        body="Check out {{articleCount}} new articles this week",
        icon="/icons/digest-icon.png",
        category="engagement",
        variables=["articleCount"],
        default_data={"url": "/digest/weekly"},
    ),
    NotificationTemplate(
        id="marketing-promotion",
        name="Promotion Alert",
        title="{{promotionTitle}}",
        body="{{promotionDescription}} - Valid until {{expiryDate}}",
        icon="/icons/promotion-icon.png",
        category="marketing",
        variables=["promotionTitle", "promotionDescription", "expiryDate"],
        default_data={"url": "/promotions/{{promotionId}}"},
    ),
]


def interpolate(text: str, context: Mapping[str, Any]) -> str:
    """Replace ``{{name}}`` placeholders with context values.

    Placeholders whose value is missing or None are kept verbatim.
    """

    def replace(match: re.Match[str]) -> str:
        name = match.group(1)
        value = context.get(name)
        if value is None:
            logger.warning(f"Template variable '{name}' not found in context")
            return match.group(0)
        return str(value)

    return PLACEHOLDER_PATTERN.sub(replace, text)


class TemplateRegistry:
    """In-memory template store implementing TemplateRenderer.

    The recipient for the payload tag is read from ``user_id`` in the context,
    falling back to "anonymous".
    """

    def __init__(
        self,
        templates: list[NotificationTemplate] | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._templates: dict[str, NotificationTemplate] = {}
        self._lock = threading.Lock()
        self._clock = clock or SystemClock()
        for template in templates or []:
            self.register(template)

    @classmethod
    def with_defaults(cls, clock: Clock | None = None) -> TemplateRegistry:
        """Create a registry holding the built-in templates."""
        return cls(list(DEFAULT_TEMPLATES), clock=clock)

    def register(self, template: NotificationTemplate) -> None:
        """Add or replace a template."""
        with self._lock:
            self._templates[template.id] = template

    def remove(self, template_id: str) -> bool:
        with self._lock:
            return self._templates.pop(template_id, None) is not None

    def get(self, template_id: str) -> NotificationTemplate | None:
        with self._lock:
            return self._templates.get(template_id)

    def list_templates(self, category: str | None = None) -> list[NotificationTemplate]:
        with self._lock:
            templates = list(self._templates.values())
        if category is not None:
            templates = [t for t in templates if t.category == category]
        return templates

    def missing_variables(self, template_id: str, context: Mapping[str, Any]) -> list[str]:
        """List declared variables the context does not supply.

        Raises:
            TemplateNotFoundError: If the template is unknown.
        """
        template = self._require(template_id)
        return [name for name in template.variables if name not in context]

    def _require(self, template_id: str) -> NotificationTemplate:
        template = self.get(template_id)
        if template is None:
            raise TemplateNotFoundError(
                f"Template with ID '{template_id}' not found", template_id=template_id
            )
        return template

    def render(self, template_id: str, context: Mapping[str, Any]) -> RenderedTemplate:
        """Render a template into a notification payload.

        Raises:
            TemplateNotFoundError: If the template is unknown.
        """
        template = self._require(template_id)
        user_id = context.get("user_id") or "anonymous"

        data: dict[str, Any] = {
            "templateId": template_id,
            "userId": user_id,
            "category": template.category,
            "timestamp": self._clock.now().isoformat(),
        }
        for key, value in template.default_data.items():
            data[key] = interpolate(value, context) if isinstance(value, str) else value

        payload = NotificationPayload(
            title=interpolate(template.title, context),
            body=interpolate(template.body, context),
            icon=template.icon,
            tag=f"{template_id}-{user_id}",
            data=data,
            actions=[dict(a) for a in CATEGORY_ACTIONS.get(template.category, [])],
            require_interaction=template.require_interaction,
        )
        return RenderedTemplate(payload=payload, category=template.preference_category)


__all__ = [
    "NotificationTemplate",
    "TemplateRegistry",
    "DEFAULT_TEMPLATES",
    "interpolate",
]
