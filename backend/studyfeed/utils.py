"""
Display helpers shared by the services and serializers.
"""

from collections import defaultdict
from datetime import datetime
from typing import Iterable, Optional

from django.utils import timezone
from django.utils.translation import gettext as _, ngettext


def derive_username(email: str) -> str:
    """
    Display username: the email local-part (everything before the first '@').

    Not a stored field. Must stay identical across feed, post and comment views.
    """
    return (email or '').split('@', 1)[0]


def display_name(user) -> str:
    return f"{user.first_name} {user.last_name}".strip()


def user_summary(user) -> dict:
    return {
        'id': user.id,
        'name': display_name(user),
        'username': derive_username(user.email),
    }


def format_timestamp(value: datetime, now: Optional[datetime] = None) -> str:
    """
    Relative time label: "Just now", "5 minutes ago", "3 hours ago", "1 day ago", ...
    """
    now = now or timezone.now()
    diff = now - value
    minutes = int(diff.total_seconds() // 60)
    hours = minutes // 60
    days = hours // 24

    if minutes < 1:
        return _('Just now')
    if minutes < 60:
        return ngettext('%(count)d minute ago', '%(count)d minutes ago', minutes) % {'count': minutes}
    if hours < 24:
        return ngettext('%(count)d hour ago', '%(count)d hours ago', hours) % {'count': hours}
    return ngettext('%(count)d day ago', '%(count)d days ago', days) % {'count': days}


def group_modules_by_type(modules: Iterable) -> dict[str, list]:
    """Group modules by their type, keeping input order inside each group."""
    grouped = defaultdict(list)
    for module in modules:
        grouped[module.type].append(module)
    return dict(grouped)
