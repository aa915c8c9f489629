from .destinations import DISCORD, GENERIC, WEBEX_API, WEBEX_INCOMING, WebhookDestination, detect_kind
from .dispatcher import WebhookDispatcher
from .formatters import FormattedNotification, format_notification
from .service import NotificationService

__all__ = [
    "DISCORD",
    "GENERIC",
    "WEBEX_API",
    "WEBEX_INCOMING",
    "FormattedNotification",
    "NotificationService",
    "WebhookDestination",
    "WebhookDispatcher",
    "detect_kind",
    "format_notification",
]
