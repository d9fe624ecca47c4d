"""In-app notifications for processing outcomes."""

from vidpipe.modules.notification.service import DatabaseNotifier

__all__ = ["DatabaseNotifier"]
