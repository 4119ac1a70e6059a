"""Notification modules."""
from .dispatcher import NotificationDispatcher
from .email import EmailNotifier
from .telegram import TelegramNotifier

__all__ = ["NotificationDispatcher", "TelegramNotifier", "EmailNotifier"]
