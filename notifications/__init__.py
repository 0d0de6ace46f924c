"""Client notifications."""

from .email import EmailNotifier, cancel_link

__all__ = ["EmailNotifier", "cancel_link"]
