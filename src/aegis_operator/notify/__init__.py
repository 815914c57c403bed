"""Outbound healing notifications."""

from aegis_operator.notify.webhook import HealingUpdate, NotificationClient

__all__ = ["HealingUpdate", "NotificationClient"]
