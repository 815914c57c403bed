"""Send healing updates to Slack or Discord incoming webhooks.

The channel format is picked from the URL: discord.com gets a Discord embed,
anything else a Slack Block Kit message.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from aegis_operator.context import ReconcileContext
from aegis_operator.diagnosis.models import Diagnosis
from aegis_operator.errors import NotificationError

logger = logging.getLogger(__name__)

DISCORD_GREEN = 0x57F287
DISCORD_YELLOW = 0xFEE75C


@dataclass
class HealingUpdate:
    deployment_name: str
    namespace: str
    diagnosis: Diagnosis
    pr_url: str | None
    healing_score: int
    # No PR was attempted because safe mode is on
    safe_mode: bool = False


class NotificationClient:
    """Posts HealingUpdates to a webhook. An empty URL makes every send a no-op."""

    def __init__(self, webhook_url: str | None, timeout: float = 10.0, http: httpx.Client | None = None) -> None:
        self.webhook_url = webhook_url or ""
        self.timeout = timeout
        self._http = http or httpx.Client()

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def send_healing_update(self, update: HealingUpdate, ctx: ReconcileContext) -> None:
        """POST the update. Raises NotificationError on transport failure or non-2xx."""
        if not self.enabled:
            return
        if "discord.com" in self.webhook_url:
            payload = build_discord_payload(update)
        else:
            payload = build_slack_payload(update)
        try:
            response = self._http.post(self.webhook_url, json=payload, timeout=ctx.timeout(self.timeout))
        except httpx.HTTPError as e:
            raise NotificationError(f"sending webhook: {e}") from e
        if not response.is_success:
            raise NotificationError(f"webhook returned HTTP {response.status_code}")
        logger.debug("Healing update sent for %s/%s", update.namespace, update.deployment_name)


def _action_line(update: HealingUpdate, link: str) -> str:
    if update.safe_mode:
        return "Safe mode enabled, no PR created. Review the diagnosis above."
    if update.pr_url:
        return link.format(url=update.pr_url)
    return ""


def build_slack_payload(update: HealingUpdate) -> dict[str, Any]:
    header = (
        f"*Aegis diagnosed `{update.namespace}/{update.deployment_name}`* (score: {update.healing_score})"
    )
    details = f"*Root cause:* {update.diagnosis.root_cause}"
    if update.diagnosis.witty_line:
        details += f"\n*AI says:* _{update.diagnosis.witty_line}_"

    blocks: list[dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": "Aegis Healing Report"}},
        {"type": "section", "text": {"type": "mrkdwn", "text": header}},
        {"type": "section", "text": {"type": "mrkdwn", "text": details}},
    ]
    action = _action_line(update, "<{url}|View healing PR>")
    if action:
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": action}})
    blocks.append({"type": "divider"})
    return {"blocks": blocks}


def build_discord_payload(update: HealingUpdate) -> dict[str, Any]:
    description = f"**Root cause:** {update.diagnosis.root_cause}"
    if update.diagnosis.witty_line:
        description += f"\n\n> *{update.diagnosis.witty_line}*"
    embed: dict[str, Any] = {
        "title": f"Aegis diagnosed {update.namespace}/{update.deployment_name}",
        "description": description,
        "color": DISCORD_YELLOW if update.safe_mode else DISCORD_GREEN,
        "fields": [
            {"name": "Healing Score", "value": str(update.healing_score), "inline": True},
            {
                "name": "Pull Request",
                "value": _action_line(update, "[View healing PR]({url})") or "No PR created",
                "inline": True,
            },
        ],
        "footer": {"text": "Aegis • " + datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")},
    }
    if not update.safe_mode and update.pr_url:
        embed["url"] = update.pr_url
    return {"username": "Aegis", "embeds": [embed]}
