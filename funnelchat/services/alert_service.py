"""Ops alerts to a Telegram chat.

Used for failures nobody sees otherwise: storage rollbacks inside the engine and
transition DMs the platform refused. A storage outage fails every request, so
identical alerts are throttled per (level, message) for ``alert_cooldown_seconds``.
"""

import re
import threading
import time
from typing import Optional

import httpx

from funnelchat.config import settings
from funnelchat.logging_config import get_logger

logger = get_logger("alert_service")

TELEGRAM_SEND_URL = "https://api.telegram.org/bot{token}/sendMessage"
MARKDOWN_SPECIAL = re.compile(r"([_*`\[])")

_last_sent: dict[tuple[str, str], float] = {}
_last_sent_lock = threading.Lock()


def _should_send(level: str, message: str) -> bool:
    now = time.monotonic()
    key = (level, message)
    with _last_sent_lock:
        last = _last_sent.get(key)
        if last is not None and now - last < settings.alert_cooldown_seconds:
            return False
        _last_sent[key] = now
    return True


def escape_markdown(text: str) -> str:
    return MARKDOWN_SPECIAL.sub(r"\\\1", text)


def format_alert(level: str, message: str, context: Optional[dict] = None) -> str:
    """Telegram legacy Markdown: the message is escaped, context goes in a code block."""
    text = f"*{level}* funnelchat: {escape_markdown(message)}"
    if context:
        lines = "\n".join(f"{key}: {value}" for key, value in sorted(context.items())).replace("`", "'")
        text += f"\n```\n{lines}\n```"
    return text


def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Post an alert. Returns True only when Telegram accepted it; never raises."""
    token = settings.alert_bot_token
    chat_id = settings.alert_chat_id
    if not token or not chat_id:
        logger.warning(f"Alert not configured: {level} - {message}", extra={"context": context or {}})
        return False

    if not _should_send(level, message):
        logger.info(f"Alert throttled: {level} - {message}")
        return False

    try:
        with httpx.Client(timeout=settings.platform_timeout_seconds) as client:
            response = client.post(
                TELEGRAM_SEND_URL.format(token=token),
                json={"chat_id": chat_id, "text": format_alert(level, message, context), "parse_mode": "Markdown"},
            )
    except httpx.HTTPError as e:
        logger.error(f"Failed to send alert: {e}")
        return False

    if response.status_code != 200:
        logger.error(f"Alert rejected by Telegram: {response.status_code}")
        return False
    return True


def alert_error(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("ERROR", message, context)


def alert_warning(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("WARNING", message, context)


def reset_throttle() -> None:
    with _last_sent_lock:
        _last_sent.clear()
