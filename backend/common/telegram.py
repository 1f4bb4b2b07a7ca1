import logging
import re
import httpx
from dataclasses import dataclass
from html import escape as _html_escape
from typing import Optional, Tuple, Dict, Any, List
from common.config import settings


def escape_html(text: str) -> str:
    """Escape &, <, > for Telegram HTML parse mode."""
    return _html_escape(str(text), quote=False)

logger = logging.getLogger(__name__)

TELEGRAM_TEXT_MAX_LEN = 4096
DEEP_LINK_BASE = "https://t.me"


@dataclass(frozen=True)
class WebhookMessage:
    chat_id: int
    user_id: int
    username: Optional[str]
    text: str


def verify_telegram_secret(headers: Dict[str, str]) -> bool:
    if not settings.TELEGRAM_WEBHOOK_SECRET:
        return True
    return headers.get("X-Telegram-Bot-Api-Secret-Token") == settings.TELEGRAM_WEBHOOK_SECRET

def parse_update(update_json: Dict[str, Any]) -> Optional[WebhookMessage]:
    """
    Extract the message we care about from a Telegram payload.
    Non-message updates and messages without text yield None.
    """
    if not isinstance(update_json, dict):
        return None
    message = update_json.get("message")
    if not isinstance(message, dict):
        return None
    chat = message.get("chat")
    text = message.get("text")
    if not isinstance(chat, dict) or not isinstance(text, str):
        return None

    sender = message.get("from")
    if not isinstance(sender, dict):
        # Service messages in channels have no sender; treat as user 0.
        sender = {}
    username = sender.get("username")
    try:
        chat_id = int(chat["id"])
        user_id = int(sender.get("id") or 0)
    except (KeyError, TypeError, ValueError):
        logger.warning("Ignoring Telegram update with malformed ids: chat=%r", chat.get("id"))
        return None
    return WebhookMessage(
        chat_id=chat_id,
        user_id=user_id,
        username=username if isinstance(username, str) else None,
        text=text,
    )


def build_deep_link(token: str, bot_username: Optional[str]) -> str:
    if bot_username:
        return f"{DEEP_LINK_BASE}/{bot_username}?start={token}"
    # Without the bot handle the user has to paste the start parameter manually.
    return f"start={token}"


def extract_command(text: str) -> Tuple[Optional[str], str]:
    """
    Parses a string for a command like /start arg1 arg2.
    Returns (command, args_string) where command has no leading slash.
    """
    if not text.startswith("/"):
        return None, ""

    parts = text.split(maxsplit=1)
    command = parts[0][1:].lower().split("@")[0]  # strip @botname suffix
    args = parts[1].strip() if len(parts) > 1 else ""
    return command, args


async def send_message(chat_id: int, text: str, bot_token: Optional[str] = None) -> Dict[str, Any]:
    """
    Sends a message to Telegram, chunked to the API length cap.
    """
    token = bot_token or settings.TELEGRAM_BOT_TOKEN
    if not token:
        logger.error("TELEGRAM_BOT_TOKEN not configured.")
        return {"ok": False, "error": "token_missing"}

    url = f"{settings.TELEGRAM_API_BASE}/bot{token}/sendMessage"
    chunks = split_telegram_text(text or "", TELEGRAM_TEXT_MAX_LEN)
    if not chunks:
        chunks = [""]

    try:
        async with httpx.AsyncClient(timeout=settings.TELEGRAM_COMMAND_TIMEOUT_SECONDS) as client:
            last_json: Dict[str, Any] = {"ok": True}
            total_chunks = len(chunks)
            for idx, chunk in enumerate(chunks):
                prefix = f"<i>Part {idx + 1}/{total_chunks}</i>\n\n" if total_chunks > 1 else ""
                payload: Dict[str, Any] = {
                    "chat_id": chat_id,
                    "text": prefix + chunk,
                    "parse_mode": "HTML",
                }
                resp = await client.post(url, json=payload)
                if resp.status_code < 400:
                    last_json = resp.json()
                    continue

                # Common 400 case is parse issues; retry once with plain text.
                logger.warning(
                    "Telegram send failed with HTML mode (status=%s, body=%s). Retrying without parse_mode.",
                    resp.status_code,
                    resp.text,
                )
                payload = {
                    "chat_id": chat_id,
                    "text": re.sub(r"</?i>", "", prefix) + chunk,
                }
                resp = await client.post(url, json=payload)
                if resp.status_code < 400:
                    last_json = resp.json()
                    continue

                logger.error(
                    "Failed to send Telegram message (status=%s, body=%s)",
                    resp.status_code,
                    resp.text,
                )
                return {"ok": False, "error": f"status_{resp.status_code}"}
            return last_json
    except httpx.HTTPError as e:
        logger.error(f"Failed to send Telegram message: {e}")
        return {"ok": False, "error": str(e)}


def split_telegram_text(text: str, max_len: int = TELEGRAM_TEXT_MAX_LEN) -> List[str]:
    """Split long text into Telegram-safe chunks while preferring line boundaries."""
    if len(text) <= max_len:
        return [text]

    lines = text.splitlines(keepends=True)
    chunks: List[str] = []
    current = ""

    def flush() -> None:
        nonlocal current
        if current:
            chunks.append(current)
            current = ""

    for line in lines:
        if len(line) > max_len:
            flush()
            remaining = line
            while len(remaining) > max_len:
                split_at = remaining.rfind(" ", 0, max_len)
                if split_at <= 0:
                    split_at = max_len
                chunks.append(remaining[:split_at])
                remaining = remaining[split_at:]
            if remaining:
                current = remaining
            continue

        if len(current) + len(line) > max_len:
            flush()
        current += line

    flush()
    return chunks if chunks else [text[:max_len]]
