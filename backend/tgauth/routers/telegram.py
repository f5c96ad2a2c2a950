"""
Telegram integration routes.
- Link token generation for /start flow
- Webhook handler for bot updates
"""
import hmac
import logging

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from ..config import settings
from ..dependencies import get_current_user_id, get_orchestrator
from ..domain_errors import BindingConflict, InvalidOrExpired
from ..schemas import LinkTokenResponse
from ..use_cases.auth_flows import AuthOrchestrator

router = APIRouter(prefix="/telegram", tags=["telegram"])
logger = logging.getLogger(__name__)

WELCOME_TEXT = "Welcome! Use the link token from the app to link your account: /start <token>"
INVALID_TOKEN_TEXT = "Invalid or expired link token. Please initiate linking again from the app."
LINK_FAILED_TEXT = "Linking failed, please try again in a moment."
LINKED_TEXT = "Telegram account linked successfully. You can now receive OTPs here."


def _reply(chat_id: str, text: str) -> dict:
    # Webhook reply: Telegram executes the method in the response body.
    return {"ok": True, "method": "sendMessage", "chat_id": chat_id, "text": text}


@router.post("/link-token", response_model=LinkTokenResponse)
def generate_link_token(
    user_id: int = Depends(get_current_user_id),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
):
    """
    Generate a one-time link token for Telegram /start flow.

    User flow:
    1. Frontend calls POST /telegram/link-token
    2. Frontend shows deep link: https://t.me/YOUR_BOT?start=TOKEN
    3. User clicks link, bot receives /start TOKEN
    4. Bot webhook consumes the token and binds chat_id to the user
    """
    grant = orchestrator.initiate_link(user_id)
    return LinkTokenResponse(link_token=grant.token, expires_at=grant.expires_at, link_url=grant.link_url)


@router.post("/webhook")
async def telegram_webhook(
    request: Request,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
):
    """
    Telegram bot webhook handler.

    Handles /start <token> to bind the sender's chat to the token owner.
    Must respond 200 quickly (Telegram retries on non-2xx).
    """
    if settings.TELEGRAM_WEBHOOK_SECRET:
        provided = request.headers.get("X-Telegram-Bot-Api-Secret-Token", "")
        if not hmac.compare_digest(provided, settings.TELEGRAM_WEBHOOK_SECRET):
            logger.warning("Telegram webhook rejected: invalid secret token")
            return {"ok": False, "error": "Invalid secret"}

    try:
        body = await request.json()
    except ValueError:
        return {"ok": False, "error": "Invalid payload"}
    message = body.get("message") if isinstance(body, dict) else None
    if not message:
        # Not a message update (edited_message, callback_query, ...)
        return {"ok": True}

    text = (message.get("text") or "").strip()
    chat_id = str(message.get("chat", {}).get("id", ""))
    if not chat_id or not text.startswith("/start"):
        return {"ok": True}

    parts = text.split(maxsplit=1)
    if len(parts) < 2:
        return _reply(chat_id, WELCOME_TEXT)

    token = parts[1].strip()
    username = (message.get("from") or {}).get("username")
    try:
        linked = await run_in_threadpool(orchestrator.complete_link, token, chat_id, username)
    except InvalidOrExpired:
        return _reply(chat_id, INVALID_TOKEN_TEXT)
    except BindingConflict:
        return _reply(chat_id, LINK_FAILED_TEXT)
    except Exception:
        logger.exception("Telegram webhook failed for chat %s", chat_id)
        # Always return 200 to avoid Telegram retries on our bugs
        return {"ok": False, "error": "internal"}

    reply = LINKED_TEXT
    if linked.recovery_codes:
        reply += "\n\nYour recovery codes (store securely, single-use):\n" + "\n".join(linked.recovery_codes)
    return _reply(chat_id, reply)
