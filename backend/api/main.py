import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from common.config import settings
from common.app_config import ConfigGuard, load_config_from_file, save_config_to_file
from common.bot_commands import LinkCompleted, Reply
from common.errors import (
    DatabaseError, ProjectNotFound, TaskNotFound, TelegramApiError, TelegramError
)
from common.repository import SqlAlchemyRepository, init_db
from common.telegram import parse_update, verify_telegram_secret
from common.telegram_service import TelegramService
from api.schemas import (
    TelegramWebhookResponse, TelegramLinkInfo, TelegramStatusResponse,
    TelegramSettingsUpdate, TaskDoneNotificationRequest, TaskDoneNotificationResponse
)

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# DB Setup
engine = create_async_engine(settings.DATABASE_URL, echo=settings.APP_ENV == "dev")
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)

# One service per process: it owns pending link tokens and chat sessions.
config_guard = ConfigGuard(load_config_from_file(settings.CONFIG_PATH))
telegram_service = TelegramService(
    bot_token=settings.TELEGRAM_BOT_TOKEN,
    config=config_guard,
    repository=SqlAlchemyRepository(AsyncSessionLocal),
    bot_username=settings.TELEGRAM_BOT_USERNAME,
    link_token_ttl=timedelta(seconds=settings.TELEGRAM_LINK_TOKEN_TTL_SECONDS),
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db(engine)
    yield
    await engine.dispose()

app = FastAPI(title="Kanban Telegram Bridge", lifespan=lifespan)

# --- Dependencies ---

def get_telegram_service() -> TelegramService:
    return telegram_service

async def get_authenticated_user(request: Request):
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing or invalid authorization header")
    token = auth_header.split(" ")[1]
    if token not in settings.auth_tokens:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return token

def _http_error(err: TelegramError) -> HTTPException:
    if isinstance(err, DatabaseError):
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Database error")
    if isinstance(err, (ProjectNotFound, TaskNotFound)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(err))
    if isinstance(err, TelegramApiError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(err))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(err))

async def _persist_config(service: TelegramService) -> None:
    # Snapshot after the writer has released the guard.
    config = await service.config.snapshot()
    try:
        await save_config_to_file(config, settings.CONFIG_PATH)
    except OSError as e:
        logger.error(f"Failed to save config: {e}")

# --- Telegram Endpoints ---

@app.post("/v1/integrations/telegram/webhook", response_model=TelegramWebhookResponse)
async def telegram_webhook(request: Request, service: TelegramService = Depends(get_telegram_service)):
    # 1. Validate secret
    if not verify_telegram_secret(request.headers):
        raise HTTPException(status_code=403, detail="Unauthorized webhook source")

    if not service.is_configured():
        logger.warning("Telegram webhook received but bot is not configured")
        return {"status": "ignored"}

    # 2. Parse update
    try:
        update_json = await request.json()
    except ValueError:
        return {"status": "ignored"}

    message = parse_update(update_json)
    if message is None:
        return {"status": "ignored"}

    # 3. Dispatch. Failures are logged, never returned to Telegram, to avoid redelivery loops.
    try:
        result = await service.handle_update(message)
        if isinstance(result, LinkCompleted):
            await _persist_config(service)
            await service.send_message(result.chat_id, service.link_confirmation_text(result.username))
        elif isinstance(result, Reply):
            await service.send_message(message.chat_id, result.text)
    except Exception:
        logger.exception("Telegram routing failed for chat %s", message.chat_id)

    return {"status": "ok"}

@app.get("/v1/integrations/telegram/link", response_model=TelegramLinkInfo)
async def get_telegram_link(
    user: str = Depends(get_authenticated_user),
    service: TelegramService = Depends(get_telegram_service),
):
    if not service.is_configured():
        return TelegramLinkInfo(token="", deep_link="", bot_configured=False)
    token, deep_link = service.generate_link_token()
    return TelegramLinkInfo(token=token, deep_link=deep_link, bot_configured=True)

@app.delete("/v1/integrations/telegram/unlink", status_code=status.HTTP_204_NO_CONTENT)
async def unlink_telegram(
    user: str = Depends(get_authenticated_user),
    service: TelegramService = Depends(get_telegram_service),
):
    await service.unlink()
    await _persist_config(service)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

@app.get("/v1/integrations/telegram/status", response_model=TelegramStatusResponse)
async def get_telegram_status(
    user: str = Depends(get_authenticated_user),
    service: TelegramService = Depends(get_telegram_service),
):
    link = await service.get_link_status()
    return TelegramStatusResponse.from_link(link, bot_configured=service.is_configured())

@app.put("/v1/integrations/telegram/settings", response_model=TelegramStatusResponse)
async def update_telegram_settings(
    payload: TelegramSettingsUpdate,
    user: str = Depends(get_authenticated_user),
    service: TelegramService = Depends(get_telegram_service),
):
    try:
        link = await service.update_notification_settings(**payload.model_dump(exclude_none=True))
    except TelegramError as e:
        raise _http_error(e)
    await _persist_config(service)
    return TelegramStatusResponse.from_link(link, bot_configured=service.is_configured())

@app.post("/v1/integrations/telegram/notify_task_done", response_model=TaskDoneNotificationResponse)
async def notify_task_done(
    payload: TaskDoneNotificationRequest,
    user: str = Depends(get_authenticated_user),
    service: TelegramService = Depends(get_telegram_service),
):
    try:
        task = await service.repository.get_task(payload.task_id)
        if task is None:
            raise TaskNotFound(payload.task_id)
        sent = await service.send_task_notification(task, payload.summary)
    except TelegramError as e:
        logger.error(f"Task notification failed: {e}")
        raise _http_error(e)
    return TaskDoneNotificationResponse(sent=sent)
