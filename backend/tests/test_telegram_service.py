import asyncio
import uuid
from datetime import timedelta
from unittest.mock import patch

import pytest

from common.config_versions import TelegramConfig
from common.errors import (
    InvalidLinkToken, LinkTokenExpired, NotConfigured, NotLinked, TelegramApiError
)
from common.link_tokens import utc_now
from common.models import TaskStatus
from common.notifications import compose_task_notification
from common.repository import TaskRecord
from common.telegram_service import TelegramService


def _task(title="Deploy <v2> & celebrate"):
    return TaskRecord(id=uuid.uuid4(), project_id=uuid.uuid4(), title=title, status=TaskStatus.done)


def _linked(**overrides):
    values = dict(
        chat_id=555,
        user_id=1,
        username="alice",
        notifications_enabled=True,
        notify_on_task_done=True,
    )
    values.update(overrides)
    return TelegramConfig(**values)


async def _set_link(service, link):
    async with service.config.write() as config:
        config.telegram = link


# --- Link management ---

def test_generate_link_token_requires_bot_token(repo, config_guard):
    unconfigured = TelegramService(bot_token=None, config=config_guard, repository=repo)
    assert not unconfigured.is_configured()
    with pytest.raises(NotConfigured):
        unconfigured.generate_link_token()


def test_generate_link_token_uses_bot_username(service):
    token, deep_link = service.generate_link_token()
    assert deep_link == f"https://t.me/kanban_test_bot?start={token}"


def test_complete_link_updates_config_and_consumes_token(service):
    async def _run():
        token, _ = service.generate_link_token()
        link = await service.complete_link(token, 100, 200, "bob")
        with pytest.raises(InvalidLinkToken):
            await service.complete_link(token, 100, 200, "bob")
        return link, await service.get_link_status()

    link, status = asyncio.run(_run())
    assert link == status
    assert status.chat_id == 100
    assert status.user_id == 200
    assert status.username == "bob"
    assert status.notifications_enabled
    assert status.notify_on_task_done
    assert not status.include_llm_summary


def test_complete_link_returns_detached_copy(service):
    async def _run():
        token, _ = service.generate_link_token()
        link = await service.complete_link(token, 100, 200, None)
        link.chat_id = 1
        return await service.get_link_status()

    assert asyncio.run(_run()).chat_id == 100


def test_concurrent_completions_link_once(service):
    async def _run():
        token, _ = service.generate_link_token()
        return await asyncio.gather(
            service.complete_link(token, 1, 1, "first"),
            service.complete_link(token, 2, 2, "second"),
            return_exceptions=True,
        )

    results = asyncio.run(_run())
    successes = [r for r in results if isinstance(r, TelegramConfig)]
    failures = [r for r in results if isinstance(r, InvalidLinkToken)]
    assert len(successes) == 1
    assert len(failures) == 1


def test_complete_link_with_expired_token(service):
    with patch("common.link_tokens.utc_now", return_value=utc_now() - timedelta(minutes=16)):
        token, _ = service.generate_link_token()
    with pytest.raises(LinkTokenExpired):
        asyncio.run(service.complete_link(token, 1, 1, None))
    assert not asyncio.run(service.is_linked())


def test_unlink_resets_record(service):
    async def _run():
        await _set_link(service, _linked(include_llm_summary=True, stream_enabled=True))
        assert await service.is_linked()
        await service.unlink()
        await service.unlink()
        return await service.get_link_status()

    assert asyncio.run(_run()) == TelegramConfig()


# --- Settings ---

def test_settings_update_changes_only_given_flags(service):
    async def _run():
        await _set_link(service, _linked())
        return await service.update_notification_settings(include_llm_summary=True)

    link = asyncio.run(_run())
    assert link.include_llm_summary
    assert link.notifications_enabled
    assert link.notify_on_task_done
    assert not link.stream_enabled


def test_settings_refuse_enabling_notifications_when_unlinked(service):
    with pytest.raises(NotLinked):
        asyncio.run(service.update_notification_settings(notifications_enabled=True))
    assert not asyncio.run(service.get_link_status()).notifications_enabled


def test_settings_allow_disabling_when_unlinked(service):
    link = asyncio.run(service.update_notification_settings(notifications_enabled=False, stream_enabled=True))
    assert link.stream_enabled


# --- Notification gate ---

def test_gate_is_silent_when_notifications_disabled():
    for done_flag in (True, False):
        for summary_flag in (True, False):
            link = _linked(notifications_enabled=False, notify_on_task_done=done_flag, include_llm_summary=summary_flag)
            assert compose_task_notification(link, "t", "s") is None


def test_gate_is_silent_when_task_done_disabled():
    assert compose_task_notification(_linked(notify_on_task_done=False), "t") is None


def test_gate_requires_linked_chat():
    with pytest.raises(NotLinked):
        compose_task_notification(_linked(chat_id=None), "t")


def test_gate_escapes_title_and_omits_summary_by_default():
    text = compose_task_notification(_linked(), "Deploy <v2> & celebrate", "ignored <summary>")
    assert "<b>Task Completed</b>" in text
    assert "<b>Deploy &lt;v2&gt; &amp; celebrate</b>" in text
    assert "Summary" not in text


def test_gate_appends_escaped_summary_when_enabled():
    text = compose_task_notification(_linked(include_llm_summary=True), "Done", "Used <regex> & tests")
    assert text.endswith("<b>Summary:</b>\nUsed &lt;regex&gt; &amp; tests")


def test_gate_skips_missing_summary_even_when_enabled():
    text = compose_task_notification(_linked(include_llm_summary=True), "Done", None)
    assert "Summary" not in text


def test_send_task_notification_disabled_never_sends(service, mock_send):
    async def _run():
        await _set_link(service, _linked(notifications_enabled=False, include_llm_summary=True))
        return await service.send_task_notification(_task(), "summary")

    assert asyncio.run(_run()) is False
    mock_send.assert_not_awaited()


def test_send_task_notification_sends_to_linked_chat(service, mock_send):
    async def _run():
        await _set_link(service, _linked(include_llm_summary=True))
        return await service.send_task_notification(_task(), "All <good>")

    assert asyncio.run(_run()) is True
    mock_send.assert_awaited_once()
    chat_id, text = mock_send.await_args.args
    assert chat_id == 555
    assert "Deploy &lt;v2&gt; &amp; celebrate" in text
    assert "All &lt;good&gt;" in text
    assert mock_send.await_args.kwargs["bot_token"] == "test_bot_token"


def test_send_task_notification_surfaces_api_failure(service, mock_send):
    mock_send.return_value = {"ok": False, "error": "status_403"}

    async def _run():
        await _set_link(service, _linked())
        await service.send_task_notification(_task())

    with pytest.raises(TelegramApiError):
        asyncio.run(_run())


def test_send_message_requires_bot_token(repo, config_guard, mock_send):
    unconfigured = TelegramService(bot_token=None, config=config_guard, repository=repo)
    with pytest.raises(NotConfigured):
        asyncio.run(unconfigured.send_message(1, "hi"))
    mock_send.assert_not_awaited()


def test_link_confirmation_escapes_username(service):
    text = service.link_confirmation_text("a<b")
    assert "@a&lt;b" in text
    assert "Welcome!" in service.link_confirmation_text(None)
