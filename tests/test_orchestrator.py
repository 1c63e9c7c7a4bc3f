import pytest

from lembrete.core.orchestrator import Orchestrator
from lembrete.datamodel import ClassifiedRequest

from .conftest import SAO_PAULO, FakeClassifier


def classified(**kwargs) -> ClassifiedRequest:
    data = {
        "should_schedule": True,
        "date": "2025-01-01",
        "time": "09:00",
        "timezone": SAO_PAULO,
        "content": "call mom",
    }
    data.update(kwargs)
    return ClassifiedRequest(**data)


@pytest.fixture
def classifier():
    return FakeClassifier(classified())


@pytest.fixture
def orchestrator(scheduler, classifier, contacts, clock):
    return Orchestrator(scheduler, classifier, contacts, default_timezone=SAO_PAULO, clock=clock)


async def test_schedules_personal_reminder(orchestrator, scheduler, classifier):
    reply = await orchestrator.handle_text("100", "remind me tomorrow at 9 to call mom")

    assert reply.startswith("✅ Reminder scheduled!")
    assert "01/01/2025" in reply
    assert "09:00 (America/Sao Paulo)" in reply
    assert "💬 call mom" in reply
    assert classifier.calls == ["remind me tomorrow at 9 to call mom"]

    active = await scheduler.list_active("100")
    assert len(active) == 1
    assert active[0].recipient_id == "100"


async def test_schedules_message_to_known_contact(orchestrator, scheduler, classifier, contacts):
    await contacts.set("Maria", "300")
    classifier.result = classified(recipient_hint="maria", content="happy birthday")

    reply = await orchestrator.handle_text("100", "tell maria happy birthday tomorrow at 9", owner_alias="Ana")

    assert reply.startswith("📨 Message to maria scheduled!")
    reminder = (await scheduler.list_active("100"))[0]
    assert reminder.recipient_id == "300"
    assert reminder.owner_alias == "Ana"
    assert reminder.is_forwarded


async def test_unknown_contact_is_reported(orchestrator, scheduler, classifier):
    classifier.result = classified(recipient_hint="pedro")

    reply = await orchestrator.handle_text("100", "tell pedro to buy bread at 9")

    assert reply.startswith('❌ Contact "pedro" not found.')
    assert await scheduler.list_pending() == []


async def test_past_time_is_rejected(orchestrator, scheduler, classifier):
    classifier.result = classified(date="2024-12-31", time="08:00")

    reply = await orchestrator.handle_text("100", "remind me yesterday")

    assert reply.startswith("⏰ That time has already passed!")
    assert await scheduler.list_pending() == []


async def test_missing_time_asks_again(orchestrator, classifier):
    classifier.result = classified(time=None)
    reply = await orchestrator.handle_text("100", "remind me to call mom")
    assert reply.startswith("Sorry, I didn't get when")


async def test_invalid_date_is_reported(orchestrator, classifier):
    classifier.result = classified(date="2025-02-30")
    reply = await orchestrator.handle_text("100", "remind me on feb 30")
    assert reply.startswith("Sorry, I couldn't understand that date or time")


async def test_not_a_reminder(orchestrator, classifier):
    classifier.result = ClassifiedRequest(should_schedule=False)
    reply = await orchestrator.handle_text("100", "hello there")
    assert reply.startswith("I can schedule reminders")


async def test_defaults_for_missing_content_and_timezone(orchestrator, scheduler, classifier):
    classifier.result = classified(content=None, timezone=None)
    await orchestrator.handle_text("100", "remind me tomorrow at 9")

    reminder = (await scheduler.list_active("100"))[0]
    assert reminder.content == "something important"
    assert reminder.timezone == SAO_PAULO


async def test_list_keywords_skip_classifier(orchestrator, scheduler, classifier):
    assert (await orchestrator.handle_text("100", "Mostrar lembretes")).startswith("📭")

    await orchestrator.handle_text("100", "remind me tomorrow at 9 to call mom")
    classifier.calls.clear()

    reply = await orchestrator.handle_text("100", "list reminders")
    assert classifier.calls == []
    assert reply.startswith("📋 Your scheduled reminders:")
    assert "📌 1. call mom" in reply
    reminder = (await scheduler.list_active("100"))[0]
    assert f"id {reminder.reminder_id}" in reply
    assert "✅ Total: 1 reminder" in reply


async def test_clear_keywords_cancel_everything(orchestrator, scheduler, classifier):
    assert (await orchestrator.handle_text("100", "apagar lembretes")).startswith("📭 You have no reminders to clear")

    await orchestrator.handle_text("100", "remind me tomorrow at 9 to call mom")
    await orchestrator.handle_text("100", "remind me tomorrow at 9 to call dad")

    reply = await orchestrator.handle_text("100", "Clear my reminders please")
    assert reply.startswith("🧹 All your reminders were deleted.")
    assert await scheduler.list_active("100") == []
    assert len(scheduler.timers) == 0


async def test_cancel_reminder_by_id(orchestrator, scheduler):
    await orchestrator.handle_text("100", "remind me tomorrow at 9 to call mom")
    reminder = (await scheduler.list_active("100"))[0]

    assert await orchestrator.cancel_reminder("200", reminder.reminder_id) == (
        "I couldn't find that reminder. Send \"list reminders\" to see the ids."
    )
    assert await orchestrator.cancel_reminder("100", f" {reminder.reminder_id} ") == "🗑️ Reminder cancelled."
    assert await scheduler.list_active("100") == []


async def test_add_contact(orchestrator, contacts):
    assert await orchestrator.add_contact("Maria", "300") == '📇 Contact "Maria" saved.'
    assert await contacts.get("maria") == "300"
    assert await orchestrator.add_contact("  ", "300") == "Usage: /contact <alias> <chat_id>"


async def test_blank_message(orchestrator, classifier):
    reply = await orchestrator.handle_text("100", "   ")
    assert reply == "Send me what you want to be reminded of, and when."
    assert classifier.calls == []
