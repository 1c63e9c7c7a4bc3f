import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from lembrete.datamodel import Reminder
from lembrete.storage.document import DocumentCorruptError, read_json_document, write_json_document
from lembrete.storage.reminder import JsonReminderStore, reminder_from_dict, reminder_to_dict

BASE = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_reminder(reminder_id: str, owner_id: str = "100", minutes: int = 60, **kwargs) -> Reminder:
    return Reminder(
        reminder_id=reminder_id,
        owner_id=owner_id,
        recipient_id=kwargs.pop("recipient_id", owner_id),
        content=kwargs.pop("content", f"content {reminder_id}"),
        scheduled_at=BASE + timedelta(minutes=minutes),
        timezone="America/Sao_Paulo",
        created_at=BASE,
        **kwargs,
    )


async def test_save_then_load_preserves_records(store):
    reminders = [
        make_reminder("a"),
        make_reminder("b", owner_id="200", recipient_id="300", recipient_alias="maria"),
    ]
    await store.save(reminders)
    loaded = await store.load()
    assert loaded == reminders

    # 再次写回不应改变任何可观察内容
    await store.save(loaded)
    assert await store.load() == reminders


async def test_transaction_persists_changes(store):
    async with store.transaction() as reminders:
        reminders.append(make_reminder("a"))
    async with store.transaction() as reminders:
        reminders.append(make_reminder("b"))

    assert [r.reminder_id for r in await store.snapshot()] == ["a", "b"]


async def test_transaction_does_not_persist_on_error(store):
    await store.save([make_reminder("a")])
    with pytest.raises(RuntimeError):
        async with store.transaction() as reminders:
            reminders.clear()
            raise RuntimeError("boom")

    assert [r.reminder_id for r in await store.load()] == ["a"]


async def test_concurrent_transactions_do_not_lose_updates(store):
    async def add(i: int) -> None:
        async with store.transaction() as reminders:
            await asyncio.sleep(0)
            reminders.append(make_reminder(f"r{i}"))

    await asyncio.gather(*(add(i) for i in range(10)))
    ids = sorted(r.reminder_id for r in await store.load())
    assert ids == sorted(f"r{i}" for i in range(10))


async def test_missing_document_loads_empty(tmp_path):
    store = JsonReminderStore(tmp_path / "nested" / "reminders.json")
    assert await store.load() == []


async def test_empty_document_is_quarantined(tmp_path):
    path = tmp_path / "reminders.json"
    path.write_text("", encoding="utf-8")
    store = JsonReminderStore(path)

    assert await store.load() == []
    assert not path.exists()
    assert len(list(tmp_path.glob("reminders.json.corrupt-*"))) == 1


async def test_corrupt_document_is_quarantined_and_next_write_succeeds(tmp_path):
    path = tmp_path / "reminders.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonReminderStore(path)

    async with store.transaction() as reminders:
        assert reminders == []
        reminders.append(make_reminder("a"))

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["version"] == 1
    assert [r["reminder_id"] for r in data["reminders"]] == ["a"]
    corrupt = list(tmp_path.glob("reminders.json.corrupt-*"))
    assert len(corrupt) == 1
    assert corrupt[0].read_text(encoding="utf-8") == "{not json"


async def test_non_utf8_document_is_quarantined(tmp_path):
    path = tmp_path / "reminders.json"
    path.write_bytes(b'{"version": 1, "reminders": [\xff\xfe]}')
    store = JsonReminderStore(path)

    assert await store.load() == []
    assert not path.exists()
    assert len(list(tmp_path.glob("reminders.json.corrupt-*"))) == 1


async def test_legacy_list_document_is_accepted(tmp_path):
    path = tmp_path / "reminders.json"
    path.write_text(json.dumps([reminder_to_dict(make_reminder("a"))]), encoding="utf-8")
    store = JsonReminderStore(path)
    assert [r.reminder_id for r in await store.load()] == ["a"]


async def test_bad_and_duplicate_records_are_skipped(tmp_path):
    path = tmp_path / "reminders.json"
    good = reminder_to_dict(make_reminder("a"))
    naive = dict(reminder_to_dict(make_reminder("b")), scheduled_at="2025-01-01T12:00:00")
    path.write_text(
        json.dumps({"version": 1, "reminders": [good, {"reminder_id": "x"}, naive, good]}),
        encoding="utf-8",
    )
    store = JsonReminderStore(path)
    assert [r.reminder_id for r in await store.load()] == ["a"]


async def test_unchanged_transaction_does_not_touch_file(tmp_path):
    path = tmp_path / "reminders.json"
    store = JsonReminderStore(path)
    async with store.transaction():
        pass
    assert not path.exists()


def test_reminder_dict_round_trip_defaults_recipient():
    data = reminder_to_dict(make_reminder("a"))
    del data["recipient_id"]
    restored = reminder_from_dict(data)
    assert restored.recipient_id == restored.owner_id
    assert not restored.is_forwarded


def test_reminder_from_dict_rejects_missing_fields():
    with pytest.raises(ValueError):
        reminder_from_dict({"reminder_id": "a", "owner_id": "1"})
    with pytest.raises(ValueError):
        reminder_from_dict(["not", "a", "dict"])


def test_write_json_document_replaces_atomically(tmp_path):
    path = tmp_path / "doc.json"
    write_json_document(path, {"a": 1})
    write_json_document(path, {"a": 2})

    assert read_json_document(path) == {"a": 2}
    assert [p.name for p in tmp_path.iterdir()] == ["doc.json"]


def test_read_json_document_missing_and_corrupt(tmp_path):
    path = tmp_path / "doc.json"
    assert read_json_document(path, default={}) == {}
    path.write_text("[1, 2", encoding="utf-8")
    with pytest.raises(DocumentCorruptError):
        read_json_document(path)


async def test_legacy_record_without_created_at_is_stable(tmp_path):
    path = tmp_path / "reminders.json"
    legacy = reminder_to_dict(make_reminder("a"))
    del legacy["created_at"]
    path.write_text(json.dumps([legacy]), encoding="utf-8")
    store = JsonReminderStore(path)

    loaded = await store.load()
    assert loaded[0].created_at == loaded[0].scheduled_at

    await store.save(loaded)
    first = path.read_bytes()
    await store.save(await store.load())
    assert path.read_bytes() == first
