import asyncio
import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from lembrete.channels.base import Deliverer
from lembrete.datamodel import ClassifiedRequest, Reminder
from lembrete.events import Bus, E
from lembrete.llm.base import Classifier
from lembrete.storage import db_config
from lembrete.storage.contact import ContactBook
from lembrete.storage.reminder import JsonReminderStore, SqliteReminderStore
from lembrete.world.scheduler import Scheduler

SAO_PAULO = "America/Sao_Paulo"


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeDeliverer(Deliverer):
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.confirmations: list[tuple[str, str]] = []
        self.results: list[bool] = []  # 依次返回，用完后返回 True
        self.raise_error = False
        self.gate: asyncio.Event | None = None

    async def deliver(self, recipient_id: str, content: str) -> bool:
        self.calls.append((recipient_id, content))
        if self.gate is not None:
            await self.gate.wait()
        if self.raise_error:
            raise ConnectionError("transport down")
        if self.results:
            return self.results.pop(0)
        return True

    async def confirm_delivery(self, owner_id: str, reminder: Reminder) -> None:
        self.confirmations.append((owner_id, reminder.reminder_id))


class FakeClassifier(Classifier):
    def __init__(self, result: ClassifiedRequest | None = None) -> None:
        self.result = result or ClassifiedRequest(should_schedule=False)
        self.calls: list[str] = []

    async def classify(self, text: str, now: datetime) -> ClassifiedRequest:
        self.calls.append(text)
        return self.result


class StateRecorder:
    def __init__(self, bus: Bus) -> None:
        self.events: list[tuple[str, str]] = []
        bus.on(E.REMINDER_STATE_CHANGED, self._record)

    def _record(self, reminder: Reminder, state) -> None:
        self.events.append((reminder.reminder_id, state.value))

    def states_for(self, reminder_id: str) -> list[str]:
        return [state for rid, state in self.events if rid == reminder_id]


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def clock():
    # 2024-12-31 23:59 America/Sao_Paulo
    return FakeClock(datetime(2025, 1, 1, 2, 59, tzinfo=timezone.utc))


@pytest.fixture
def deliverer():
    return FakeDeliverer()


@pytest.fixture
def bus():
    return Bus()


@pytest.fixture
def recorder(bus):
    return StateRecorder(bus)


@pytest.fixture
def json_store(tmp_path):
    return JsonReminderStore(tmp_path / "reminders.json")


@pytest.fixture
async def sqlite_conn(tmp_path):
    conn = await db_config.init_db(str(tmp_path / "lembrete.db"))
    yield conn
    await db_config.close_db(conn)


@pytest.fixture
def sqlite_store(sqlite_conn):
    return SqliteReminderStore(sqlite_conn)


@pytest.fixture(params=["json", "sqlite"])
async def store(request, tmp_path):
    if request.param == "json":
        yield JsonReminderStore(tmp_path / "reminders.json")
        return
    conn = await db_config.init_db(str(tmp_path / "param.db"))
    yield SqliteReminderStore(conn)
    await db_config.close_db(conn)


@pytest.fixture
def contacts(tmp_path):
    return ContactBook(tmp_path / "contacts.json")


@pytest.fixture
async def scheduler(json_store, deliverer, clock, bus):
    s = Scheduler(json_store, deliverer, clock=clock, bus=bus, retry_base_seconds=0.01)
    yield s
    await s.shutdown()


class LockedSqliteStore(SqliteReminderStore):
    """打开 fail_saves 后每次写入都报 database is locked"""

    def __init__(self, conn) -> None:
        super().__init__(conn)
        self.fail_saves = False

    async def save(self, reminders) -> None:
        if self.fail_saves:
            raise sqlite3.OperationalError("database is locked")
        await super().save(reminders)


@pytest.fixture
def locked_store(sqlite_conn):
    return LockedSqliteStore(sqlite_conn)
