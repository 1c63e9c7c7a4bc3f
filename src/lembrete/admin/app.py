from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse

from lembrete.logger import logger
from lembrete.metrics import runtime_metrics
from lembrete.storage.contact import ContactBook
from lembrete.world.scheduler import Scheduler

from .auth import require_admin_auth
from .schemas import ReminderOut, RuntimeControl, ShutdownRequest


def create_app(
    control: RuntimeControl,
    scheduler: Scheduler,
    contacts: ContactBook | None = None,
    channel_status: Callable[[], dict[str, object]] | None = None,
) -> FastAPI:
    app = FastAPI(title="Lembrete Admin API", version="1.0.0")

    def health_payload() -> dict[str, Any]:
        return {
            "status": "ok",
            "now_utc": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "uptime_seconds": max(0.0, time.time() - control.started_at),
            "armed_timers": len(scheduler.timers.armed_ids()),
            "shutdown_requested": control.shutdown_event.is_set(),
        }

    @app.get("/healthz", include_in_schema=False)
    async def healthz() -> PlainTextResponse:
        return PlainTextResponse("ok")

    @app.get("/api/v1/health")
    async def api_health() -> dict[str, Any]:
        return health_payload()

    @app.get("/api/v1/metrics")
    async def get_metrics(request: Request) -> dict[str, Any]:
        await require_admin_auth(request)

        channel = {"enabled": channel_status is not None}
        if channel_status is not None:
            channel.update(channel_status())

        return {
            "runtime": runtime_metrics.snapshot(),
            "components": {
                "scheduler": {"armed_timers": len(scheduler.timers.armed_ids())},
                "channel": channel,
            },
            "active_tasks": len(asyncio.all_tasks()),
        }

    @app.get("/api/v1/reminders")
    async def get_reminders(request: Request, owner_id: str | None = None) -> dict[str, Any]:
        await require_admin_auth(request)
        if owner_id:
            reminders = await scheduler.list_active(owner_id)
        else:
            reminders = await scheduler.list_pending()

        items = []
        for r in reminders:
            state = scheduler.get_state(r.reminder_id)
            items.append(ReminderOut.from_reminder(r, state.value if state else None).model_dump())
        return {"items": items, "owner_id": owner_id, "total": len(items)}

    @app.delete("/api/v1/reminders/{owner_id}/{reminder_id}")
    async def cancel_reminder(owner_id: str, reminder_id: str, request: Request) -> dict[str, Any]:
        auth_info = await require_admin_auth(request)
        found = await scheduler.cancel_one(owner_id, reminder_id)
        logger.info(f"管理端取消提醒: by={auth_info['user']}, owner={owner_id}, reminder_id={reminder_id}, found={found}")
        return {"ok": True, "found": found}

    @app.delete("/api/v1/reminders/{owner_id}")
    async def cancel_all_reminders(owner_id: str, request: Request) -> dict[str, Any]:
        auth_info = await require_admin_auth(request)
        removed = await scheduler.cancel_all(owner_id)
        logger.info(f"管理端清空提醒: by={auth_info['user']}, owner={owner_id}, count={len(removed)}")
        return {"ok": True, "cancelled": [r.reminder_id for r in removed]}

    @app.get("/api/v1/contacts")
    async def get_contacts(request: Request) -> dict[str, Any]:
        await require_admin_auth(request)
        items = await contacts.list() if contacts is not None else {}
        return {"items": items, "total": len(items)}

    @app.delete("/api/v1/contacts/{alias}")
    async def delete_contact(alias: str, request: Request) -> dict[str, Any]:
        auth_info = await require_admin_auth(request)
        if contacts is None:
            raise HTTPException(status_code=404, detail="联系人簿未启用")
        found = await contacts.remove(alias)
        logger.info(f"管理端删除联系人: by={auth_info['user']}, alias={alias}, found={found}")
        return {"ok": True, "found": found}

    @app.post("/api/v1/admin/shutdown")
    async def admin_shutdown(payload: ShutdownRequest, request: Request) -> dict[str, Any]:
        auth_info = await require_admin_auth(request)
        logger.warning(f"收到远程关闭请求: by={auth_info['user']}, reason={payload.reason}")
        control.shutdown_event.set()
        return {"ok": True, "action": "shutdown", "reason": payload.reason}

    return app
