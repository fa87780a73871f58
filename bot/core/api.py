from __future__ import annotations

from dataclasses import asdict

from fastapi import FastAPI, Header, HTTPException

from core.bot import ModmailBot
from database.models import ModmailRecord


def _auth(x_api_key: str | None, expected: str) -> None:
    if not expected:
        return
    if x_api_key != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")


def _summary(record: ModmailRecord) -> dict[str, object]:
    return {
        "id": record.id,
        "ticket_number": record.ticket_number,
        "user_id": record.user_id,
        "thread_id": record.thread_id,
        "category_id": record.category_id,
        "status": record.status,
        "claimed_by": record.claimed_by,
        "created_at": record.created_at,
    }


def create_api_app(bot: ModmailBot) -> FastAPI:
    app = FastAPI(title="Modmail API", version="1.0.0")

    @app.get("/health")
    async def health() -> dict[str, object]:
        return {"status": "ok", "hooks": bot.pipeline.stats()}

    @app.get("/guilds/{guild_id}/tickets/open")
    async def open_tickets(guild_id: int, x_api_key: str | None = Header(default=None)) -> dict[str, object]:
        _auth(x_api_key, bot.config.fastapi.api_key)
        rows = await bot.modmail_repo.list_open(guild_id, limit=200)
        return {"items": [_summary(row) for row in rows]}

    @app.get("/tickets/{ticket_id}")
    async def ticket_detail(ticket_id: str, x_api_key: str | None = Header(default=None)) -> dict[str, object]:
        _auth(x_api_key, bot.config.fastapi.api_key)
        record = await bot.modmail_repo.get_by_id(ticket_id, with_messages=True)
        if record is None:
            raise HTTPException(status_code=404, detail="Ticket not found")
        payload = _summary(record)
        payload.update(
            {
                "close_reason": record.close_reason,
                "closed_at": record.closed_at,
                "metrics": asdict(record.metrics),
                "form_responses": [asdict(response) for response in record.form_responses],
                "messages": [asdict(message) for message in record.messages],
            }
        )
        return payload

    return app
