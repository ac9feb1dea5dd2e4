from fastapi import Header, HTTPException, Request

from teambot.core.config import settings


def get_ledger(request: Request):
    return request.app.state.ledger


def get_scheduler(request: Request):
    return request.app.state.scheduler


def get_messenger(request: Request):
    return request.app.state.messenger


def get_sheet(request: Request):
    return request.app.state.sheet


def admin_required(x_admin_token: str | None = Header(default=None)):
    if not x_admin_token or x_admin_token != settings.ADMIN_TOKEN:
        raise HTTPException(status_code=403, detail="Admin access required")
    return True
