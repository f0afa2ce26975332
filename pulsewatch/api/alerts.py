"""Alert rule management, history and email checks."""

import smtplib
import time
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, ValidationError

from ..alerts.rules import AlertRuleCreate, AlertRuleUpdate, apply_update
from ..notifications.dispatcher import get_dispatcher
from ..notifications.email import EmailNotificationChannel
from ..processing.pipeline import get_pipeline
from ..storage.base import TelemetryStore
from ..storage.models import AlertRule
from .deps import run_blocking, store_dependency

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/alerts")


class TestEmailRequest(BaseModel):
    email: Optional[str] = None


def _now_ms() -> int:
    return int(time.time() * 1000)


def _email_channel() -> Optional[EmailNotificationChannel]:
    channel = get_dispatcher().channel("email")
    return channel if isinstance(channel, EmailNotificationChannel) else None


@router.get("/rules")
async def list_rules(
    dsn: str = Query(..., min_length=1),
    store: TelemetryStore = Depends(store_dependency),
) -> dict:
    rules = await run_blocking(store.list_rules, dsn=dsn)
    return {"list": [rule.to_api() for rule in rules]}


@router.post("/rules", status_code=201)
async def create_rule(
    body: AlertRuleCreate,
    store: TelemetryStore = Depends(store_dependency),
) -> dict:
    now = _now_ms()
    rule = AlertRule(**body.model_dump(), created_at=now, updated_at=now)

    await run_blocking(store.create_rule, rule)
    logger.info("alert_rule_created", rule_id=rule.id, dsn=rule.dsn, rule_type=rule.type.value)
    return rule.to_api()


@router.patch("/rules/{rule_id}")
async def update_rule(
    rule_id: str,
    body: AlertRuleUpdate,
    store: TelemetryStore = Depends(store_dependency),
) -> dict:
    rule = await run_blocking(store.get_rule, rule_id)
    if rule is None:
        raise HTTPException(status_code=404, detail="Rule not found")

    try:
        updated = apply_update(rule, body, _now_ms())
    except (ValueError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    await run_blocking(store.update_rule, updated)
    logger.info("alert_rule_updated", rule_id=rule_id)
    return updated.to_api()


@router.delete("/rules/{rule_id}", status_code=204)
async def delete_rule(
    rule_id: str,
    store: TelemetryStore = Depends(store_dependency),
) -> Response:
    deleted = await run_blocking(store.delete_rule, rule_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Rule not found")

    get_pipeline().alert_engine.cooldowns.forget_rule(rule_id)
    logger.info("alert_rule_deleted", rule_id=rule_id)
    return Response(status_code=204)


@router.get("/history")
async def list_history(
    dsn: str = Query(..., min_length=1),
    limit: int = Query(50, ge=1, le=500),
    store: TelemetryStore = Depends(store_dependency),
) -> dict:
    history = await run_blocking(store.list_history, dsn=dsn, limit=limit)
    return {"list": [entry.to_api() for entry in history]}


@router.get("/email-status")
async def email_status() -> dict:
    """Whether SMTP is configured and reachable."""
    channel = _email_channel()
    if channel is None:
        return {"configured": False, "connected": False}

    try:
        await run_blocking(channel.verify)
    except (smtplib.SMTPException, OSError) as e:
        logger.warning("email_verify_failed", error=str(e))
        return {"configured": True, "connected": False, "error": str(e)}

    return {"configured": True, "connected": True}


@router.post("/test-email")
async def send_test_email(body: TestEmailRequest) -> dict:
    if not body.email:
        raise HTTPException(status_code=400, detail="Email is required")

    channel = _email_channel()
    if channel is None:
        raise HTTPException(status_code=400, detail="Email service not configured")

    try:
        await channel.send_test(body.email)
    except (smtplib.SMTPException, OSError) as e:
        logger.warning("test_email_failed", email=body.email, error=str(e))
        raise HTTPException(status_code=500, detail="Failed to send test email, check SMTP settings")

    return {"success": True, "message": f"Test email sent to {body.email}"}
