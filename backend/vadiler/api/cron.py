"""
Cron API - scheduled jobs
Designed to be called by Vercel Cron or cron-job.org

Endpoints:
- GET /api/cron/verify-payments    - Settle orders stuck in pending payment
- GET /api/cron/payment-reminders  - Email customers whose payment is still missing

Security:
- Requires Authorization: Bearer <CRON_SECRET>

Author: TM3
Date: 2025-12-04
"""
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from vadiler.core.config import settings
from vadiler.services.payment_reminder_service import PaymentReminderService
from vadiler.services.payment_verification_service import PaymentVerificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["Cron"])


# ============================================================================
# Security - Cron Secret Verification
# ============================================================================

async def verify_cron_secret(authorization: Optional[str] = Header(None)):
    cron_secret = settings.CRON_SECRET
    if not cron_secret:
        logger.error("CRON_SECRET not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")

    expected = f"Bearer {cron_secret}".encode("utf-8")
    if not authorization or not hmac.compare_digest(authorization.encode("utf-8"), expected):
        logger.warning("Unauthorized cron request")
        raise HTTPException(status_code=401, detail="Unauthorized")


def get_verification_service() -> PaymentVerificationService:
    return PaymentVerificationService()


@router.get("/verify-payments", dependencies=[Depends(verify_cron_secret)])
async def verify_payments(service: PaymentVerificationService = Depends(get_verification_service)):
    try:
        return await service.verify_stuck_payments()
    except Exception as e:
        logger.error(f"Payment verification cron error: {e}")
        raise HTTPException(status_code=500, detail="Payment verification failed")


def get_reminder_service() -> PaymentReminderService:
    return PaymentReminderService()


@router.get("/payment-reminders", dependencies=[Depends(verify_cron_secret)])
async def payment_reminders(service: PaymentReminderService = Depends(get_reminder_service)):
    try:
        return service.send_reminders()
    except Exception as e:
        logger.error(f"Payment reminder cron error: {e}")
        raise HTTPException(status_code=500, detail="Payment reminders failed")
