"""
Operator Alerts

Sends failure notices for scheduled cache warming via Resend email service.
"""

import logging
import traceback
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

import resend

from idolboard.utils.config import get_settings

logger = logging.getLogger(__name__)

ALERT_TIMEZONE = ZoneInfo("Asia/Seoul")


@dataclass
class AlertResult:
    """Result of alert delivery."""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class AlertNotifier:
    """
    Operator alert service using Resend.

    A missing API key or recipient disables delivery; failures to send are
    logged and reported in the result, never raised.
    """

    DEFAULT_FROM_EMAIL = "alerts@idolsns.dev"
    DEFAULT_FROM_NAME = "SNS Cache System"

    def __init__(
        self,
        api_key: Optional[str] = None,
        to_email: Optional[str] = None,
        from_email: Optional[str] = None,
    ):
        settings = get_settings()
        self.api_key = api_key or settings.RESEND_API_KEY
        self.to_email = to_email or settings.ALERT_EMAIL
        self.from_email = from_email or self.DEFAULT_FROM_EMAIL

        if not self.api_key:
            logger.warning("RESEND_API_KEY not set - operator alerts disabled")
        else:
            resend.api_key = self.api_key

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.to_email)

    async def send_failure_alert(self, job_name: str, error: BaseException) -> AlertResult:
        """
        Notify the operator that a scheduled warming job failed.

        Args:
            job_name: Human-readable job label
            error: The exception that aborted the job

        Returns:
            AlertResult
        """
        if not self.enabled:
            return AlertResult(success=False, error="Alerts not configured")

        subject = f"[SNS 캐시 시스템] {job_name} 실패 알림"
        body = self._failure_body(job_name, error)

        try:
            params = {
                "from": f"{self.DEFAULT_FROM_NAME} <{self.from_email}>",
                "to": [self.to_email],
                "subject": subject,
                "text": body,
            }

            response = resend.Emails.send(params)

            logger.info(f"Failure alert sent to {self.to_email}: {response.get('id', 'unknown')}")
            return AlertResult(success=True, message_id=response.get("id"))

        except Exception as e:
            logger.error(f"Failure alert delivery failed: {e}")
            return AlertResult(success=False, error=str(e))

    def _failure_body(self, job_name: str, error: BaseException) -> str:
        ran_at = datetime.now(ALERT_TIMEZONE).strftime("%Y-%m-%d %H:%M:%S %Z")
        stack = "".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        ).strip() or "No stack trace"

        return f"""
===========================================
Cache warming job failed
===========================================

Job: {job_name}
Ran at: {ran_at}
Error: {error}

Stack trace:
{stack}

Next steps:
1. Check the warming job logs
2. Check the sns_data sheet
3. Run a manual warm if needed (scripts/warm_cache.py)
""".strip()
