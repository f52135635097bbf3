"""
Plan activation email (best-effort).

Sent only after the reconciler has committed a checkout. Nothing raised here
reaches the webhook response.
"""

import logging
import os

from billing.errors import NotificationError
from shared.aws_clients import get_ses
from shared.logging_utils import mask_email
from shared.metrics import emit_metric

logger = logging.getLogger(__name__)

NOTIFY_EMAIL_SENDER = os.environ.get("NOTIFY_EMAIL_SENDER") or "noreply@sprouttie.app"
FRONTEND_URL = os.environ.get("FRONTEND_URL") or "https://sprouttie.app"


class Notifier:
    """Sends the plan activation message through SES."""

    def __init__(self, ses_client=None, sender: str = NOTIFY_EMAIL_SENDER):
        self._ses = ses_client
        self.sender = sender

    @property
    def ses(self):
        if self._ses is None:
            self._ses = get_ses()
        return self._ses

    def notify(self, plan: str, email: str) -> None:
        """Tell the user their plan is active. Never raises."""
        try:
            self._send(plan, email)
        except Exception as e:
            logger.error(f"Failed to send activation email to {mask_email(email)}: {e}")
            emit_metric("NotificationFailed", dimensions={"Plan": plan or "unknown"})

    def _send(self, plan: str, email: str) -> None:
        if not email:
            raise NotificationError("No recipient address")

        plan_name = plan.capitalize()
        self.ses.send_email(
            Source=self.sender,
            Destination={"ToAddresses": [email]},
            Message={
                "Subject": {"Data": f"Your Sprouttie {plan_name} plan is active", "Charset": "UTF-8"},
                "Body": {
                    "Text": {
                        "Data": (
                            f"Thanks for subscribing!\n\n"
                            f"Your Sprouttie {plan_name} plan is now active.\n\n"
                            f"Manage your subscription at: {FRONTEND_URL}/plans\n"
                        ),
                        "Charset": "UTF-8",
                    },
                },
            },
        )
        logger.info(f"Activation email sent to {mask_email(email)} for plan {plan}")
