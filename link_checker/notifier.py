"""
1.0 Notifier Module
Posts link checker summaries to a Slack incoming webhook.

Delivery is best effort: a failed post is logged and never retried, and it
never fails the cycle.
"""

import logging
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

FINAL_TITLE = "Broken Link Checker"
FINAL_TEXT = "Please check the linked report to review the latest broken links detected."
INTERMEDIATE_TITLE = "Broken Link Checker (analysis in progress)"
INTERMEDIATE_TEXT = "A link checker run just finished; the analysis is still in progress."


class SlackNotifier:
    """
    2.0 Sends one attachment-style message per call.

    Args:
        webhook_url: Slack incoming webhook; empty disables sending
        timeout: Request timeout in seconds
    """

    def __init__(self, webhook_url: Optional[str], timeout: int = 10, session: Optional[requests.Session] = None):
        self.webhook_url = webhook_url or ""
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    @staticmethod
    def build_message(title: str, text: str, num_errors: int, link: str) -> Dict[str, Any]:
        """2.1 Slack payload with the error count as a field."""
        return {
            "attachments": [
                {
                    "fallback": f"The Link Checker found {num_errors} URLs with errors. See {link} for details.",
                    "color": "#36a64f",
                    "pretext": "There are some broken links recently detected in the managed accounts.",
                    "title": title,
                    "title_link": link,
                    "text": text,
                    "fields": [
                        {"title": "URLs with Errors", "value": num_errors, "short": False},
                    ],
                }
            ]
        }

    def send(self, title: str, text: str, num_errors: int, link: str = "") -> bool:
        """2.2 Post a message. Returns True when Slack accepted it."""
        if not self.enabled:
            logger.info("No Slack webhook configured, skipping notification")
            return False

        payload = self.build_message(title, text, num_errors, link)
        try:
            response = self.session.post(self.webhook_url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.warning(f"Slack notification failed: {e}")
            return False

        if response.status_code != 200:
            logger.warning(f"Slack notification rejected: status={response.status_code}")
            return False

        logger.info(f"Slack notification sent ({num_errors} errors)")
        return True
