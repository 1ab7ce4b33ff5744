class OutageMonitorError(Exception):
    """Base error for the outage monitor"""


class SourceError(OutageMonitorError):
    """Content source is unreachable, timed out or returned an unusable page"""


class DeliveryError(OutageMonitorError):
    """A message could not be delivered to one recipient"""

    def __init__(self, chat_id: int, reason: str):
        super().__init__(f"{chat_id}: {reason}")
        self.chat_id = chat_id
        self.reason = reason


class SearchQueryError(OutageMonitorError, ValueError):
    """Malformed admin search query"""
