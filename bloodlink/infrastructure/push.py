"""
Push transport contract

Delivery is best-effort and owned by the transport; callers hand over
(target, payload) once and never retry.
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Tuple

from bloodlink.core.logger import get_logger

logger = get_logger(__name__)


class PushTransport(ABC):
    @abstractmethod
    async def send(self, user_id: str, payload: Dict[str, str]) -> None:
        """Deliver one alert to one user"""


class LoggingPushTransport(PushTransport):
    """Logs each alert instead of delivering it; keeps what it was given"""

    def __init__(self):
        self.sent: List[Tuple[str, Dict[str, str]]] = []

    async def send(self, user_id: str, payload: Dict[str, str]) -> None:
        self.sent.append((user_id, payload))
        logger.info("Push notification", user_id=user_id, title=payload.get("title"))
