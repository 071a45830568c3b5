"""
Request alert worker

Consumes blood request inserts from the change feed, picks the donors to
alert with the NotificationMatcher and hands each alert to the push
transport. Delivery is best effort: a failed push is logged and counted,
never retried.

Run with: python -m bloodlink.workers.request_alerts
"""
import asyncio
from typing import Any, List, Optional

from pydantic import ValidationError as SchemaError

from bloodlink.core.config import get_settings
from bloodlink.core.errors import TransportError
from bloodlink.core.logger import get_logger, setup_logging
from bloodlink.core.retry import RetryConfig, retry_async
from bloodlink.infrastructure.change_feed import INSERT, ChangeChannel, ChangeFeed, RedisChangeFeed
from bloodlink.infrastructure.database import create_session_factory, get_engine
from bloodlink.infrastructure.identity import SessionIdentityProvider
from bloodlink.infrastructure.push import LoggingPushTransport, PushTransport
from bloodlink.schemas import BloodRequest, NotificationTarget
from bloodlink.services.blood_request_service import REQUESTS_TABLE
from bloodlink.services.notification_matcher import NotificationMatcher
from bloodlink.services.profile_store import ProfileStore

logger = get_logger(__name__)


class RequestAlertWorker:
    """
    Background worker that fans blood requests out to donors

    Responsibilities:
    1. Subscribe to blood request inserts
    2. Load donor candidates
    3. Match them against the request
    4. Push one alert per target
    5. Resubscribe when the feed connection drops
    """

    def __init__(
        self,
        change_feed: ChangeFeed,
        profile_store: ProfileStore,
        push: PushTransport,
        matcher: Optional[NotificationMatcher] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.change_feed = change_feed
        self.profile_store = profile_store
        self.push = push
        self.matcher = matcher or NotificationMatcher()
        self.retry_config = retry_config or RetryConfig.from_settings(get_settings())

        self.running = False
        self._channel: Optional[ChangeChannel] = None

        # Statistics
        self.processed_count = 0
        self.alerts_sent = 0
        self.push_failures = 0
        self.skipped_count = 0
        self.failed_count = 0

    async def handle_record(self, record: Any) -> List[NotificationTarget]:
        """
        Match one inserted request and push its alerts

        Raises:
            TransportError: Donor candidates could not be loaded
        """
        try:
            request = BloodRequest.model_validate(record)
        except SchemaError:
            self.skipped_count += 1
            logger.warning(
                "Skipping malformed blood request event",
                record_id=record.get("id") if isinstance(record, dict) else None,
                payload_type=type(record).__name__,
            )
            return []

        candidates = await self.profile_store.donor_candidates()
        targets = self.matcher.match(request, candidates)

        for target in targets:
            try:
                await self.push.send(target.user_id, target.payload)
            except Exception as e:
                self.push_failures += 1
                logger.warning(
                    "Push delivery failed",
                    request_id=request.id,
                    user_id=target.user_id,
                    error=str(e),
                )
                continue
            self.alerts_sent += 1

        self.processed_count += 1
        return targets

    async def run(self) -> None:
        """
        Main worker loop

        Raises:
            TransportError: The feed could not be re-established within the retry budget
        """
        self.running = True
        logger.info("Request alert worker started")

        while self.running:
            channel = await retry_async(
                self.change_feed.open_channel,
                REQUESTS_TABLE,
                INSERT,
                config=self.retry_config,
                retry_on_exceptions=(TransportError,),
            )
            self._channel = channel

            try:
                async for record in channel:
                    await self._process(record)
            except TransportError as e:
                if self.running:
                    logger.warning("Request feed lost, resubscribing", error=str(e))
            finally:
                self._channel = None
                await channel.close()

        logger.info(
            "Request alert worker stopped",
            processed=self.processed_count,
            alerts_sent=self.alerts_sent,
            push_failures=self.push_failures,
            failed=self.failed_count,
        )

    async def _process(self, record: Any) -> None:
        # Failures here belong to this request; the subscription stays up
        try:
            await self.handle_record(record)
        except TransportError as e:
            self.failed_count += 1
            logger.error(
                "Blood request alerts not sent",
                request_id=record.get("id") if isinstance(record, dict) else None,
                error=str(e),
            )

    async def stop(self) -> None:
        self.running = False
        if self._channel is not None:
            await self._channel.close()


async def main() -> None:
    setup_logging()

    change_feed = RedisChangeFeed()
    await change_feed.connect()

    session_factory = create_session_factory(get_engine())
    worker = RequestAlertWorker(
        change_feed=change_feed,
        profile_store=ProfileStore(session_factory, SessionIdentityProvider()),
        push=LoggingPushTransport(),
    )

    try:
        await worker.run()
    finally:
        await change_feed.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
