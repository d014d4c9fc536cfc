"""
EasyTable Adapter - Polled Booking Source
=========================================

EasyTable has no webhooks. The poller asks each business's account for
bookings completed since the last poll and feeds them to the order handler.

USAGE:
    poller = EasyTablePoller(db, handler=intake.enqueue_order)
    await poller.start()
    ...
    await poller.stop()
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import requests

from ...domain.models import IntegrationConfig, OrderData, Platform, parse_datetime, utc_now
from ..persistence.database import Database
from .base import IntegrationAdapter, IntegrationError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.easytable.com/v1"
# First poll reaches back this far to pick up bookings missed while down
INITIAL_LOOKBACK = timedelta(hours=24)
DEFAULT_RETRY_AFTER_SECONDS = 5
MAX_RETRY_AFTER_SECONDS = 60


class EasyTableClient:
    """Thin REST client. Bearer auth, retries with backoff, honours 429 Retry-After."""

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: int = 10,
        max_retries: int = 3,
        retry_delay_seconds: float = 1.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self._session = session or requests.Session()

    def _request(self, path: str, params: Optional[dict] = None) -> Any:
        url = f"{self.base_url}{path}"
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            delay = self.retry_delay_seconds * attempt
            try:
                response = self._session.get(
                    url,
                    params=params,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                last_error = e
                logger.warning(f"EasyTable request attempt {attempt} failed: {e}")
            else:
                if response.status_code == 429:
                    delay = self._retry_after(response)
                    last_error = IntegrationError("EasyTable API error: 429")
                    logger.info(f"EasyTable rate limited, waiting {delay:.0f}s")
                elif not response.ok:
                    error = IntegrationError(
                        f"EasyTable API error: {response.status_code} - {response.text[:200]}"
                    )
                    if response.status_code < 500:
                        # Bad key, missing booking: retrying gives the same answer
                        raise error
                    last_error = error
                    logger.warning(f"EasyTable request attempt {attempt} failed: {error}")
                else:
                    try:
                        return response.json()
                    except ValueError as e:
                        last_error = e
                        logger.warning(f"EasyTable returned unreadable JSON: {e}")

            if attempt < self.max_retries:
                time.sleep(delay)

        raise IntegrationError(f"EasyTable request failed after {self.max_retries} attempts: {last_error}")

    @staticmethod
    def _retry_after(response: requests.Response) -> float:
        try:
            wait = float(response.headers.get("Retry-After") or DEFAULT_RETRY_AFTER_SECONDS)
        except ValueError:
            wait = DEFAULT_RETRY_AFTER_SECONDS
        return min(max(wait, 0.0), MAX_RETRY_AFTER_SECONDS)

    def get_completed_bookings(self, since: datetime, cursor: Optional[str] = None) -> dict:
        params = {"status": "completed", "since": since.isoformat()}
        if cursor:
            params["cursor"] = cursor
        data = self._request("/bookings", params)
        pagination = data.get("pagination") or {}
        return {
            "bookings": data.get("data") or [],
            "has_more": bool(pagination.get("hasMore")),
            "next_cursor": pagination.get("nextCursor"),
        }

    def get_all_completed_bookings(self, since: datetime) -> List[dict]:
        bookings: List[dict] = []
        cursor = None
        while True:
            page = self.get_completed_bookings(since, cursor)
            bookings.extend(page["bookings"])
            cursor = page["next_cursor"] if page["has_more"] else None
            if not cursor:
                return bookings

    def get_booking(self, booking_id: str) -> dict:
        return self._request(f"/bookings/{booking_id}")

    def test_connection(self) -> bool:
        try:
            self._request("/bookings", {"limit": 1})
            return True
        except IntegrationError as e:
            logger.warning(f"EasyTable connection test failed: {e}")
            return False


class EasyTableAdapter(IntegrationAdapter):
    name = Platform.EASYTABLE.value

    def __init__(self, base_url: Optional[str] = None, session: Optional[requests.Session] = None):
        super().__init__()
        self._base_url = base_url
        self._session = session
        self._client: Optional[EasyTableClient] = None

    def connect(self, config: IntegrationConfig):
        if not config.api_key:
            raise IntegrationError("EasyTable integration requires api_key")
        self._client = EasyTableClient(
            config.api_key,
            base_url=config.settings.get("baseUrl") or self._base_url,
            session=self._session,
        )
        super().connect(config)

    def disconnect(self):
        self._client = None
        super().disconnect()

    def test_connection(self) -> bool:
        if self._client is None:
            return False
        return self._client.test_connection()

    @property
    def client(self) -> EasyTableClient:
        if self._client is None:
            raise IntegrationError("EasyTable client not initialized. Call connect() first.")
        return self._client

    def should_process(self, event: dict) -> bool:
        return event.get("status") == "completed"

    def transform_booking(self, booking: dict) -> OrderData:
        booked_at = parse_datetime(f"{booking['bookingDate']}T{booking['bookingTime']}")
        return OrderData(
            order_id=str(booking["bookingId"]),
            platform=self.name,
            order_date=booked_at,
            completed_at=parse_datetime(booking.get("completedAt")) or utc_now(),
            customer_name=booking.get("guestName") or None,
            customer_email=booking.get("guestEmail") or None,
            customer_phone=booking.get("guestPhone") or None,
            metadata={
                "partySize": booking.get("partySize"),
                "restaurantId": booking.get("restaurantId"),
                "bookingStatus": booking.get("status"),
            },
        )

    def fetch_completed_bookings(self, since: datetime) -> List[OrderData]:
        """Blocking. Notifies handlers for every completed booking and returns them."""
        self._require_connected()
        bookings = self.client.get_all_completed_bookings(since)
        logger.info(f"[{self.name}] Fetched {len(bookings)} completed bookings since {since.isoformat()}")

        orders = []
        for booking in bookings:
            if not self.should_process(booking):
                continue
            try:
                order = self.transform_booking(booking)
            except (KeyError, ValueError) as e:
                logger.warning(f"[{self.name}] Skipping malformed booking {booking.get('bookingId')}: {e}")
                continue
            orders.append(order)
            self.notify_handlers(order)
        return orders


@dataclass
class BusinessPollState:
    business_id: str
    adapter: EasyTableAdapter
    last_poll_at: datetime


BusinessOrderHandler = Callable[[str, OrderData], Any]


class EasyTablePoller:
    """
    Polls every business with an enabled EasyTable integration.
    One asyncio task; each business's HTTP calls run in a worker thread.
    """

    def __init__(
        self,
        db: Database,
        handler: Optional[BusinessOrderHandler] = None,
        interval_seconds: int = 300,
        base_url: Optional[str] = None,
        adapter_factory: Optional[Callable[[], EasyTableAdapter]] = None,
    ):
        self._db = db
        self._handler = handler
        self.interval_seconds = interval_seconds
        self._adapter_factory = adapter_factory or (lambda: EasyTableAdapter(base_url))
        self._states: Dict[str, BusinessPollState] = {}
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self.is_running = False
        self.is_processing = False

    def set_order_handler(self, handler: BusinessOrderHandler):
        self._handler = handler

    async def start(self):
        if self.is_running:
            logger.info("EasyTable poller already running")
            return
        self.is_running = True
        self._stop_event = asyncio.Event()
        logger.info(f"Starting EasyTable poller ({self.interval_seconds}s interval)")
        await asyncio.to_thread(self.load_businesses)
        self._task = asyncio.create_task(self._run())

    async def stop(self):
        if not self.is_running:
            return
        logger.info("Stopping EasyTable poller")
        self._stop_event.set()
        if self._task:
            await self._task
            self._task = None
        for business_id in list(self._states):
            self.remove_business(business_id)
        self.is_running = False

    async def _run(self):
        while not self._stop_event.is_set():
            try:
                await self.poll()
            except Exception:
                logger.exception("EasyTable poll failed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    def load_businesses(self):
        for business in self._db.get_businesses_with_integration(Platform.EASYTABLE.value):
            integration = business.get_integration(Platform.EASYTABLE.value)
            if integration and integration.api_key:
                try:
                    self.add_business(business.id, integration)
                except IntegrationError as e:
                    logger.error(f"Cannot poll EasyTable for business {business.id}: {e}")
        logger.info(f"EasyTable poller tracking {len(self._states)} businesses")

    def add_business(self, business_id: str, config: IntegrationConfig):
        if business_id in self._states:
            self.remove_business(business_id)

        adapter = self._adapter_factory()
        adapter.connect(config)
        if self._handler is not None:
            handler = self._handler
            adapter.on_order_complete(lambda order: handler(business_id, order))

        self._states[business_id] = BusinessPollState(
            business_id=business_id,
            adapter=adapter,
            last_poll_at=utc_now() - INITIAL_LOOKBACK,
        )
        logger.info(f"EasyTable poller added business {business_id}")

    def remove_business(self, business_id: str):
        state = self._states.pop(business_id, None)
        if state is not None:
            state.adapter.disconnect()
            logger.info(f"EasyTable poller removed business {business_id}")

    def refresh_business(self, business_id: str):
        """Re-read one business's integration settings."""
        business = self._db.get_business(business_id)
        integration = business.get_integration(Platform.EASYTABLE.value) if business else None
        if integration and integration.enabled and integration.api_key:
            self.add_business(business_id, integration)
        else:
            self.remove_business(business_id)

    async def poll(self):
        if self.is_processing or not self._states:
            return
        self.is_processing = True
        try:
            logger.info(f"Polling EasyTable for {len(self._states)} businesses")
            for state in list(self._states.values()):
                await self._poll_business(state)
        finally:
            self.is_processing = False

    async def _poll_business(self, state: BusinessPollState):
        started_at = utc_now()
        try:
            orders = await asyncio.to_thread(state.adapter.fetch_completed_bookings, state.last_poll_at)
        except IntegrationError as e:
            logger.error(f"Failed to poll EasyTable for business {state.business_id}: {e}")
            if "401" in str(e):
                logger.warning(f"EasyTable auth error for business {state.business_id}, credentials may be invalid")
            return
        # Window start of this poll, so bookings completing mid-poll are seen next time
        state.last_poll_at = started_at
        logger.info(f"EasyTable business {state.business_id}: fetched {len(orders)} orders")

    def get_status(self) -> dict:
        return {
            "is_running": self.is_running,
            "business_count": len(self._states),
            "businesses": [
                {"business_id": s.business_id, "last_poll_at": s.last_poll_at.isoformat()}
                for s in self._states.values()
            ],
        }
