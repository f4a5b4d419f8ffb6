"""
Pytest configuration and fixtures.

Ledger statements run against a real SQLAlchemy async engine on in-memory
SQLite; billing, storefront, queue and notifier are in-memory fakes.
"""

import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set

import pytest

from config.settings import Settings
from club.app.factories.build_services import build_core_services
from db.dal import cycle_dal, ledger_dal, track_dal
from db.database import build_engine, build_session_factory
from db.models import Base, CycleStatus, LedgerCategory

NOW = datetime(2026, 10, 19, 18, 0, tzinfo=timezone.utc)
WINDOW_OPENS = datetime(2026, 10, 15, 0, 0, tzinfo=timezone.utc)
WINDOW_CLOSES = datetime(2026, 10, 25, 0, 0, tzinfo=timezone.utc)
AFTER_WINDOW = datetime(2026, 10, 28, 12, 0, tzinfo=timezone.utc)

CREDIT_PRODUCT_ID = 999

# product_id -> (track, existing, new, swap, swap_ref, newsub_ref, existingsub_ref)
LEDGER_SEED = {
    101: ("hiphop", 10, 5, 3, 1011, 1012, 1013),
    202: ("rock", 8, 4, 2, 2021, 2022, 2023),
    303: ("jazz", 5, 0, 0, 3031, 3032, 3033),
}
SWAP_ONLY_PRODUCT = 404


class FixedClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


# ==================== Fakes ====================


class FakeBilling:
    """In-memory billing engine keyed by subscription id."""

    def __init__(self):
        self.subscriptions: Dict[str, Dict[str, Any]] = {}
        self.customers: Dict[str, Dict[str, Any]] = {}
        self.plans: Dict[str, Dict[str, Any]] = {}
        self.estimates: Dict[str, Dict[str, Any]] = {}
        self.invoices: Dict[str, Dict[str, Any]] = {}
        self.scheduled: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.failures: Dict[str, Exception] = {}
        self.addon_plans = {
            "list": [
                {"plan": {"id": "1-month-usa-new", "meta_data": {"plan_type": "usa"}}},
                {"plan": {"id": "1-month-international-new", "meta_data": {"plan_type": "international"}}},
            ]
        }
        self._ids = itertools.count(1)

    def _record(self, name: str, *args):
        self.calls.append((name, *args))
        if name in self.failures:
            raise self.failures[name]

    def calls_to(self, name: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == name]

    def add_subscription(
        self,
        customer_id: str,
        metadata: Dict[str, Any],
        status: str = "active",
        plan_id: str = "3-month-usa",
        **extra,
    ) -> Dict[str, Any]:
        subscription_id = extra.pop("id", None) or f"sub_{next(self._ids)}"
        subscription = {
            "id": subscription_id,
            "customer_id": customer_id,
            "status": status,
            "plan_id": plan_id,
            "meta_data": metadata,
            **extra,
        }
        self.subscriptions[subscription_id] = subscription
        return subscription

    async def list_subscriptions(self, customer_id):
        self._record("list_subscriptions", customer_id)
        return [{"subscription": s} for s in self.subscriptions.values() if s["customer_id"] == customer_id]

    async def get_subscription(self, subscription_id):
        self._record("get_subscription", subscription_id)
        subscription = self.subscriptions.get(subscription_id)
        return {"subscription": subscription} if subscription else None

    async def get_subscription_with_scheduled_changes(self, subscription_id):
        self._record("get_subscription_with_scheduled_changes", subscription_id)
        return {"subscription": self.scheduled.get(subscription_id, {})}

    async def create_subscription(self, customer_id, params):
        self._record("create_subscription", customer_id, params)
        subscription = self.add_subscription(
            customer_id,
            params["meta_data"],
            status="future" if params.get("start_date") else "active",
            plan_id=params["plan_id"],
        )
        return {"subscription": subscription}

    async def update_subscription(self, subscription_id, params):
        self._record("update_subscription", subscription_id, params)
        subscription = self.subscriptions[subscription_id]
        if "meta_data" in params:
            subscription["meta_data"] = params["meta_data"]
        if "plan_id" in params:
            subscription["plan_id"] = params["plan_id"]
        return {"subscription": subscription, "customer": self.customers.get(subscription["customer_id"])}

    async def cancel_subscription(self, subscription_id, end_of_term):
        self._record("cancel_subscription", subscription_id, end_of_term)
        subscription = self.subscriptions[subscription_id]
        subscription["status"] = "non_renewing" if end_of_term else "cancelled"
        return {"subscription": subscription}

    async def reactivate_subscription(self, subscription_id, subscription_type, customer_id):
        self._record("reactivate_subscription", subscription_id, subscription_type, customer_id)
        subscription = self.subscriptions.get(subscription_id)
        if subscription:
            subscription["status"] = "active"
        return {"subscription": subscription}

    async def get_plan(self, plan_id):
        self._record("get_plan", plan_id)
        return self.plans.get(plan_id, {})

    async def get_renewal_estimate(self, subscription_id):
        self._record("get_renewal_estimate", subscription_id)
        return self.estimates.get(subscription_id)

    async def get_latest_invoice(self, subscription_id):
        self._record("get_latest_invoice", subscription_id)
        return self.invoices.get(subscription_id, {"list": []})

    async def get_invoice_download_url(self, invoice_id):
        self._record("get_invoice_download_url", invoice_id)
        return f"https://billing.test/invoices/{invoice_id}.pdf"

    async def list_addon_plans(self):
        self._record("list_addon_plans")
        return self.addon_plans

    async def get_customer_by_email(self, email):
        self._record("get_customer_by_email", email)
        for customer in self.customers.values():
            if customer.get("email") == email:
                return {"customer": customer}
        return {}


class FakeStorefront:
    def __init__(self):
        self.customers: Dict[str, Dict[str, Any]] = {}
        self.variants: Dict[int, List[Dict[str, Any]]] = {}
        self.unavailable_variants: Set[int] = set()
        self.metafields: List[Dict[str, Any]] = []
        self.tags: List[tuple] = []
        self.availability_checks: List[int] = []

    async def fetch_variants(self, product_id):
        return self.variants.get(int(product_id), [])

    async def is_variant_available(self, variant_id):
        self.availability_checks.append(variant_id)
        return variant_id not in self.unavailable_variants

    async def fetch_customer_by_id(self, customer_id):
        return self.customers.get(str(customer_id))

    async def fetch_customer_by_email(self, email):
        for customer in self.customers.values():
            if customer.get("email") == email:
                return customer
        return None

    async def create_metafield(self, metafield):
        self.metafields.append(metafield)
        return {"id": len(self.metafields), **metafield}

    async def add_customer_tag(self, customer, tag):
        self.tags.append((customer["id"], tag))


class FakeQueue:
    def __init__(self, failures_before_success: int = 0):
        self.jobs: List[Dict[str, Any]] = []
        self.failures_before_success = failures_before_success
        self.attempts = 0

    async def enqueue(self, kind, payload, priority=None, delay=None):
        self.attempts += 1
        if self.failures_before_success > 0:
            self.failures_before_success -= 1
            raise ConnectionError("queue unavailable")
        self.jobs.append({"kind": kind, "payload": payload, "priority": priority, "delay": delay})
        return f"job_{len(self.jobs)}"

    def of_kind(self, kind: str) -> List[Dict[str, Any]]:
        return [job for job in self.jobs if job["kind"] == kind]


class FakeNotifier:
    def __init__(self, fail: bool = False):
        self.published: List[tuple] = []
        self.fail = fail

    async def publish(self, channel, event, payload):
        if self.fail:
            raise ConnectionError("pubsub unavailable")
        self.published.append((channel, event, payload))


# ==================== Fixtures ====================


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        REDIS_CACHE_ENABLED=False,
        SWAP_FOR_CREDIT_PRODUCT_ID=CREDIT_PRODUCT_ID,
        GIFT_COUPON_ID="GIFT-INTERNAL",
        GIFT_BRIDGE_6_MONTHS="BRIDGE-6",
        GIFT_BRIDGE_12_MONTHS="BRIDGE-12",
        CHECKOUT_OFFER_REGULAR="OFFER-REGULAR",
        DISPATCH_RETRY_DELAY_SECONDS=0,
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
async def engine(settings):
    engine = build_engine(settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine):
    async_session_factory = build_session_factory(engine)
    async with async_session_factory() as session:
        yield session


@pytest.fixture
async def seeded(session) -> Dict[str, Any]:
    """Active cycle with a swap window around NOW and three track offerings."""
    tracks = {}
    for value in ("hiphop", "rock", "jazz"):
        tracks[value] = await track_dal.create_track(session, {"value": value, "label": value.title()})
    await track_dal.create_track(session, {"value": "country", "is_active": False})

    cycle = await cycle_dal.create_cycle(session, {
        "name": "2026-11",
        "status": CycleStatus.active,
        "swap_window_opens_at": WINDOW_OPENS,
        "swap_window_closes_at": WINDOW_CLOSES,
    })
    for product_id, (track, existing, new, swap, swap_ref, newsub_ref, existingsub_ref) in LEDGER_SEED.items():
        await ledger_dal.create_ledger_row(session, {
            "cycle_id": cycle.id,
            "product_id": product_id,
            "track_id": tracks[track].id,
            "category": LedgerCategory.rotm,
            "existing_sub_qty": existing,
            "new_sub_qty": new,
            "swap_qty": swap,
            "swap_variant_ref": swap_ref,
            "newsub_variant_ref": newsub_ref,
            "existingsub_variant_ref": existingsub_ref,
        })
    await ledger_dal.create_ledger_row(session, {
        "cycle_id": cycle.id,
        "product_id": SWAP_ONLY_PRODUCT,
        "category": LedgerCategory.swap,
        "swap_qty": 6,
    })
    await session.commit()
    return {"cycle_id": cycle.id, "tracks": {k: v.id for k, v in tracks.items()}}


@pytest.fixture
def billing() -> FakeBilling:
    return FakeBilling()


@pytest.fixture
def storefront() -> FakeStorefront:
    storefront = FakeStorefront()
    storefront.customers["sh_1"] = {
        "id": "sh_1",
        "email": "vinyl@example.com",
        "first_name": "Ada",
        "last_name": "Lovelace",
        "tags": "",
        "defaultAddress": {
            "last_name": "Lovelace",
            "address1": "1 Groove St",
            "city": "Denver",
            "zip": "80202",
            "country": "United States",
            "country_code": "US",
            "phone": "+13035550100",
        },
    }
    return storefront


@pytest.fixture
def queue() -> FakeQueue:
    return FakeQueue()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def services(settings, billing, storefront, queue, notifier, clock) -> Dict[str, Any]:
    return build_core_services(
        settings,
        billing=billing,
        storefront=storefront,
        queue=queue,
        notifier=notifier,
        clock=clock,
    )


@pytest.fixture
def core(services):
    return services["subscription_core_service"]


async def counters(session, cycle_id: int, product_id: int) -> Optional[Dict[str, int]]:
    return await ledger_dal.get_counters(session, cycle_id, product_id)


def primary_metadata(product_id: int = 101, track: str = "hiphop", swapped: bool = False) -> Dict[str, Any]:
    return {
        "type": "primary",
        "new": False,
        "swap_window": "opened",
        "product": {"id": product_id, "variant_id": 1, "track": track, "swapped": swapped, "swapped_date": None},
    }


def addon_metadata(product_id: int, track: str, swapped: bool = False) -> Dict[str, Any]:
    metadata = primary_metadata(product_id, track, swapped)
    metadata["type"] = "addon"
    return metadata
