import pytest

from club.errors import ExternalServiceError, NotFoundError, ValidationError
from club.services.dispatcher import JobKind
from db.dal import feedback_dal
from tests.conftest import AFTER_WINDOW, addon_metadata, primary_metadata

CUSTOMER = "cb_1"


@pytest.fixture
def billing_views(services):
    return services["subscription_billing_service"]


@pytest.fixture
def feedback(services):
    return services["feedback_service"]


class TestGetSubscriptions:
    @pytest.mark.asyncio
    async def test_primary_addons_and_estimate(self, billing_views, billing):
        primary = billing.add_subscription(CUSTOMER, primary_metadata())
        addon = billing.add_subscription(CUSTOMER, addon_metadata(202, "rock"))
        billing.estimates[primary["id"]] = {"invoice_estimate": {"sub_total": 6000, "total": 5400}}

        result = await billing_views.get_subscriptions(CUSTOMER)

        assert result["cb_primary_subscription"]["id"] == primary["id"]
        assert [a["id"] for a in result["cb_addons"]] == [addon["id"]]
        assert result["cb_upcoming_estimate"] == {"sub_total": 6000, "total": 5400}
        assert "cb_has_term_changes" not in result

    @pytest.mark.asyncio
    async def test_scheduled_term_change(self, billing_views, billing):
        primary = billing.add_subscription(CUSTOMER, primary_metadata(), status="future", has_scheduled_changes=True)
        billing.scheduled[primary["id"]] = {
            "plan_id": "12-month-usa",
            "billing_period": 1,
            "billing_period_unit": "year",
        }

        result = await billing_views.get_subscriptions(CUSTOMER)

        assert result["cb_has_term_changes"] is True
        assert result["cb_subscription_with_changes"] == {"billing_period": 12, "billing_period_unit": "month"}
        assert "cb_upcoming_estimate" not in result

    @pytest.mark.asyncio
    async def test_no_subscriptions(self, billing_views):
        assert await billing_views.get_subscriptions(CUSTOMER) == {"cb_addons": []}

    @pytest.mark.asyncio
    async def test_missing_customer(self, billing_views):
        with pytest.raises(ValidationError):
            await billing_views.get_subscriptions(None)


class TestRenewalEstimate:
    @pytest.mark.asyncio
    async def test_discount_labels(self, billing_views, billing):
        billing.estimates["sub_1"] = {
            "subscription_estimate": {"id": "sub_1"},
            "invoice_estimate": {
                "sub_total": 6000,
                "total": 4500,
                "taxes": [],
                "discounts": [
                    {"description": "FALLPROMO", "amount": 1000},
                    {"description": "Promotional Credits", "amount": 500},
                    {"description": "Loyalty", "amount": 0},
                ],
            },
        }

        estimate = await billing_views.get_renewal_estimate("sub_1")

        assert estimate["subscriptionId"] == "sub_1"
        assert estimate["subtotalAfterDiscounts"] == 4500
        assert [d["description"] for d in estimate["discounts"]] == [
            "Renewal Offer",
            "Membership Credits",
            "Loyalty",
        ]

    @pytest.mark.asyncio
    async def test_requires_subscription_id(self, billing_views):
        with pytest.raises(NotFoundError):
            await billing_views.get_renewal_estimate("")


class TestInvoice:
    @pytest.mark.asyncio
    async def test_latest_invoice_url(self, billing_views, billing):
        billing.invoices["sub_1"] = {"list": [{"invoice": {"id": "inv_9"}}]}

        assert await billing_views.download_invoice("sub_1") == "https://billing.test/invoices/inv_9.pdf"

    @pytest.mark.asyncio
    async def test_no_invoice(self, billing_views):
        assert await billing_views.download_invoice("sub_1") == ""

    @pytest.mark.asyncio
    async def test_billing_error_surfaces(self, billing_views, billing):
        billing.failures["get_latest_invoice"] = ConnectionError("billing down")

        with pytest.raises(ExternalServiceError):
            await billing_views.download_invoice("sub_1")


class TestSwapsFeedback:
    @pytest.fixture(autouse=True)
    def customers(self, storefront, billing):
        storefront.customers["7001"] = {"id": 7001, "email": "fan@example.com", "first_name": "Nina", "last_name": "S"}
        billing.customers[CUSTOMER] = {"id": CUSTOMER, "email": "fan@example.com"}

    @pytest.mark.asyncio
    async def test_records_next_month(self, feedback, session, storefront, queue):
        result = await feedback.submit_swaps_feedback(session, email=" Fan@Example.com ", rating="positive", text="More jazz")

        assert result == {"already_added": False}
        stored = await feedback_dal.get_feedback_for_period(session, "fan@example.com", "11", "2026")
        assert stored.rating == 1
        assert stored.month_name == "November"
        assert stored.billing_customer_id == CUSTOMER
        assert storefront.metafields[0]["value"] == "11_2026"
        job, = queue.of_kind(JobKind.SWAPS_FEEDBACK)
        assert job["kind"] == "swaps-feedback-job"
        assert job["payload"]["swapFeedback"]["storefront_customer_id"] == 7001

    @pytest.mark.asyncio
    async def test_second_submission_is_idempotent(self, feedback, session, storefront, queue):
        await feedback.submit_swaps_feedback(session, email="fan@example.com", rating="negative")

        result = await feedback.submit_swaps_feedback(session, email="fan@example.com", rating="positive")

        assert result == {"already_added": True}
        assert len(storefront.metafields) == 1
        assert len(queue.of_kind(JobKind.SWAPS_FEEDBACK)) == 1

    @pytest.mark.asyncio
    async def test_metafield_failure_rolls_back(self, feedback, session, storefront, queue, monkeypatch):
        async def fail(metafield):
            raise ConnectionError("storefront down")

        monkeypatch.setattr(storefront, "create_metafield", fail)

        with pytest.raises(ExternalServiceError):
            await feedback.submit_swaps_feedback(session, email="fan@example.com", rating="positive")

        assert await feedback_dal.get_feedback_for_period(session, "fan@example.com", "11", "2026") is None
        assert queue.jobs == []

    @pytest.mark.asyncio
    async def test_december_rolls_into_january(self, feedback, session, clock):
        clock.now = AFTER_WINDOW.replace(month=12)

        await feedback.submit_swaps_feedback(session, email="fan@example.com", rating="positive")

        assert await feedback_dal.get_feedback_for_period(session, "fan@example.com", "01", "2027") is not None

    @pytest.mark.asyncio
    async def test_missing_rating(self, feedback, session):
        with pytest.raises(ValidationError):
            await feedback.submit_swaps_feedback(session, email="fan@example.com", rating=None)
