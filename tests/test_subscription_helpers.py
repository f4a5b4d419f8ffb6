from datetime import datetime, timezone

import pytest

from club.errors import IntegrityError, ValidationError
from club.services.subscription import GiftDetails, SubscriptionMetadata, SubscriptionRulesHelper, normalize_subscriptions
from club.services.subscription.helpers import end_of_term_for
from tests.conftest import NOW, addon_metadata, primary_metadata


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def rules(settings):
    return SubscriptionRulesHelper(settings)


class TestInputChecks:
    def test_coupon_codes(self, rules):
        assert rules.validate_coupon_code(None)
        assert rules.validate_coupon_code("  ")
        assert rules.validate_coupon_code("WELCOME10")
        assert not rules.validate_coupon_code("GIFT-INTERNAL")
        assert not rules.validate_coupon_code("SUMMERPROMO")

    def test_plan_country(self, rules):
        rules.check_plan_country("3-month-usa", "United States")
        rules.check_plan_country("3-month-international", "Canada")

        with pytest.raises(ValidationError):
            rules.check_plan_country("3-month-international", "United States")
        with pytest.raises(ValidationError):
            rules.check_plan_country("3-month-usa", "Canada")

    def test_address_requires_every_field(self):
        with pytest.raises(ValidationError) as exc:
            SubscriptionRulesHelper.validate_address({"defaultAddress": {"city": "Denver"}})
        assert exc.value.details["missing"] == ["last_name", "address1", "zip", "country", "phone"]

    def test_addon_plan_selection(self, rules, billing):
        assert rules.select_addon_plan_id(billing.addon_plans, "US") == "1-month-usa-new"
        assert rules.select_addon_plan_id(billing.addon_plans, "DE") == "1-month-international-new"

    def test_addon_plans_incomplete(self, rules):
        plans = {"list": [{"plan": {"id": "1-month-usa-new", "meta_data": {"plan_type": "usa"}}}]}
        with pytest.raises(IntegrityError):
            rules.select_addon_plan_id(plans, "US")


class TestDuplicates:
    def test_live_primary_is_duplicate(self, rules):
        entries = [{"subscription": {"id": "sub_1", "status": "non_renewing", "meta_data": primary_metadata()}}]
        assert rules.find_duplicate(entries, "primary", "hiphop")["id"] == "sub_1"

    def test_cancelled_primary_is_not(self, rules):
        entries = [{"subscription": {"id": "sub_1", "status": "cancelled", "meta_data": primary_metadata()}}]
        assert rules.find_duplicate(entries, "primary", "hiphop") is None

    def test_only_future_addon_on_same_track(self, rules):
        entries = [
            {"subscription": {"id": "a1", "status": "active", "meta_data": addon_metadata(202, "rock")}},
            {"subscription": {"id": "a2", "status": "future", "meta_data": addon_metadata(303, "jazz")}},
        ]
        assert rules.find_duplicate(entries, "addon", "rock") is None
        assert rules.find_duplicate(entries, "addon", "jazz")["id"] == "a2"


class TestDates:
    def test_first_day_of_next_month_in_denver(self, rules):
        # 00:00 MDT on Nov 1st
        assert rules.first_day_of_next_month(NOW) == int(_utc(2026, 11, 1, 6, 0).timestamp())

    def test_utc_next_day_is_still_denver_this_month(self, rules):
        # Dec 1st 06:30 UTC is Nov 30th 23:30 MST
        assert rules.first_day_of_next_month(_utc(2026, 12, 1, 6, 30)) == int(_utc(2026, 12, 1, 7, 0).timestamp())

    def test_year_rollover(self, rules):
        assert rules.first_day_of_next_month(_utc(2026, 12, 15, 12, 0)) == int(_utc(2027, 1, 1, 7, 0).timestamp())

    def test_end_of_term(self):
        assert end_of_term_for({"status": "active"}) is True
        assert end_of_term_for({"status": "future"}) is False


class TestBridgeCoupon:
    def _primary(self, rules, **overrides):
        primary = {
            "id": "sub_1",
            "status": "active",
            "plan_id": "3-month-usa",
            "next_billing_at": rules.first_day_of_next_month(NOW),
            "meta_data": primary_metadata(),
        }
        primary.update(overrides)
        return primary

    def test_six_month_plan(self, rules):
        assert rules.compute_bridge_coupon(self._primary(rules), 6, NOW) == "BRIDGE-6"

    def test_twelve_month_plan(self, rules):
        assert rules.compute_bridge_coupon(self._primary(rules), 12, NOW) == "BRIDGE-12"

    def test_monthly_plan_gets_nothing(self, rules):
        assert rules.compute_bridge_coupon(self._primary(rules), 1, NOW) is None

    def test_new_customer_plan_gets_nothing(self, rules):
        assert rules.compute_bridge_coupon(self._primary(rules, plan_id="1-month-usa-new"), 6, NOW) is None

    def test_future_subscription_gets_nothing(self, rules):
        assert rules.compute_bridge_coupon(self._primary(rules, status="future"), 6, NOW) is None

    def test_billing_date_outside_window(self, rules):
        primary = self._primary(rules, next_billing_at=int(_utc(2026, 11, 20).timestamp()))
        assert rules.compute_bridge_coupon(primary, 6, NOW) is None


class TestNormalize:
    def test_splits_primary_and_addons(self):
        entries = [
            {"subscription": {"id": "old", "status": "cancelled", "meta_data": primary_metadata()}},
            {"subscription": {"id": "a1", "status": "active", "meta_data": addon_metadata(202, "rock")}},
            {"subscription": {"id": "p1", "status": "active", "meta_data": primary_metadata()}},
        ]

        normalized = normalize_subscriptions(entries)

        assert normalized.primary_id == "p1"
        assert [s["id"] for s in normalized.addons] == ["a1"]

    def test_gift_counts_as_primary(self):
        metadata = primary_metadata()
        metadata["type"] = "gift"
        normalized = normalize_subscriptions([{"subscription": {"id": "g1", "status": "future", "meta_data": metadata}}])
        assert normalized.primary_status == "future"

    def test_empty(self):
        assert normalize_subscriptions(None).primary is None


class TestMetadata:
    def test_gift_fields_are_flat_in_billing(self):
        raw = primary_metadata()
        raw.update({"gift_code": "G-1", "gifter_order_id": 42})

        metadata = SubscriptionMetadata.from_raw(raw)

        assert metadata.gift == GiftDetails(gift_code="G-1", gifter_order_id="42")
        flat = metadata.to_billing()
        assert flat["gift_code"] == "G-1"
        assert "gift" not in flat

    def test_ids_are_coerced(self):
        metadata = SubscriptionMetadata.from_raw({"type": "addon", "product": {"id": "202", "variant_id": ""}})
        assert metadata.product.id == 202
        assert metadata.product.variant_id is None

    def test_malformed_metadata(self):
        with pytest.raises(IntegrityError):
            SubscriptionMetadata.from_raw({"product": {"id": "not-a-number"}})

    def test_non_scalar_id_is_malformed(self):
        with pytest.raises(IntegrityError):
            SubscriptionMetadata.from_raw({"product": {"id": 101, "variant_id": {"id": 7}}})
