from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest

from coupon_engine.models.coupon import CouponDiscountType, CouponScopeType, CouponUserEligibility
from coupon_engine.services.coupon_errors import COUPON_ERROR_MESSAGES, CouponErrorCode
from coupon_engine.services.eligibility import (
    CouponState,
    Eligible,
    Ineligible,
    UsageSnapshot,
    coupon_state,
    evaluate,
)
from coupon_engine.services.rules import (
    AllUsers,
    CategoryScope,
    CouponRules,
    NewCustomersOnly,
    PlatformScope,
    ProductScope,
    SellerScope,
    SpecificUsers,
    rules_from_coupon,
)

from coupon_factories import NOW, line, make_coupon, order


BASE_RULES = CouponRules(
    code="SAVE10",
    discount_type=CouponDiscountType.percentage,
    value=Decimal("10"),
    valid_from=NOW - timedelta(days=1),
    valid_until=NOW + timedelta(days=1),
)


def _reason(result) -> CouponErrorCode:
    assert isinstance(result, Ineligible)
    return result.reason


def test_platform_coupon_matches_every_line() -> None:
    cart = order(line("a", unit_price="10.00", quantity=2), line("b", category="Apparel", unit_price="5.00"))
    result = evaluate(BASE_RULES, cart, as_of=NOW)
    assert isinstance(result, Eligible)
    assert result.matched_subtotal == Decimal("25.00")
    assert result.matched_quantity == 3
    assert result.eligible is True


def test_inactive_coupon_is_reported_before_anything_else() -> None:
    rules = replace(BASE_RULES, is_active=False, valid_from=NOW + timedelta(days=1), min_purchase_amount=Decimal("1000"))
    assert _reason(evaluate(rules, order(), as_of=NOW)) == CouponErrorCode.inactive


def test_coupon_starting_tomorrow_is_not_yet_valid() -> None:
    rules = replace(BASE_RULES, valid_from=NOW + timedelta(days=1), valid_until=NOW + timedelta(days=10))
    assert _reason(evaluate(rules, order(), as_of=NOW)) == CouponErrorCode.not_yet_valid


def test_coupon_past_its_window_is_expired() -> None:
    rules = replace(BASE_RULES, valid_from=NOW - timedelta(days=10), valid_until=NOW - timedelta(seconds=1))
    assert _reason(evaluate(rules, order(), as_of=NOW)) == CouponErrorCode.expired


def test_window_bounds_are_inclusive() -> None:
    rules = replace(BASE_RULES, valid_from=NOW, valid_until=NOW)
    assert isinstance(evaluate(rules, order(), as_of=NOW), Eligible)


def test_category_scope_without_matching_lines_is_a_scope_mismatch() -> None:
    rules = replace(BASE_RULES, scope=CategoryScope(frozenset({"Electronics"})))
    cart = order(line("shirt", category="Apparel"), line("socks", category="Apparel"))
    assert _reason(evaluate(rules, cart, as_of=NOW)) == CouponErrorCode.scope_mismatch


def test_category_scope_only_counts_matching_lines() -> None:
    rules = replace(BASE_RULES, scope=CategoryScope(frozenset({"Electronics"})))
    cart = order(
        line("phone", category="Electronics", unit_price="300.00"),
        line("shirt", category="Apparel", unit_price="50.00", quantity=3),
    )
    result = evaluate(rules, cart, as_of=NOW)
    assert isinstance(result, Eligible)
    assert result.matched_subtotal == Decimal("300.00")
    assert [item.product_id for item in result.matched_items] == ["phone"]


def test_seller_scope_matches_by_seller_id() -> None:
    rules = replace(BASE_RULES, scope=SellerScope("seller-7"))
    cart = order(line("a", seller_id="seller-7", unit_price="20.00"), line("b", seller_id="seller-8"))
    result = evaluate(rules, cart, as_of=NOW)
    assert isinstance(result, Eligible)
    assert result.matched_subtotal == Decimal("20.00")


def test_seller_scope_requires_a_seller_id() -> None:
    with pytest.raises(ValueError):
        SellerScope("")


def test_product_scope_matches_by_product_id() -> None:
    rules = replace(BASE_RULES, scope=ProductScope(frozenset({"p-2"})))
    cart = order(line("p-1"), line("p-2", unit_price="40.00", quantity=2))
    result = evaluate(rules, cart, as_of=NOW)
    assert isinstance(result, Eligible)
    assert result.matched_subtotal == Decimal("80.00")


def test_excluded_products_and_categories_never_match() -> None:
    rules = replace(
        BASE_RULES,
        excluded_product_ids=frozenset({"gift-card"}),
        excluded_categories=frozenset({"Groceries"}),
    )
    cart = order(line("gift-card"), line("milk", category="Groceries"), line("tv", unit_price="500.00"))
    result = evaluate(rules, cart, as_of=NOW)
    assert isinstance(result, Eligible)
    assert result.matched_subtotal == Decimal("500.00")

    only_excluded = order(line("gift-card"), line("milk", category="Groceries"))
    assert _reason(evaluate(rules, only_excluded, as_of=NOW)) == CouponErrorCode.scope_mismatch


def test_minimum_purchase_uses_matched_subtotal_only() -> None:
    rules = replace(BASE_RULES, scope=CategoryScope(frozenset({"Electronics"})), min_purchase_amount=Decimal("100"))
    cart = order(line("cable", unit_price="40.00"), line("jacket", category="Apparel", unit_price="400.00"))
    assert _reason(evaluate(rules, cart, as_of=NOW)) == CouponErrorCode.below_minimum_purchase


def test_minimum_quantity_counts_matched_units() -> None:
    rules = replace(BASE_RULES, min_item_quantity=3)
    assert _reason(evaluate(rules, order(line(quantity=2)), as_of=NOW)) == CouponErrorCode.below_minimum_quantity
    assert isinstance(evaluate(rules, order(line(quantity=3)), as_of=NOW), Eligible)


def test_new_customers_only() -> None:
    rules = replace(BASE_RULES, user_eligibility=NewCustomersOnly())
    assert _reason(evaluate(rules, order(is_new_customer=False), as_of=NOW)) == CouponErrorCode.user_not_eligible
    assert isinstance(evaluate(rules, order(is_new_customer=True), as_of=NOW), Eligible)


def test_specific_users_match_on_id_or_email() -> None:
    rules = replace(BASE_RULES, user_eligibility=SpecificUsers(frozenset({"cust-9", "vip@example.com"})))
    assert isinstance(evaluate(rules, order(customer_id="cust-9"), as_of=NOW), Eligible)
    assert isinstance(
        evaluate(rules, order(customer_id="cust-2", customer_email="VIP@Example.com"), as_of=NOW),
        Eligible,
    )
    assert _reason(evaluate(rules, order(customer_id="cust-2"), as_of=NOW)) == CouponErrorCode.user_not_eligible


def test_usage_snapshot_limits() -> None:
    rules = replace(BASE_RULES, usage_limit_total=5, usage_limit_per_user=2)
    assert _reason(evaluate(rules, order(), as_of=NOW, usage=UsageSnapshot(total=5))) == CouponErrorCode.usage_limit_exceeded
    assert (
        _reason(evaluate(rules, order(), as_of=NOW, usage=UsageSnapshot(total=4, per_user=2)))
        == CouponErrorCode.per_user_limit_exceeded
    )
    assert isinstance(evaluate(rules, order(), as_of=NOW, usage=UsageSnapshot(total=4, per_user=1)), Eligible)


def test_user_check_runs_before_usage_check() -> None:
    rules = replace(BASE_RULES, usage_limit_total=1, user_eligibility=NewCustomersOnly())
    result = evaluate(rules, order(is_new_customer=False), as_of=NOW, usage=UsageSnapshot(total=1))
    assert _reason(result) == CouponErrorCode.user_not_eligible


def test_every_reason_has_a_fixed_message() -> None:
    assert set(COUPON_ERROR_MESSAGES) == set(CouponErrorCode)
    assert Ineligible(CouponErrorCode.expired).message == "This coupon has expired."


def test_rules_from_coupon_builds_tagged_variants() -> None:
    categories = rules_from_coupon(make_coupon(scope_type=CouponScopeType.categories, categories=["Electronics", "Books"]))
    assert categories.scope == CategoryScope(frozenset({"Electronics", "Books"}))
    assert categories.user_eligibility == AllUsers()

    seller = rules_from_coupon(make_coupon(scope_type=CouponScopeType.seller, scope_seller_id="seller-3"))
    assert seller.scope == SellerScope("seller-3")

    products = rules_from_coupon(make_coupon(scope_type=CouponScopeType.products, products=["p-1"]))
    assert products.scope == ProductScope(frozenset({"p-1"}))

    specific = rules_from_coupon(
        make_coupon(user_eligibility=CouponUserEligibility.specific_users, users=["Someone@Example.com", "cust-4"])
    )
    assert specific.user_eligibility == SpecificUsers(frozenset({"someone@example.com", "cust-4"}))
    assert rules_from_coupon(make_coupon()).scope == PlatformScope()


def test_rules_from_coupon_rejects_seller_scope_without_seller() -> None:
    with pytest.raises(ValueError):
        rules_from_coupon(make_coupon(scope_type=CouponScopeType.seller, scope_seller_id=None))


def test_rules_from_coupon_normalizes_naive_datetimes() -> None:
    coupon = make_coupon(code=" save10 ")
    coupon.valid_from = (NOW - timedelta(days=1)).replace(tzinfo=None)
    rules = rules_from_coupon(coupon)
    assert rules.code == "SAVE10"
    assert rules.valid_from.tzinfo is not None
    assert isinstance(evaluate(rules, order(), as_of=NOW), Eligible)


@pytest.mark.parametrize(
    ("overrides", "usage_total", "expected"),
    [
        ({}, 0, CouponState.active),
        ({"is_active": False}, 0, CouponState.revoked),
        ({"valid_from": NOW + timedelta(hours=1), "valid_until": NOW + timedelta(days=2)}, 0, CouponState.draft),
        ({"valid_until": NOW - timedelta(hours=1)}, 0, CouponState.expired),
        ({"usage_limit_total": 3}, 3, CouponState.exhausted),
    ],
)
def test_coupon_state_is_derived(overrides: dict, usage_total: int, expected: CouponState) -> None:
    rules = replace(BASE_RULES, **overrides)
    assert coupon_state(rules, as_of=NOW, usage_total=usage_total) == expected
