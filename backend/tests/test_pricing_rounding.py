from decimal import Decimal

from coupon_engine.services import pricing


def test_quantize_money_rounding_modes() -> None:
    assert pricing.quantize_money(Decimal("1.005"), rounding="half_up") == Decimal("1.01")
    assert pricing.quantize_money(Decimal("1.005"), rounding="half_even") == Decimal("1.00")
    assert pricing.quantize_money(Decimal("1.015"), rounding="half_even") == Decimal("1.02")
    assert pricing.quantize_money(Decimal("1.001"), rounding="up") == Decimal("1.01")
    assert pricing.quantize_money(Decimal("1.009"), rounding="down") == Decimal("1.00")


def test_quantize_money_defaults_to_half_up() -> None:
    assert pricing.quantize_money(Decimal("2.345")) == Decimal("2.35")


def test_to_decimal_keeps_float_literals_exact() -> None:
    assert pricing.to_decimal(0.1) == Decimal("0.1")
    assert pricing.to_decimal(None) == Decimal("0")
    assert pricing.to_decimal("12.50") == Decimal("12.50")
