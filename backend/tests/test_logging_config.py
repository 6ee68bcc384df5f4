import json
import logging
from decimal import Decimal
from uuid import UUID

from coupon_engine.core.logging_config import JsonFormatter, RequestIdFilter, log_record_payload, request_id_ctx_var


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("coupon_engine.test", logging.INFO, __file__, 1, "coupon_redeemed", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_payload_includes_structured_extras() -> None:
    coupon_id = UUID("12345678-1234-5678-1234-567812345678")
    payload = log_record_payload(
        _record(coupon_code="SAVE10", coupon_id=coupon_id, discount=Decimal("10.00"), codes=("A", "B"))
    )
    assert payload["message"] == "coupon_redeemed"
    assert payload["level"] == "INFO"
    assert payload["coupon_code"] == "SAVE10"
    assert payload["coupon_id"] == str(coupon_id)
    assert payload["discount"] == "10.00"
    assert payload["codes"] == ["A", "B"]
    assert "lineno" not in payload


def test_json_formatter_carries_request_id() -> None:
    token = request_id_ctx_var.set("req-42")
    try:
        record = _record(order_id="order-1")
        RequestIdFilter().filter(record)
        line = JsonFormatter().format(record)
    finally:
        request_id_ctx_var.reset(token)

    payload = json.loads(line)
    assert payload["request_id"] == "req-42"
    assert payload["order_id"] == "order-1"
    assert payload["logger"] == "coupon_engine.test"
