from __future__ import annotations

import argparse

import pytest

from coupon_engine import cli
from coupon_engine.seeds import sample_coupons, seed
from coupon_engine.services.redemption import redeem_code

from coupon_factories import NOW, line, order, sqlite_session_factory


def test_parser_knows_commands() -> None:
    parser = cli._build_parser()
    assert parser.parse_args(["create-tables"]).command == "create-tables"
    assert parser.parse_args(["seed-coupons"]).command == "seed-coupons"


def test_unknown_command_is_not_handled() -> None:
    assert cli._run_cli_command(argparse.Namespace(command=None)) is False


def test_seed_command_reports_created_codes(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    async def _fake_seed() -> list[str]:
        return ["PLANET300", "MEGA50"]

    monkeypatch.setattr(cli, "seed_coupons", _fake_seed)
    assert cli._run_cli_command(argparse.Namespace(command="seed-coupons")) is True
    assert "Seeded 2 coupon(s): PLANET300, MEGA50" in capsys.readouterr().out


def test_sample_coupons_are_valid_terms() -> None:
    codes = [payload.code for payload in sample_coupons(NOW)]
    assert codes == ["PLANET300", "MEGA50", "SAVE500", "ELECTRO10", "WELCOMESHIP"]


@pytest.mark.anyio
async def test_seed_is_idempotent_and_usable() -> None:
    SessionLocal = await sqlite_session_factory()

    async with SessionLocal() as session:
        first = await seed(session)
    async with SessionLocal() as session:
        second = await seed(session)

    assert len(first) == 5
    assert second == []

    async with SessionLocal() as session:
        result = await redeem_code(
            session,
            code="welcomeship",
            order=order(line(), is_new_customer=True),
            order_id="order-1",
        )
    assert result.ok is True
    assert result.waives_shipping is True
