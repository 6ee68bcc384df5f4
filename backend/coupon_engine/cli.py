import argparse
import asyncio

from coupon_engine import seeds as coupon_seeds
from coupon_engine.db.base import Base
from coupon_engine.db.session import SessionLocal, engine
from coupon_engine import models  # noqa: F401


async def create_tables() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def seed_coupons() -> list[str]:
    async with SessionLocal() as session:
        return await coupon_seeds.seed(session)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Coupon engine utilities")
    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("create-tables", help="Create the coupon tables if they do not exist")
    subparsers.add_parser("seed-coupons", help="Seed sample marketplace coupons")
    return parser


def _run_cli_command(args: argparse.Namespace) -> bool:
    if args.command == "create-tables":
        asyncio.run(create_tables())
        return True

    if args.command == "seed-coupons":
        created = asyncio.run(seed_coupons())
        print(f"Seeded {len(created)} coupon(s): {', '.join(created) or '-'}")
        return True

    return False


def main():
    parser = _build_parser()
    args = parser.parse_args()
    if not _run_cli_command(args):
        parser.print_help()


if __name__ == "__main__":
    main()
