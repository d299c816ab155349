"""Liquidation tracker administration CLI.

Provides operational tools for:
- Schema creation
- Directory seeding (regions, HEIs, programs, users)
- Configuration checks

Usage:
    python -m liquidation_tracker.cli init-db
    python -m liquidation_tracker.cli create-region --code R01 --name "Region I"
    python -m liquidation_tracker.cli create-hei --uii 01001 --name "Sample College" --region R01
    python -m liquidation_tracker.cli create-program --code TES --name "Tertiary Education Subsidy"
    python -m liquidation_tracker.cli create-user --name "Jo Cruz" --email jo@example.com --role "Super Admin"
    python -m liquidation_tracker.cli check-config
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Any, Callable

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from liquidation_tracker.config import MEGABYTE, get_settings
from liquidation_tracker.database import create_schema, dispose_db, get_session
from liquidation_tracker.models import HEI, Program, Region, User
from liquidation_tracker.services.roles import Role

logger = logging.getLogger(__name__)


class LiquidationCli:
    """Liquidation tracker administration CLI."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m liquidation_tracker.cli",
            description="Liquidation tracker administration tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init-db", help="Create all database tables")

        region = subparsers.add_parser("create-region", help="Add a region")
        region.add_argument("--code", required=True, help="Region code")
        region.add_argument("--name", required=True, help="Region name")

        hei = subparsers.add_parser("create-hei", help="Add a higher education institution")
        hei.add_argument("--uii", required=True, help="Unique institutional identifier")
        hei.add_argument("--name", required=True, help="Institution name")
        hei.add_argument("--region", help="Region code the HEI belongs to")

        program = subparsers.add_parser("create-program", help="Add a program")
        program.add_argument("--code", required=True, help="Program code")
        program.add_argument("--name", required=True, help="Program name")

        user = subparsers.add_parser("create-user", help="Add a user")
        user.add_argument("--name", required=True, help="Display name")
        user.add_argument("--email", required=True, help="Email address")
        user.add_argument(
            "--role",
            required=True,
            choices=[role.value for role in Role],
            help="User role",
        )
        user.add_argument("--hei-uii", help="UII of the HEI the user belongs to (HEI users)")
        user.add_argument("--region", help="Region code (Regional Coordinators)")

        subparsers.add_parser("check-config", help="Print the effective configuration")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        # Dispatch to command handler
        handlers: dict[str, Callable[..., int]] = {
            "init-db": self._cmd_init_db,
            "create-region": self._cmd_create_region,
            "create-hei": self._cmd_create_hei,
            "create-program": self._cmd_create_program,
            "create-user": self._cmd_create_user,
            "check-config": self._cmd_check_config,
        }

        handler = handlers.get(parsed.command)
        if handler:
            return handler(parsed)

        print(f"Unknown command: {parsed.command}", file=sys.stderr)
        return 1

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create all tables."""
        asyncio.run(self._with_engine(create_schema()))
        print("Database schema created.")
        return 0

    def _cmd_create_region(self, args: argparse.Namespace) -> int:
        return self._insert(Region(code=args.code.strip(), name=args.name.strip()), f"region {args.code}")

    def _cmd_create_program(self, args: argparse.Namespace) -> int:
        return self._insert(Program(code=args.code.strip(), name=args.name.strip()), f"program {args.code}")

    def _cmd_create_hei(self, args: argparse.Namespace) -> int:
        async def build() -> HEI | None:
            region_id = None
            if args.region:
                region = await self._find_region(args.region)
                if region is None:
                    return None
                region_id = region.id
            return HEI(uii=args.uii.strip(), name=args.name.strip(), region_id=region_id)

        hei = asyncio.run(self._with_engine(build()))
        if hei is None:
            print(f"Region not found: {args.region}", file=sys.stderr)
            return 1
        return self._insert(hei, f"HEI {args.uii}")

    def _cmd_create_user(self, args: argparse.Namespace) -> int:
        """Add a user, linking HEI and region by code."""
        role = Role(args.role)
        if role is Role.HEI and not args.hei_uii:
            print("HEI users require --hei-uii", file=sys.stderr)
            return 1

        async def build() -> tuple[User | None, str | None]:
            hei_id = None
            region_id = None
            if args.hei_uii:
                async with get_session() as session:
                    result = await session.execute(
                        select(HEI).where(func.lower(HEI.uii) == args.hei_uii.strip().lower())
                    )
                    hei = result.scalar_one_or_none()
                if hei is None:
                    return None, f"HEI not found: {args.hei_uii}"
                hei_id = hei.id
                region_id = hei.region_id
            if args.region:
                region = await self._find_region(args.region)
                if region is None:
                    return None, f"Region not found: {args.region}"
                region_id = region.id
            user = User(
                name=args.name.strip(),
                email=args.email.strip().lower(),
                role=role.value,
                hei_id=hei_id,
                region_id=region_id,
            )
            return user, None

        user, error = asyncio.run(self._with_engine(build()))
        if user is None:
            print(error, file=sys.stderr)
            return 1
        return self._insert(user, f"user {user.email}")

    def _cmd_check_config(self, args: argparse.Namespace) -> int:
        """Print effective settings, without credentials."""
        settings = get_settings()
        url = settings.database_url
        if "@" in url:
            scheme, _, rest = url.partition("://")
            url = f"{scheme}://***@{rest.split('@', 1)[1]}"

        print("Liquidation Tracker Configuration")
        print("=" * 40)
        values: dict[str, Any] = {
            "database_url": url,
            "app_version": settings.app_version,
            "host": settings.host,
            "port": settings.port,
            "debug": settings.debug,
            "log_level": settings.log_level,
            "upload_dir": settings.upload_dir,
            "bulk_import_max_mb": settings.bulk_import_max_bytes // MEGABYTE,
            "document_max_mb": settings.document_max_bytes // MEGABYTE,
        }
        for key, value in values.items():
            print(f"  {key}: {value}")
        return 0

    async def _find_region(self, code: str) -> Region | None:
        async with get_session() as session:
            result = await session.execute(
                select(Region).where(func.lower(Region.code) == code.strip().lower())
            )
            return result.scalar_one_or_none()

    def _insert(self, row: Any, label: str) -> int:
        async def save() -> None:
            async with get_session() as session:
                session.add(row)

        try:
            asyncio.run(self._with_engine(save()))
        except IntegrityError as exc:
            logger.debug("Insert of %s failed", label, exc_info=True)
            print(f"Could not create {label}: {exc.orig}", file=sys.stderr)
            return 1
        print(f"Created {label} ({row.id})")
        return 0

    @staticmethod
    async def _with_engine(coro: Any) -> Any:
        # The engine is bound to the event loop of a single asyncio.run call
        try:
            return await coro
        finally:
            await dispose_db()


def main() -> int:
    """CLI entry point."""
    logging.basicConfig(level=get_settings().log_level)
    cli = LiquidationCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
