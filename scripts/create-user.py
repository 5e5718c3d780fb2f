#!/usr/bin/env python3
"""
buildefect - account bootstrap
Creates an account directly in the database. Registration over the API always
yields an engineer, and only observers may create other accounts, so the first
observer has to come from here.

Usage:
    python scripts/create-user.py --login admin --password s3cret --role observer
    python scripts/create-user.py --login admin --password s3cret --role observer --sample-buildings 3

Requires the package installed (pip install -e .) and DATABASE_URL set.
"""

import sys
import random
import asyncio
import argparse
import logging

from fastapi import HTTPException

from auth import AuthService
from database import get_db_context, init_db, close_db
from models import Building, Defect, DefectStatus, UserRole

logger = logging.getLogger("buildefect.scripts")

STAGES = ["foundation", "framing", "roofing", "mep", "finishing"]
DEFECT_TITLES = [
    "Crack in load-bearing wall",
    "Missing guard rail on stairwell",
    "Water ingress at window frame",
    "Uneven floor screed",
    "Exposed rebar in slab edge",
    "Misaligned door frame",
]
PRIORITIES = ["low", "medium", "high"]


async def create_account(login: str, password: str, name: str, lastname: str, role: UserRole) -> int:
    async with get_db_context() as db:
        user = await AuthService.create_user(
            db, login=login, password=password, name=name, lastname=lastname, role=role,
        )
        return user.id


async def create_sample_buildings(count: int, reporter_id: int, seed: int) -> None:
    rng = random.Random(seed)
    async with get_db_context() as db:
        for i in range(1, count + 1):
            building = Building(
                name=f"Block {chr(64 + i)}",
                address=f"{rng.randint(1, 200)} Site Road",
                stage=rng.choice(STAGES),
            )
            db.add(building)
            await db.flush()
            for title in rng.sample(DEFECT_TITLES, k=rng.randint(1, 3)):
                db.add(Defect(
                    building_id=building.id,
                    created_by_person_id=reporter_id,
                    updated_by_person_id=reporter_id,
                    title=title,
                    priority=rng.choice(PRIORITIES),
                    status=DefectStatus.NEW,
                ))
    logger.info(f"Created {count} sample building(s)")


async def run(args) -> int:
    await init_db()
    try:
        try:
            user_id = await create_account(
                args.login, args.password, args.name, args.lastname, UserRole(args.role),
            )
        except HTTPException as e:
            print(f"error: {e.detail}", file=sys.stderr)
            return 1
        print(f"Created {args.role} '{args.login}' with id {user_id}")

        if args.sample_buildings:
            await create_sample_buildings(args.sample_buildings, user_id, args.seed)
        return 0
    finally:
        await close_db()


def main():
    parser = argparse.ArgumentParser(description="buildefect account bootstrap")
    parser.add_argument("--login", required=True, help="Login for the new account")
    parser.add_argument("--password", required=True, help="Password for the new account")
    parser.add_argument("--name", default="", help="First name")
    parser.add_argument("--lastname", default="", help="Last name")
    parser.add_argument("--role", choices=[r.value for r in UserRole], default=UserRole.OBSERVER.value,
                        help="Role to assign")
    parser.add_argument("--sample-buildings", type=int, default=0,
                        help="Also create this many demo buildings with defects")
    parser.add_argument("--seed", type=int, default=42, help="Random seed for demo data")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(name)s] %(levelname)s %(message)s")
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
