# backend/scripts/recompute_leaderboard.py
from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_DIR))

from dms.db.session import AsyncSessionLocal, engine
from dms.services.gamification_service import recompute_rankings

"""
Recalcule le classement des donateurs (rang + taux de livraison persistés).

À lancer périodiquement (cron) ; même logique que POST /donors/leaderboard/recompute.
"""


async def run(timeframe: str) -> int:
    async with AsyncSessionLocal() as db:
        ranked = await recompute_rankings(db, timeframe=timeframe)
        await db.commit()
    await engine.dispose()
    return ranked


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--timeframe", choices=["7d", "30d", "90d", "1y", "all"], default="all")
    args = parser.parse_args()

    ranked = asyncio.run(run(args.timeframe))
    print(f"✅ Classement recalculé : {ranked} donateurs classés ({args.timeframe}).")


if __name__ == "__main__":
    main()
