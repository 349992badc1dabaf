# backend/scripts/bootstrap_db.py
from __future__ import annotations

import argparse
import sys
from pathlib import Path

from sqlalchemy import create_engine

# Permet de lancer le script depuis backend/ sans souci d'import
BACKEND_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_DIR))

from dms.core.settings import settings
from dms.db.base import Base
import dms.models  # noqa: F401  (enregistre les tables dans Base.metadata)

"""
Crée le schéma à partir de la metadata ORM (engine sync, DATABASE_URL_SYNC).

Usage :
    python scripts/bootstrap_db.py           # crée les tables manquantes
    python scripts/bootstrap_db.py --drop    # supprime puis recrée tout
"""


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--drop", action="store_true", help="Supprime toutes les tables avant de recréer")
    args = parser.parse_args()

    engine = create_engine(settings.DATABASE_URL_SYNC, future=True)
    if args.drop:
        Base.metadata.drop_all(engine)
        print("🗑️  Tables supprimées.")

    Base.metadata.create_all(engine)
    print(f"✅ Schéma prêt ({len(Base.metadata.tables)} tables).")


if __name__ == "__main__":
    main()
