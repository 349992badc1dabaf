# backend/scripts/issue_token.py
from __future__ import annotations

import argparse
import sys
from pathlib import Path

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

BACKEND_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_DIR))

from dms.core.security import create_access_token
from dms.core.settings import settings
from dms.models.user import User

"""
Émet un JWT de développement pour un utilisateur existant (par email ou username).

L’émission des jetons en production est externe à l’API : ce script ne sert qu’au dev,
au client terrain et aux démonstrations.
"""


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("login", help="Email ou username")
    parser.add_argument("--minutes", type=int, default=settings.JWT_EXPIRE_MINUTES, help="Durée de validité")
    args = parser.parse_args()

    engine = create_engine(settings.DATABASE_URL_SYNC, future=True)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, future=True)

    with SessionLocal() as db:
        user = db.execute(
            select(User).where((User.email == args.login) | (User.username == args.login))
        ).scalars().first()
        if user is None:
            sys.exit(f"❌ Utilisateur introuvable : {args.login}")
        roles = [r.role for r in user.roles]

    print(create_access_token(user.id, roles=roles, expires_minutes=args.minutes))


if __name__ == "__main__":
    main()
