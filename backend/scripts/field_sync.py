# backend/scripts/field_sync.py
from __future__ import annotations

import argparse
import json
import signal
import sys
import threading
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_DIR))

from dms.core.logging import setup_logging
from dms.core.settings import settings
from dms.offline.engine import SyncEngine

"""
Client de synchro terrain.

Usage :
    python scripts/field_sync.py --token <JWT> once      # un cycle
    python scripts/field_sync.py --token <JWT> loop      # boucle (Ctrl+C pour arrêter)
    python scripts/field_sync.py --token <JWT> status    # métriques de la file
    python scripts/field_sync.py --token <JWT> reset     # remet à zéro les éléments en échec
    python scripts/field_sync.py --token <JWT> clear     # purge les éléments en échec
"""


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("command", choices=["once", "loop", "status", "reset", "clear"])
    parser.add_argument("--token", required=True, help="JWT de l’utilisateur terrain")
    parser.add_argument("--db", default=None, help="Chemin de la base locale (défaut: OFFLINE_DB_PATH)")
    parser.add_argument("--interval", type=float, default=settings.OFFLINE_SYNC_INTERVAL_S)
    args = parser.parse_args()

    setup_logging(settings.LOG_LEVEL)
    sync = SyncEngine.from_settings(args.token, db_path=args.db)

    try:
        if args.command == "once":
            result = sync.run_cycle()
            print(json.dumps(result.to_dict() if result else {"skipped": True}))
        elif args.command == "loop":
            stop = threading.Event()
            signal.signal(signal.SIGINT, lambda *_: stop.set())
            signal.signal(signal.SIGTERM, lambda *_: stop.set())
            sync.run_forever(stop, args.interval)
        elif args.command == "status":
            print(json.dumps(sync.queue.metrics().to_dict(), indent=2))
        elif args.command == "reset":
            print(f"✅ {sync.queue.reset_failed()} éléments remis en file.")
        else:
            print(f"✅ {sync.queue.clear_failed()} éléments supprimés.")
    finally:
        sync.close()


if __name__ == "__main__":
    main()
