#!/usr/bin/env python3
"""
Wipe the persisted game-state slot so the next read starts from nothing.
Usage: python scripts/reset_game.py [--database-url URL]
From repo root (the server also resets the slot on every start).
"""
import argparse
import os
import sys

# Allow running from repo root or scripts/
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from conquest.api.database import init_db, make_engine, make_session_factory
from conquest.api.models import GameStateRecord
from conquest.config import get_settings


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--database-url", default=None, help="Defaults to CONQUEST_DATABASE_URL / settings")
    args = parser.parse_args()
    database_url = args.database_url or get_settings().database_url

    engine = make_engine(database_url)
    init_db(engine, reset=False)
    db = make_session_factory(engine)()
    try:
        deleted = db.query(GameStateRecord).delete()
        db.commit()
        if deleted:
            print(f"Cleared game state in {database_url}")
        else:
            print(f"No game state stored in {database_url}")
    except Exception as e:
        db.rollback()
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
