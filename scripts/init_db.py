import sys
from pathlib import Path

# Ensure project root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from pizza_service.config import load_config
from pizza_service.db import Database


def main() -> None:
    cfg = load_config()
    db = Database(cfg)
    try:
        db.ready()
    finally:
        db.close()

    print(f"DB initialized: {cfg.DB_DSN}")


if __name__ == "__main__":
    main()
