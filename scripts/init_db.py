from pathlib import Path
import os
import sys

# Ensure repo root is on sys.path and is the working directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
os.chdir(ROOT)

from folio.db import Store
from folio.config import settings

if __name__ == '__main__':
    store = Store.open(settings.db_path)
    with store.read() as cur:
        tables = [r[0] for r in cur.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        ).fetchall()]
        holdings = cur.execute("SELECT COUNT(*) FROM holdings WHERE status='OPEN'").fetchone()[0]
    store.close()
    print('DB ready at', settings.db_path, '| tables:', ', '.join(tables), '| open holdings:', holdings)
