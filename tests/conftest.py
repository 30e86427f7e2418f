import os
import tempfile
from pathlib import Path

# must run before database.py builds its module-level engine
os.environ.setdefault("LEDGER_DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault(
    "LEDGER_DATA_DIR", str(Path(tempfile.gettempdir()) / "ledger-tests")
)
