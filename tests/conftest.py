import os
import tempfile
from pathlib import Path

# Settings and the module-level engine are read at import time.
_DATA_DIR = Path(tempfile.mkdtemp(prefix="fintrack-tests-"))
os.environ["FINTRACK_DATA_DIR"] = str(_DATA_DIR)
os.environ["FINTRACK_DATABASE_URL"] = f"sqlite:///{_DATA_DIR / 'fintrack.db'}"
os.environ["FINTRACK_BACKEND"] = "sql"
os.environ["FINTRACK_USER_ID"] = "test-user"
