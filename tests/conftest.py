import os
import tempfile

# Point the default data directory somewhere writable before app modules are
# imported; individual tests still redirect paths into their own tmp_path.
os.environ.setdefault("HARVEST_DATA_DIR", tempfile.mkdtemp(prefix="harvest-tests-"))
