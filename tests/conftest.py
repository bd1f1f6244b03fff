# tests/conftest.py
import sys
from pathlib import Path

# Make "geoguess" and "config" importable without an editable install.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
