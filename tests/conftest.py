# tests/conftest.py
# Ensure project root is importable during pytest runs and plots render off-screen
import matplotlib
import pathlib
import sys

matplotlib.use('Agg')

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
