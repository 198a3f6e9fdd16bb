"""
Merchandising distribution allocation engine.

Segmentation → ranking → multi-pass allocation → inter-node transfers,
run as one batch over a single inventory snapshot.
"""
from pathlib import Path

PACKAGE_ROOT = Path(__file__).resolve().parent
DATA_DIR = PACKAGE_ROOT / "data"

__version__ = "0.1.0"

__all__ = ["PACKAGE_ROOT", "DATA_DIR", "__version__"]
