"""
CLI tools for the Roof Measurement Engine.
"""

from tools.import_calibration import import_csv, load_records

__all__ = [
    "import_csv",
    "load_records",
]
