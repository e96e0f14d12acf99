"""Canonical file paths used throughout dmroommap."""

from pathlib import Path

CONFIG_FILE = Path("config.yaml")
LOG_DIR = Path("logs")
LOG_FILE = LOG_DIR / "dmroommap.log"
