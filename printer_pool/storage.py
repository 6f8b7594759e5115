"""
Printer Storage
===============

JSON file persistence for the ordered printer configuration list.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import List, Union

import structlog

from .config import DATA_DIR
from .exceptions import ValidationError
from .models import PrinterConfig
from .validation import parse_printer_config

logger = structlog.get_logger()


def default_store_path() -> Path:
    """Get path to the printers data file."""
    return Path(DATA_DIR) / 'printers.json'


class PrinterStore:
    """Loads and saves printer configurations as a JSON list."""

    def __init__(self, path: Union[str, Path] = None):
        self.path = Path(path) if path else default_store_path()

    def load(self) -> List[PrinterConfig]:
        """Load printers from storage, skipping invalid records."""
        if not self.path.exists():
            return []

        with open(self.path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        # Older files were keyed by printer id
        if isinstance(data, dict):
            data = list(data.values())
        if not isinstance(data, list):
            raise ValueError(f'{self.path} does not hold a list of printers')

        configs = []
        for record in data:
            try:
                configs.append(parse_printer_config(record))
            except ValidationError as e:
                logger.warning("Skipping invalid stored printer",
                               path=str(self.path), record=record, error=str(e))
        logger.info("Loaded printers from storage", path=str(self.path), count=len(configs))
        return configs

    def save(self, configs: List[PrinterConfig]) -> None:
        """Write the full list, replacing the previous file atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), prefix='.printers-', suffix='.json')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump([c.to_dict() for c in configs], f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise
        logger.debug("Saved printers", path=str(self.path), count=len(configs))
