"""JSON file storage layer.

Every persisted entity (price files, confidence metrics, cached risk
histories) is one pydantic model serialized to one JSON file. The whole
tree is a best-effort cache: any file may be deleted at any time and the
engine rebuilds it.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from core.errors import CacheCorrupt

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

# Subdirectories under the cache root
PRICE_HISTORY = "price_history"
CONFIDENCE = "confidence"
RISK_CACHE = "risk_cache"


class Store:
    """Per-key JSON files rooted at the application cache directory.

    All paths are relative to the cache directory (~/.valuerisk/cache/).
    """

    def __init__(self, root: Path) -> None:
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, subdir: str, filename: str) -> Path:
        return self._root / subdir / filename

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    def write_json(self, subdir: str, filename: str, model: BaseModel) -> Path:
        """Write a Pydantic model as a JSON file (temp file + atomic replace)."""
        path = self.path_for(subdir, filename)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(model.model_dump_json(indent=2))
        os.replace(tmp, path)
        return path

    def load_json(self, subdir: str, filename: str, model_class: type[T]) -> T | None:
        """Parse a JSON file as a Pydantic model.

        Returns None when the file does not exist. Raises CacheCorrupt when it
        exists but cannot be read or validated.
        """
        path = self.path_for(subdir, filename)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text())
            return model_class.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError, TypeError) as e:
            raise CacheCorrupt(str(path), str(e)) from e

    def read_json(self, subdir: str, filename: str, model_class: type[T]) -> T | None:
        """Like load_json, but a corrupt file is deleted and reported as missing."""
        try:
            return self.load_json(subdir, filename, model_class)
        except CacheCorrupt as e:
            logger.warning("%s -- deleting", e)
            self.delete_file(subdir, filename)
            return None

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def file_exists(self, subdir: str, filename: str) -> bool:
        return self.path_for(subdir, filename).exists()

    def delete_file(self, subdir: str, filename: str) -> bool:
        """Delete a file. Returns True if it existed."""
        path = self.path_for(subdir, filename)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False

    def list_files(self, subdir: str, prefix: str = "") -> list[str]:
        """Names of the JSON files in `subdir` starting with `prefix`, sorted."""
        dirpath = self._root / subdir
        if not dirpath.exists():
            return []
        return sorted(p.name for p in dirpath.glob(f"{prefix}*.json"))

    def delete_prefix(self, subdir: str, prefix: str) -> int:
        """Delete every JSON file in `subdir` whose name starts with `prefix`."""
        deleted = 0
        for name in self.list_files(subdir, prefix):
            if self.delete_file(subdir, name):
                deleted += 1
        return deleted

    def clear_dir(self, subdir: str) -> None:
        """Remove a subdirectory entirely and recreate it empty."""
        dirpath = self._root / subdir
        if dirpath.exists():
            shutil.rmtree(dirpath)
        dirpath.mkdir(parents=True, exist_ok=True)
