"""JSON file store for the economy's persisted documents.

One file per service under ``data_dir``.  Writes go to a temporary file in
the same directory and are moved into place with ``os.replace``, so a reader
never sees a half-written document.  Reads parse and validate the whole
document before returning it.

Errors are not handled here: ``OSError``, ``json.JSONDecodeError`` and
``pydantic.ValidationError`` propagate to the calling service, which owns
the fallback policy.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Type, TypeVar

from pydantic import BaseModel

logger = logging.getLogger(__name__)

D = TypeVar("D", bound=BaseModel)


class JsonStore:
    """File-backed document store.

    Parameters
    ----------
    data_dir:
        Directory holding the JSON documents.  Created on first write.
    """

    def __init__(self, data_dir: str) -> None:
        self._data_dir = Path(data_dir)

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def path_for(self, name: str) -> Path:
        return self._data_dir / name

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    # ── Sync ──────────────────────────────────────

    def read(self, name: str, model: Type[D]) -> Optional[D]:
        """Return the parsed document, or None when the file does not exist."""
        path = self.path_for(name)
        if not path.is_file():
            logger.info("No saved document at %s", path)
            return None
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        return model.model_validate(raw)

    def write(self, name: str, document: BaseModel) -> None:
        self._data_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(name)
        payload = document.model_dump(by_alias=True)
        fd, tmp_path = tempfile.mkstemp(prefix=f".{name}.", suffix=".tmp", dir=str(self._data_dir))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.debug("Wrote %s", path)

    def delete(self, name: str) -> bool:
        path = self.path_for(name)
        if not path.is_file():
            return False
        path.unlink()
        return True

    # ── Async ─────────────────────────────────────

    async def aread(self, name: str, model: Type[D]) -> Optional[D]:
        return await asyncio.to_thread(self.read, name, model)

    async def awrite(self, name: str, document: BaseModel) -> None:
        await asyncio.to_thread(self.write, name, document)
