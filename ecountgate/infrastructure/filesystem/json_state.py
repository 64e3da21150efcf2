"""Async JSON state files on the local disk.

Used for the rate-limit mirror and the persisted session. Uses `aiofiles`
so reads and writes are suspension points rather than blocking calls.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import aiofiles

logger = logging.getLogger(__name__)

StatePath = Union[str, Path]


class JsonStateFile:
    """A single JSON document on disk.

    A missing, unreadable or malformed file reads as None, never an error.
    Writes go to a temporary sibling and are moved into place with
    os.replace so readers never see a half-written document.
    """

    def __init__(self, path: StatePath):
        self.path = Path(path)

    async def read(self) -> Optional[Dict[str, Any]]:
        try:
            async with aiofiles.open(self.path, mode="r", encoding="utf-8") as f:
                content = await f.read()
        except FileNotFoundError:
            logger.debug(f"State file not found: {self.path}")
            return None
        except OSError as e:
            logger.warning(f"Failed to read state file {self.path}: {e}")
            return None

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring malformed state file {self.path}: {e}")
            return None
        if not isinstance(data, dict):
            logger.warning(f"Ignoring state file {self.path}: top-level value is not an object")
            return None
        return data

    async def write(self, data: Dict[str, Any]) -> None:
        """Writes data as JSON. Raises OSError on failure."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_name(self.path.name + ".tmp")
        async with aiofiles.open(temp_path, mode="w", encoding="utf-8") as f:
            await f.write(json.dumps(data, indent=2, ensure_ascii=False))
        os.replace(temp_path, self.path)
        logger.debug(f"Wrote state file: {self.path}")
