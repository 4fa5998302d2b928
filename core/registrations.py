"""
Airdrop registrations

`register <address>` appends the address, as typed, to both the
registrations list and the airdrop list. No resolution, no dedup: the
airdrop tooling downstream owns cleanup.
"""

import asyncio
import json
import logging
from pathlib import Path

logger = logging.getLogger("winlew.registrations")

_LIST_FILES = ("registrations.json", "airdrops.json")


class RegistrationBook:
    def __init__(self, data_dir: Path):
        self._data_dir = Path(data_dir)
        self._lock = asyncio.Lock()

    def _path(self, name: str) -> Path:
        return self._data_dir / name

    def _load(self, path: Path) -> list:
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"{path.name} unreadable ({e}) — starting a new list")
            return []
        return data if isinstance(data, list) else []

    async def register(self, address: str):
        async with self._lock:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            for name in _LIST_FILES:
                path = self._path(name)
                entries = self._load(path)
                entries.append(address)
                tmp = path.with_suffix(".tmp")
                tmp.write_text(json.dumps(entries, indent=2), encoding="utf-8")
                tmp.replace(path)
        logger.info(f"Registered {address[:12]}... for airdrops")

    def entries(self, name: str = "registrations.json") -> list:
        return self._load(self._path(name))
