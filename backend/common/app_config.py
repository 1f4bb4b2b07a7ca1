"""Loading, saving and sharing the persisted user config."""
import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional, Union

from pydantic import ValidationError

from common.config_versions import CURRENT_CONFIG_VERSION, Config, migrate

logger = logging.getLogger(__name__)


def load_config(raw: Union[str, bytes]) -> Config:
    """Deserialize a stored config into the current version.

    Never raises: anything that cannot be read or upgraded falls back to the
    default config so a bad file cannot block startup.
    """
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Config is not valid JSON ({e}), using defaults")
        return Config()
    if not isinstance(payload, dict):
        logger.warning("Config is not a JSON object, using defaults")
        return Config()

    # A missing, null or empty tag marks the first layout.
    version = payload.get("config_version") or "v1"
    payload = {**payload, "config_version": version}
    if version == CURRENT_CONFIG_VERSION:
        try:
            return Config.model_validate(payload)
        except ValidationError as e:
            logger.warning("Config %s failed validation, using defaults: %s", version, e)
            return Config()

    try:
        config = migrate(payload, version)
    except (ValueError, ValidationError) as e:
        logger.warning("Config migration failed: %s, using defaults", e)
        return Config()
    logger.info("Config upgraded from %s to %s", version, CURRENT_CONFIG_VERSION)
    return config


def load_config_from_file(path: Union[str, Path]) -> Config:
    path = Path(path)
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        logger.info("No config at %s, using defaults", path)
        return Config()
    except OSError as e:
        logger.warning(f"Could not read config at {path}: {e}")
        return Config()
    return load_config(raw)


def _atomic_write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(content, encoding="utf-8")
    os.replace(tmp, path)


async def save_config_to_file(config: Config, path: Union[str, Path]) -> None:
    content = config.model_dump_json(indent=2)
    await asyncio.to_thread(_atomic_write, Path(path), content)


class ReadWriteLock:
    """asyncio lock allowing many readers or one writer."""

    def __init__(self):
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False

    @asynccontextmanager
    async def reading(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                self._cond.notify_all()

    @asynccontextmanager
    async def writing(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class ConfigGuard:
    """Shared handle over the live config.

    Hold ``read()``/``write()`` only for field access; copy what you need
    before awaiting I/O.
    """

    def __init__(self, config: Optional[Config] = None):
        self._config = config if config is not None else Config()
        self._lock = ReadWriteLock()

    @asynccontextmanager
    async def read(self) -> AsyncIterator[Config]:
        async with self._lock.reading():
            yield self._config

    @asynccontextmanager
    async def write(self) -> AsyncIterator[Config]:
        async with self._lock.writing():
            yield self._config

    async def snapshot(self) -> Config:
        async with self.read() as config:
            return config.model_copy(deep=True)
