"""YAML-backed target store."""

import asyncio
import os
import tempfile
from typing import Dict

import structlog
import yaml
from pydantic import ValidationError

from ..errors import StoreError
from .models import TargetRecord

logger = structlog.get_logger()


class TargetStore:
    """Persisted mapping of provider name to its last applied targets.

    The file stays human-diffable YAML:

        web:
          hook: myproject.plugins:web
          targets:
          - name: x
            size: 1
    """

    def __init__(self, path: str):
        """Initialize store.

        Args:
            path: YAML file holding the store
        """
        self.path = path

    async def load(self) -> Dict[str, TargetRecord]:
        """Read every provider's record.

        Returns:
            Records keyed by provider name, in file order

        Raises:
            StoreError: If the file exists but cannot be parsed
        """
        if not os.path.exists(self.path):
            logger.info("store.empty", path=self.path)
            return {}

        try:
            text = await asyncio.to_thread(_read_text, self.path)
            data = yaml.safe_load(text) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error("store.load_failed", path=self.path, error=str(e))
            raise StoreError(f"Cannot read target store {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise StoreError(f"Target store {self.path} is not a mapping")

        records: Dict[str, TargetRecord] = {}
        for provider, document in data.items():
            try:
                records[provider] = TargetRecord.from_document(provider, document or {})
            except (TypeError, ValidationError) as e:
                raise StoreError(
                    f'Invalid record for provider "{provider}" in {self.path}: {e}'
                ) from e

        logger.info(
            "store.loaded",
            path=self.path,
            providers=len(records),
            targets=sum(len(r.targets) for r in records.values()),
        )
        return records

    async def save(self, records: Dict[str, TargetRecord]):
        """Replace the store with the given records.

        The file is written to a sibling temp file first and moved into
        place, so readers never observe a partial store.

        Args:
            records: Records keyed by provider name
        """
        text = render_records(records)
        await asyncio.to_thread(_write_atomic, self.path, text)
        logger.info("store.saved", path=self.path, providers=len(records))

    async def write_preview(self, records: Dict[str, TargetRecord], path: str):
        """Write the store rendering to a side file, leaving the store as is.

        Args:
            records: Records keyed by provider name
            path: Side file path
        """
        text = render_records(records)
        await asyncio.to_thread(_write_atomic, path, text)
        logger.info("store.preview_written", path=path, providers=len(records))


def render_records(records: Dict[str, TargetRecord]) -> str:
    """Render records as the store's YAML document."""
    document = {name: record.to_document() for name, record in records.items()}
    return yaml.safe_dump(document, sort_keys=False, default_flow_style=False)


def _read_text(path: str) -> str:
    with open(path) as f:
        return f.read()


def _write_atomic(path: str, text: str):
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".targets-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(text)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
