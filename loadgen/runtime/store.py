"""
Load Generation Runtime - Generator Store

File-based persistence for the configured generator list. Only the
configuration is stored; runtime state (mode, counters, runs) never is.

The file is YAML, written atomically via a temp file and rename:

    version: 1
    generators:
      - kind: single_job_ramp_up
        generator_id: 6f1c2a9e-...
        short_name: checkout-ramp
        job_name: folder/checkout
        concurrent_run_count: 8
        ramp_up_millis: 4000
        use_jitter: false
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Iterable, Union

import yaml

from loadgen.observability.logging import LogTimer
from loadgen.runtime.configuration import generator_from_config
from loadgen.runtime.errors import (
    ErrorCode,
    LoadGeneratorError,
    configuration_error,
)
from loadgen.runtime.generators import LoadGenerator

logger = logging.getLogger(__name__)

STORE_FILENAME = "load_generators.yaml"
STORE_FORMAT_VERSION = 1


class GeneratorStore:
    """
    Persists generator configurations under a root directory.

    Thread-safe: file operations are serialized by a lock.

    Usage:
        store = GeneratorStore("/var/lib/loadgen")
        store.save(registry.generators())
        generators = store.load()
    """

    def __init__(self, root_dir: Union[str, Path], filename: str = STORE_FILENAME):
        self._root_dir = Path(root_dir)
        self._path = self._root_dir / filename
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def save(self, generators: Iterable[LoadGenerator]) -> None:
        """
        Write the generator list, replacing the previous file atomically.

        Raises:
            ConfigurationError: If the file cannot be written
        """
        document = {
            "version": STORE_FORMAT_VERSION,
            "generators": [gen.to_config() for gen in generators],
        }

        with self._lock:
            try:
                self._root_dir.mkdir(parents=True, exist_ok=True)
                temp_file = self._path.with_suffix(".tmp")
                with open(temp_file, "w") as f:
                    yaml.safe_dump(document, f, sort_keys=False)
                temp_file.replace(self._path)
            except OSError as e:
                raise configuration_error(
                    ErrorCode.CFG_STORE_WRITE_FAILED,
                    f"Failed to save generator store: {e}",
                    path=self._path,
                    cause=e,
                )

        logger.debug(
            "Generator store saved",
            extra={"path": str(self._path), "generator_count": len(document["generators"])},
        )

    def load(self) -> list[LoadGenerator]:
        """
        Read the generator list.

        Returns:
            Generators in file order (empty if no file exists yet)

        Raises:
            ConfigurationError: If the file is unreadable or an entry is invalid
        """
        with self._lock:
            if not self._path.exists():
                logger.debug("No generator store found, starting empty", extra={"path": str(self._path)})
                return []

            with LogTimer(logger, "Generator store load", level=logging.DEBUG, path=str(self._path)):
                entries = self._read_entries()

        generators = []
        for index, entry in enumerate(entries):
            try:
                generators.append(generator_from_config(entry))
            except LoadGeneratorError as e:
                raise configuration_error(
                    ErrorCode.CFG_STORE_UNREADABLE,
                    f"Invalid generator entry #{index}: {e.message}",
                    generator_id=e.context.generator_id,
                    short_name=e.context.short_name,
                    path=self._path,
                    cause=e,
                )

        logger.info(
            "Generator store loaded",
            extra={"path": str(self._path), "generator_count": len(generators)},
        )
        return generators

    def clear(self) -> bool:
        """Delete the store file. Returns True if a file was removed."""
        with self._lock:
            try:
                self._path.unlink()
                return True
            except FileNotFoundError:
                return False

    def _read_entries(self) -> list[dict[str, Any]]:
        try:
            with open(self._path, "r") as f:
                document = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise configuration_error(
                ErrorCode.CFG_STORE_UNREADABLE,
                f"Failed to read generator store: {e}",
                path=self._path,
                cause=e,
            )

        if document is None:
            return []

        # A bare list is accepted as well as the versioned mapping
        if isinstance(document, dict):
            entries = document.get("generators") or []
        else:
            entries = document

        if not isinstance(entries, list) or not all(isinstance(e, dict) for e in entries):
            raise configuration_error(
                ErrorCode.CFG_STORE_UNREADABLE,
                "Generator store must contain a list of generator mappings",
                path=self._path,
                expected="list",
                actual=type(entries).__name__,
            )
        return entries
