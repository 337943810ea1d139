"""
Installation manifest: the durable record of what gearbox installed.

The file is rewritten atomically (temp file + rename) on every change, and
validated against schemas/manifest.schema.json on load.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Iterable
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path

from gearbox.errors import ManifestError
from gearbox.providers import InstallationRecord
from gearbox.validation import validate_json

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0"
BACKUP_DIR = "backups"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_manifest() -> dict:
    return {
        "schema_version": SCHEMA_VERSION,
        "installations": {},
        "created_at": now_iso(),
        "updated_at": now_iso(),
    }


def _record_from_dict(data: dict) -> InstallationRecord:
    return InstallationRecord(
        method=data["method"],
        installed_at=data["installed_at"],
        version=data.get("version", ""),
        build_type=data.get("build_type", "standard"),
        binary_paths=tuple(data.get("binary_paths", [])),
        build_dir=data.get("build_dir", ""),
        user_requested=data.get("user_requested", True),
    )


def _record_to_dict(record: InstallationRecord) -> dict:
    data = asdict(record)
    data["binary_paths"] = list(record.binary_paths)
    return data


class FileManifestStore:
    """RecordStore backed by a JSON file. Safe to share between threads."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict:
        """Read the manifest, creating an empty one if it does not exist."""
        with self._lock:
            return self._load()

    def save(self, manifest: dict) -> None:
        with self._lock:
            self._save(manifest)

    def installations(self) -> dict[str, InstallationRecord]:
        manifest = self.load()
        return {
            name: _record_from_dict(data)
            for name, data in manifest["installations"].items()
        }

    def is_installed(self, tool: str) -> bool:
        return tool in self.load()["installations"]

    def add_installation(self, tool: str, record: InstallationRecord) -> None:
        with self._lock:
            manifest = self._load()
            manifest["installations"][tool] = _record_to_dict(record)
            self._save(manifest)
        logger.info("Recorded installation of %s", tool)

    def remove_installation(self, tool: str) -> bool:
        with self._lock:
            manifest = self._load()
            if manifest["installations"].pop(tool, None) is None:
                return False
            self._save(manifest)
        logger.info("Removed installation record for %s", tool)
        return True

    def backup(self, suffix: str = "") -> Path | None:
        """Copy the manifest into the backups directory. None if nothing to copy."""
        with self._lock:
            if not self._path.exists():
                return None
            backup_dir = self._path.parent / BACKUP_DIR
            backup_dir.mkdir(parents=True, exist_ok=True)
            name = f"manifest-{datetime.now().strftime('%Y%m%d-%H%M%S')}"
            if suffix:
                name += f"-{suffix}"
            backup_path = backup_dir / f"{name}.json"
            backup_path.write_text(self._path.read_text())
        return backup_path

    def _load(self) -> dict:
        if not self._path.exists():
            manifest = new_manifest()
            self._save(manifest)
            return manifest
        try:
            manifest = json.loads(self._path.read_text())
        except (json.JSONDecodeError, OSError) as e:
            raise ManifestError(f"Failed to read manifest {self._path}: {e}") from e

        valid, error = validate_json(manifest, "manifest")
        if not valid:
            raise ManifestError(f"Invalid manifest {self._path}: {error}")
        if manifest["schema_version"] != SCHEMA_VERSION:
            raise ManifestError(f"Unsupported schema version: {manifest['schema_version']}")
        return manifest

    def _save(self, manifest: dict) -> None:
        manifest["updated_at"] = now_iso()
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(manifest, indent=2))
            os.replace(tmp_path, self._path)
        except OSError as e:
            raise ManifestError(f"Failed to write manifest {self._path}: {e}") from e


def uninstall_tools(
    store: FileManifestStore, tools: Iterable[str]
) -> tuple[dict[str, InstallationRecord], Path | None]:
    """
    Remove installation records, backing the manifest up first.

    Tools without a record are skipped, and no backup is taken when nothing
    would be removed. Installed binaries are left in place. Returns the
    removed records and the backup path.
    """
    recorded = store.installations()
    names = [tool for tool in dict.fromkeys(tools) if tool in recorded]
    if not names:
        return {}, None
    backup_path = store.backup("pre-uninstall")
    removed = {name: recorded[name] for name in names if store.remove_installation(name)}
    logger.info("Uninstalled %s (backup: %s)", ", ".join(removed), backup_path)
    return removed, backup_path
