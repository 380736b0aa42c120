from __future__ import annotations

import logging
import re
import shutil
from functools import lru_cache
from pathlib import Path

from tierlist.core.config import get_settings
from tierlist.core.limits import ASSET_CATEGORIES
from tierlist.services.errors import StorageCleanupError

logger = logging.getLogger(__name__)

PATH_ID_RE = re.compile(r"^[a-zA-Z0-9-]+$")
FILE_NAME_RE = re.compile(r"^[a-zA-Z0-9._]+$")


class AssetStorage:
    """Maps stored references (``owner/category/entity/file.jpg``) to files under one root."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def entity_dir(self, owner_id: str, category: str, entity_id: str) -> Path:
        if not PATH_ID_RE.match(owner_id) or not PATH_ID_RE.match(entity_id):
            raise ValueError("owner and entity ids must be alphanumeric or hyphens")
        if category not in ASSET_CATEGORIES:
            raise ValueError(f"unknown asset category: {category}")
        return self.root / owner_id / category / entity_id

    def resolve(self, reference: str) -> Path:
        parts = reference.split("/")
        if len(parts) != 4:
            raise ValueError(f"malformed asset reference: {reference!r}")
        owner_id, category, entity_id, file_name = parts
        if not FILE_NAME_RE.match(file_name) or file_name.startswith("."):
            raise ValueError(f"malformed asset reference: {reference!r}")
        return self.entity_dir(owner_id, category, entity_id) / file_name

    def reference_for(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def exists(self, reference: str) -> bool:
        try:
            return self.resolve(reference).is_file()
        except ValueError:
            return False

    def delete(self, reference: str) -> None:
        """Remove one stored file; a file that is already gone is not an error."""
        try:
            path = self.resolve(reference)
        except ValueError as exc:
            raise StorageCleanupError("stor-001", str(exc)) from exc
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageCleanupError("stor-002", f"failed to delete {reference}: {exc}") from exc

    def delete_many(self, references: list[str] | set[str] | frozenset[str] | tuple[str, ...]) -> list[str]:
        """Delete every reference, logging failures; returns the references that could not be removed."""
        failed: list[str] = []
        for reference in sorted(references):
            if not reference:
                continue
            try:
                self.delete(reference)
            except StorageCleanupError as exc:
                logger.warning("asset cleanup failed reference=%s error=%s", reference, exc)
                failed.append(reference)
        return failed

    def delete_entity_dir(self, owner_id: str, category: str, entity_id: str) -> bool:
        return self._remove_tree(self.entity_dir(owner_id, category, entity_id))

    def delete_owner_dir(self, owner_id: str) -> bool:
        """Remove every file stored for ``owner_id``, across all categories."""
        if not PATH_ID_RE.match(owner_id):
            raise ValueError("owner ids must be alphanumeric or hyphens")
        return self._remove_tree(self.root / owner_id)

    def _remove_tree(self, path: Path) -> bool:
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            return True
        except OSError as exc:
            logger.warning("asset folder cleanup failed path=%s error=%s", self.reference_for(path), exc)
            return False
        return True


@lru_cache
def get_asset_storage() -> AssetStorage:
    return AssetStorage(get_settings().storage_root)
