"""
Document Catalog

Read-only lookup of purchasable documents, loaded once from a JSON file
(DOCUMENT_CATALOG_PATH) or the built-in default.

File format: {"<document_id>": {"file_id": ..., "name": ..., "drive_url": ...,
"tokens_required": 1, "category": ..., "year": ...}, ...}
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Any

from .config import DEFAULT_DOCUMENTS
from .models import CatalogDocument

logger = logging.getLogger(__name__)


class DocumentCatalog:
    def __init__(self, documents: Dict[str, Dict[str, Any]]):
        self._documents = {
            document_id: CatalogDocument(id=document_id, **info)
            for document_id, info in documents.items()
        }

    @classmethod
    def from_file(cls, path: str) -> "DocumentCatalog":
        with Path(path).open(encoding="utf-8") as fh:
            documents = json.load(fh)
        if not isinstance(documents, dict):
            raise ValueError(f"Document catalog {path} must be a JSON object keyed by document id")
        logger.info(f"Loaded {len(documents)} documents from {path}")
        return cls(documents)

    @classmethod
    def from_settings(cls, settings) -> "DocumentCatalog":
        if settings.document_catalog_path:
            return cls.from_file(settings.document_catalog_path)
        return cls(DEFAULT_DOCUMENTS)

    def get(self, document_id: str) -> Optional[CatalogDocument]:
        return self._documents.get(document_id)

    def list(self) -> List[CatalogDocument]:
        return list(self._documents.values())
