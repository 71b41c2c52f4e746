"""
Document providers for the Intelligent Podcast Generator.
Supply the study documents a podcast is generated from.
"""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List

from models.entities import DocumentContent
from errors import InputError, NotFoundError
from config import get_settings, get_logger

logger = get_logger(__name__)


class DocumentProvider(ABC):
    """Returns documents by id, in the order requested."""

    @abstractmethod
    def get_documents(self, document_ids: List[str]) -> List[DocumentContent]:
        ...


class InMemoryDocumentProvider(DocumentProvider):
    """Documents held in a dict, keyed by id."""

    def __init__(self, documents: Iterable[DocumentContent] = ()):
        self._documents: Dict[str, DocumentContent] = {d.id: d for d in documents}

    def add(self, document: DocumentContent) -> None:
        self._documents[document.id] = document

    def get_documents(self, document_ids: List[str]) -> List[DocumentContent]:
        missing = [i for i in document_ids if i not in self._documents]
        if missing:
            raise NotFoundError(f"Documents not found: {', '.join(missing)}")
        return [self._documents[i] for i in document_ids]


class DirectoryDocumentProvider(DocumentProvider):
    """
    Documents stored as text files.

    ``<dir>/<id>.txt`` holds the extracted text; an optional ``<id>.json``
    sidecar may set ``title``, ``language`` and ``page_count``.
    """

    def __init__(self, directory: str = None):
        self.directory = Path(directory or get_settings().documents_dir)

    def _path_for(self, document_id: str, suffix: str) -> Path:
        if not document_id or Path(document_id).name != document_id:
            raise InputError(f"Invalid document id: {document_id!r}")
        return self.directory / f"{document_id}{suffix}"

    def load(self, document_id: str) -> DocumentContent:
        text_path = self._path_for(document_id, ".txt")
        if not text_path.is_file():
            raise NotFoundError(f"Document {document_id} not found")

        meta = {}
        meta_path = self._path_for(document_id, ".json")
        if meta_path.is_file():
            try:
                meta = json.loads(meta_path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as e:
                logger.warning(f"Ignoring unreadable metadata for {document_id}: {e}")

        return DocumentContent(
            id=document_id,
            title=meta.get("title") or document_id,
            content=text_path.read_text(encoding="utf-8"),
            page_count=int(meta.get("page_count", 0)),
            language=meta.get("language") or "auto"
        )

    def get_documents(self, document_ids: List[str]) -> List[DocumentContent]:
        documents = [self.load(i) for i in document_ids]
        logger.info(f"Loaded {len(documents)} documents from {self.directory}")
        return documents
