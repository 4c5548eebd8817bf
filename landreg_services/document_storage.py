"""
Document lifecycle collaborator (``landreg_services.document_storage``).

Responsibility:
    Stores wizard uploads in a temporary area keyed by session and step,
    promotes them to permanent storage under the entity they document, and
    removes temporary files of abandoned sessions.

Architecture position:
    Services layer.  ``DocumentLifecycle`` is the seam the wizard
    orchestrator, the promotion relay and the sweep depend on;
    ``LocalDocumentStore`` is the filesystem implementation.

Layout:
    <root>/temp/<session_id>/<step>/<file_name>
    <root>/permanent/<entity_type>/<entity_id>/<file_name>

Failure modes:
    - ValidationError for an empty or path-like file name.
    - DocumentNotFoundError when promoting a file that is not there.
    - OSError from the filesystem propagates.
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Protocol
from uuid import UUID

from landreg_kernel.domain.wizard import DocumentRef
from landreg_kernel.exceptions import DocumentNotFoundError, ValidationError
from landreg_kernel.logging_config import get_logger

logger = get_logger("services.document_storage")


class DocumentLifecycle(Protocol):
    def store_temporary(
        self,
        session_id: UUID,
        step: str,
        file_name: str,
        content: bytes,
        doc_type: str,
    ) -> DocumentRef:
        ...

    def promote_to_permanent(
        self,
        session_id: UUID,
        step: str,
        file_name: str,
        entity_type: str,
        entity_id: str,
    ) -> str:
        ...

    def delete_temporary(self, session_id: UUID, step: str, file_name: str) -> None:
        ...

    def cleanup_session(self, session_id: UUID) -> None:
        ...


def _safe_name(file_name: str) -> str:
    name = Path(file_name or "").name
    if not name or name in (".", "..") or name != file_name:
        raise ValidationError(f"Invalid file name: {file_name!r}", field="file_name")
    return name


class LocalDocumentStore:
    """Filesystem-backed ``DocumentLifecycle``."""

    def __init__(self, root: Path | str):
        self._root = Path(root)
        self._temp_root = self._root / "temp"
        self._permanent_root = self._root / "permanent"

    def _temp_path(self, session_id: UUID, step: str, file_name: str) -> Path:
        return self._temp_root / str(session_id) / step / _safe_name(file_name)

    def store_temporary(
        self,
        session_id: UUID,
        step: str,
        file_name: str,
        content: bytes,
        doc_type: str,
    ) -> DocumentRef:
        path = self._temp_path(session_id, step, file_name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        logger.info(
            "document_stored_temporary",
            extra={
                "session_id": str(session_id),
                "step": step,
                "file_name": path.name,
                "size_bytes": len(content),
            },
        )
        return DocumentRef(
            file_name=path.name,
            doc_type=doc_type,
            location=str(path),
            size_bytes=len(content),
        )

    def promote_to_permanent(
        self,
        session_id: UUID,
        step: str,
        file_name: str,
        entity_type: str,
        entity_id: str,
    ) -> str:
        source = self._temp_path(session_id, step, file_name)
        target = self._permanent_root / entity_type / str(entity_id) / source.name
        if not source.exists():
            if target.exists():
                # Moved by an earlier attempt whose status update was lost.
                return str(target)
            raise DocumentNotFoundError(str(source))
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(source), str(target))
        logger.info(
            "document_promoted",
            extra={
                "session_id": str(session_id),
                "file_name": source.name,
                "entity_type": entity_type,
                "entity_id": str(entity_id),
            },
        )
        return str(target)

    def delete_temporary(self, session_id: UUID, step: str, file_name: str) -> None:
        self._temp_path(session_id, step, file_name).unlink(missing_ok=True)

    def cleanup_session(self, session_id: UUID) -> None:
        session_dir = self._temp_root / str(session_id)
        if session_dir.exists():
            shutil.rmtree(session_dir)
            logger.info(
                "document_session_cleaned",
                extra={"session_id": str(session_id)},
            )
