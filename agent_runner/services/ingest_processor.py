"""Batch ingestion: split an uploaded document into fixed-size text chunks."""

import logging
from pathlib import Path
from typing import List

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..errors import OrchestrationError
from ..models.document import Document, DocumentChunk

logger = logging.getLogger("agent_runner.services.ingest_processor")

CHUNK_SIZE = 1200


def chunk_text(text: str, size: int = CHUNK_SIZE) -> List[str]:
    return [text[i:i + size] for i in range(0, len(text), size) if text[i:i + size].strip()]


def ingest_document(db: Session, document_id: str) -> int:
    """Replace the document's chunks with fresh ones. Returns the chunk count."""
    document = db.execute(select(Document).where(Document.id == document_id)).scalar_one_or_none()
    if document is None:
        raise OrchestrationError(f"document {document_id} not found", code="document_not_found")

    path = Path(document.storage_path)
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        raise OrchestrationError(f"cannot read {path}: {exc}", code="document_unreadable") from exc

    chunks = chunk_text(text)
    db.execute(delete(DocumentChunk).where(DocumentChunk.document_id == document.id))
    for idx, chunk in enumerate(chunks):
        db.add(DocumentChunk(
            document_id=document.id,
            idx=idx,
            text=chunk,
            metadata_json={"filename": document.filename, "mime": document.mime},
        ))
    db.commit()
    logger.info("Ingested document %s into %d chunks", document.id, len(chunks))
    return len(chunks)
