import logging
from datetime import datetime
from typing import List, Optional, Tuple

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from document_processor import DocumentProcessor
from document_utils import format_file_size, count_by
from models import (
    ClauseFeedback,
    Document,
    DocumentClause,
    DocumentFeedback,
    DocumentQuery,
    QueryFeedback,
)
from storage import Bucket, StorageError
from validation import QUERYABLE_MIME_TYPES

logger = logging.getLogger(__name__)

document_processor = DocumentProcessor()


def get_owned_document(db: Session, document_id: str, user_id: str) -> Document:
    document = (
        db.query(Document)
        .filter(Document.id == document_id, Document.user_id == user_id)
        .first()
    )
    if document is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    return document


def load_document_text(document: Document, storage: Bucket, purpose: str = "processing") -> str:
    """
    Fetch a document from storage and return its text.

    Readiness and type are checked before the download, so a document that is
    still processing never reaches storage or the AI gateway.
    """
    if document.upload_status != "completed":
        raise HTTPException(status_code=400, detail=f"Document is not ready for {purpose}")
    if document.file_type not in QUERYABLE_MIME_TYPES:
        raise HTTPException(status_code=400, detail=f"Unsupported file type for {purpose}")

    try:
        data = storage.download(document.file_path)
    except StorageError as e:
        logger.error("Failed to download %s: %s", document.file_path, e)
        raise HTTPException(
            status_code=500,
            detail={"message": "Failed to download document", "error": str(e)},
        )

    try:
        text = document_processor.extract_text_from_bytes(data, document.file_type)
    except ValueError as e:
        logger.warning("Text extraction failed for %s: %s", document.id, e)
        text = ""

    if not text.strip():
        raise HTTPException(status_code=400, detail="Could not extract text from document")
    return text


def _delete_rows(db: Session, document_ids) -> None:
    query_ids = select(DocumentQuery.id).where(DocumentQuery.document_id.in_(document_ids))
    clause_ids = select(DocumentClause.id).where(DocumentClause.document_id.in_(document_ids))

    # Children first so every foreign key is satisfied at each step
    db.query(QueryFeedback).filter(QueryFeedback.query_id.in_(query_ids)).delete(synchronize_session=False)
    db.query(ClauseFeedback).filter(ClauseFeedback.clause_id.in_(clause_ids)).delete(synchronize_session=False)
    db.query(DocumentQuery).filter(DocumentQuery.document_id.in_(document_ids)).delete(synchronize_session=False)
    db.query(DocumentClause).filter(DocumentClause.document_id.in_(document_ids)).delete(synchronize_session=False)
    db.query(DocumentFeedback).filter(DocumentFeedback.document_id.in_(document_ids)).delete(synchronize_session=False)
    db.query(Document).filter(Document.id.in_(document_ids)).delete(synchronize_session=False)


def delete_document_cascade(db: Session, storage: Bucket, document: Document) -> dict:
    """Delete a document, every row that depends on it, then its stored file."""
    summary = {
        "document_id": document.id,
        "title": document.title,
        "file_name": document.file_name,
    }
    file_path = document.file_path

    try:
        _delete_rows(db, [document.id])
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    try:
        storage.remove([file_path])
    except StorageError as e:
        # The object is now orphaned; cleanup_orphaned_files can reclaim it
        logger.error("Storage deletion error for %s: %s", document.id, e)

    summary["deleted_at"] = datetime.utcnow().isoformat()
    return summary


def delete_documents(db: Session, storage: Bucket, documents: List[Document]) -> Tuple[List[dict], List[dict]]:
    """Delete each document independently; one failure does not stop the rest."""
    deleted, errors = [], []
    for document in documents:
        document_id = document.id
        try:
            deleted.append(delete_document_cascade(db, storage, document))
        except SQLAlchemyError as e:
            logger.error("Failed to delete document %s: %s", document_id, e)
            errors.append({"document_id": document_id, "error": str(e)})
    return deleted, errors


def delete_user_data(db: Session, storage: Bucket, user_id: str) -> dict:
    documents = db.query(Document).filter(Document.user_id == user_id).all()
    deleted, errors = delete_documents(db, storage, documents)
    if errors:
        raise HTTPException(
            status_code=500,
            detail={"message": "Failed to delete user documents", "error": errors[0]["error"]},
        )

    # Feedback the user left on rows that outlived the documents above
    db.query(QueryFeedback).filter(QueryFeedback.user_id == user_id).delete(synchronize_session=False)
    db.query(ClauseFeedback).filter(ClauseFeedback.user_id == user_id).delete(synchronize_session=False)
    db.query(DocumentFeedback).filter(DocumentFeedback.user_id == user_id).delete(synchronize_session=False)
    db.commit()
    return {"documents_deleted": len(deleted)}


def deletion_preview(db: Session, user_id: str, document_ids: Optional[List[str]] = None,
                     category: Optional[str] = None) -> dict:
    query = db.query(Document).filter(Document.user_id == user_id)
    if document_ids:
        query = query.filter(Document.id.in_(document_ids))
    if category:
        query = query.filter(Document.category == category)
    documents = query.all()

    total_size = sum(doc.file_size or 0 for doc in documents)
    if documents:
        warning = (
            f"This will permanently delete {len(documents)} document(s) and all associated data "
            "(queries, clauses, feedback). This action cannot be undone."
        )
    else:
        warning = "No documents found matching the criteria."

    return {
        "documents": [
            {
                "id": doc.id,
                "title": doc.title,
                "file_name": doc.file_name,
                "file_size": doc.file_size,
                "file_type": doc.file_type,
                "category": doc.category,
                "upload_status": doc.upload_status,
                "created_at": doc.created_at.isoformat() if doc.created_at else None,
                "file_size_formatted": format_file_size(doc.file_size),
            }
            for doc in documents
        ],
        "summary": {
            "total_documents": len(documents),
            "total_size": total_size,
            "total_size_formatted": format_file_size(total_size),
            "categories": sorted({doc.category for doc in documents}),
            "status_breakdown": count_by(documents, "upload_status"),
        },
        "warning": warning,
    }
