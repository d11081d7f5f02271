import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from auth import get_current_user
from auth_providers import UserRecord
from database import get_db
from document_service import delete_document_cascade, delete_documents, deletion_preview, get_owned_document
from models import DOCUMENT_CATEGORIES, Document
from storage import Bucket, get_storage
from validation import CategoryDeleteRequest, MultipleDeleteRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/delete", tags=["delete"])


@router.delete("/{document_id}")
def delete_document(
    document_id: str,
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: Bucket = Depends(get_storage),
):
    document = get_owned_document(db, document_id, current_user.id)
    deleted = delete_document_cascade(db, storage, document)
    logger.info("User %s deleted document %s", current_user.id, document_id)

    return {
        "success": True,
        "message": "Document deleted successfully",
        "data": {
            "document_id": deleted["document_id"],
            "document_title": deleted["title"],
            "file_name": deleted["file_name"],
            "deleted_at": deleted["deleted_at"],
        },
    }


@router.post("/multiple")
def delete_multiple_documents(
    request: MultipleDeleteRequest,
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: Bucket = Depends(get_storage),
):
    documents = (
        db.query(Document)
        .filter(Document.user_id == current_user.id, Document.id.in_(request.documentIds))
        .all()
    )
    if not documents:
        raise HTTPException(status_code=404, detail="No documents found to delete")

    deleted, errors = delete_documents(db, storage, documents)

    return {
        "success": True,
        "message": f"Deleted {len(deleted)} documents successfully",
        "data": {
            "deleted_documents": deleted,
            "errors": errors or None,
            "summary": {
                "requested": len(request.documentIds),
                "deleted": len(deleted),
                "failed": len(errors),
            },
        },
    }


@router.delete("/category/{category}")
def delete_documents_by_category(
    category: str,
    request: Optional[CategoryDeleteRequest] = None,
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: Bucket = Depends(get_storage),
):
    if request is None or not request.confirm:
        raise HTTPException(status_code=400, detail="Confirmation required. Set confirm: true in request body.")
    if category not in DOCUMENT_CATEGORIES:
        raise HTTPException(
            status_code=400,
            detail={"message": "Invalid category", "valid_categories": DOCUMENT_CATEGORIES},
        )

    documents = (
        db.query(Document)
        .filter(Document.user_id == current_user.id, Document.category == category)
        .all()
    )
    if not documents:
        return {
            "success": True,
            "message": "No documents found in this category",
            "data": {"category": category, "deleted_count": 0},
        }

    deleted, errors = delete_documents(db, storage, documents)
    logger.info("User %s deleted %d documents from category %s", current_user.id, len(deleted), category)

    return {
        "success": True,
        "message": f"Deleted {len(deleted)} documents from category '{category}'",
        "data": {
            "category": category,
            "deleted_documents": deleted,
            "errors": errors or None,
            "summary": {
                "total_in_category": len(documents),
                "deleted": len(deleted),
                "failed": len(errors),
            },
        },
    }


@router.get("/preview")
def get_deletion_preview(
    documentIds: Optional[str] = None,
    category: Optional[str] = None,
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ids = [value.strip() for value in documentIds.split(",") if value.strip()] if documentIds else None
    return {"success": True, "data": deletion_preview(db, current_user.id, ids, category)}
