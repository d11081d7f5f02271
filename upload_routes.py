import logging
import os
import time
import uuid
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import Response
from pydantic import ValidationError
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from auth import get_current_user
from auth_providers import UserRecord
from database import get_db
from document_processor import DocumentProcessor
from document_service import delete_document_cascade, get_owned_document
from document_utils import offset, pagination
from models import Document
from saga import Saga, SagaError
from storage import Bucket, StorageError, get_storage
from validation import (
    MAX_FILE_SIZE,
    MAX_FILES_PER_UPLOAD,
    DocumentMetadata,
    DocumentUpdateRequest,
    error_messages,
    get_file_extension,
    sanitize_filename,
    validate_file_size,
    validate_file_type,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/upload", tags=["upload"])

UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", "uploads"))
UPLOAD_DIR.mkdir(parents=True, exist_ok=True)

document_processor = DocumentProcessor()


def _metadata(title: Optional[str], description: Optional[str], category: Optional[str]) -> DocumentMetadata:
    try:
        return DocumentMetadata(title=title or None, description=description or None, category=category or "general")
    except ValidationError as e:
        raise HTTPException(
            status_code=400,
            detail={"message": "Validation error", "errors": error_messages(e.errors())},
        )


def _mime_type(upload: UploadFile) -> str:
    return (upload.content_type or "").split(";")[0].strip().lower()


def _read_validated(upload: UploadFile) -> bytes:
    """Reject disallowed or oversized files before anything is written."""
    if not validate_file_type(_mime_type(upload)):
        raise HTTPException(
            status_code=400,
            detail="Invalid file type. Only PDF, DOC, DOCX, TXT, and image files are allowed.",
        )
    content = upload.file.read(MAX_FILE_SIZE + 1)
    if not validate_file_size(len(content)):
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail="File too large. Maximum size is 10MB",
        )
    return content


def _insert_document(db: Session, **fields) -> Document:
    document = Document(**fields)
    try:
        db.add(document)
        db.commit()
        db.refresh(document)
    except SQLAlchemyError:
        db.rollback()
        raise
    return document


def _remove_document_row(db: Session, document_id: str):
    db.rollback()
    db.query(Document).filter(Document.id == document_id).delete(synchronize_session=False)
    db.commit()


def _finish_processing(db: Session, document: Document, data: bytes) -> str:
    """Extract text where the format allows it and settle the final status."""
    status_value = "completed"
    if document_processor.supports(document.file_type):
        try:
            document_processor.extract_text_from_bytes(data, document.file_type)
        except ValueError as e:
            logger.warning("Text extraction failed for %s: %s", document.file_name, e)
            status_value = "failed"

    document.upload_status = status_value
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(document)
    return status_value


def store_upload(db: Session, storage: Bucket, user: UserRecord, upload: UploadFile,
                 metadata: DocumentMetadata) -> Document:
    content = _read_validated(upload)
    mime_type = _mime_type(upload)
    original_name = upload.filename or "document"
    extension = Path(original_name).suffix.lower() or get_file_extension(mime_type)
    temp_path = UPLOAD_DIR / f"{uuid.uuid4()}-{int(time.time() * 1000)}{extension}"

    try:
        temp_path.write_bytes(content)
        data = temp_path.read_bytes()
        object_path = f"documents/{user.id}/{uuid.uuid4()}{extension}"

        saga = Saga("document upload")
        saga.step(
            "upload file to storage",
            lambda: storage.upload(object_path, data, content_type=mime_type),
            compensate=lambda: storage.remove([object_path]),
        )
        document = saga.step(
            "save document metadata",
            lambda: _insert_document(
                db,
                user_id=user.id,
                title=metadata.title or original_name,
                description=metadata.description,
                category=metadata.category,
                file_name=original_name,
                file_path=object_path,
                file_url=storage.get_public_url(object_path),
                file_size=len(data),
                file_type=mime_type,
                file_extension=extension,
                upload_status="processing",
            ),
            compensate=lambda: _remove_document_row(db, document.id),
        )
        saga.step("process document", lambda: _finish_processing(db, document, data))
        saga.complete()
        return document
    except SagaError as e:
        raise HTTPException(
            status_code=500,
            detail={"message": f"Failed to {e.step}", "error": str(e.cause)},
        )
    finally:
        if temp_path.exists():
            temp_path.unlink()


@router.post("/single", status_code=status.HTTP_201_CREATED)
def upload_document(
    document: UploadFile = File(...),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: Bucket = Depends(get_storage),
):
    metadata = _metadata(title, description, category)
    stored = store_upload(db, storage, current_user, document, metadata)
    logger.info("User %s uploaded %s (%s bytes)", current_user.id, stored.file_name, stored.file_size)

    return {
        "success": True,
        "message": "Document uploaded successfully",
        "data": {"document": stored.to_dict(), "file_url": stored.file_url},
    }


@router.post("/multiple", status_code=status.HTTP_201_CREATED)
def upload_multiple_documents(
    documents: List[UploadFile] = File(...),
    category: Optional[str] = Form(None),
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: Bucket = Depends(get_storage),
):
    if len(documents) > MAX_FILES_PER_UPLOAD:
        raise HTTPException(status_code=400, detail=f"Cannot upload more than {MAX_FILES_PER_UPLOAD} files at once")

    metadata = _metadata(None, None, category)
    uploaded, errors = [], []
    for upload in documents:
        try:
            stored = store_upload(db, storage, current_user, upload, metadata)
            uploaded.append({"document": stored.to_dict(), "file_url": stored.file_url})
        except HTTPException as e:
            detail = e.detail if isinstance(e.detail, dict) else {"message": e.detail}
            errors.append({"file": upload.filename, "error": detail.get("error") or detail.get("message")})

    return {
        "success": True,
        "message": f"Uploaded {len(uploaded)} documents successfully",
        "data": {"uploaded": uploaded, "errors": errors or None},
    }


@router.get("/documents")
def get_user_documents(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category: Optional[str] = None,
    search: Optional[str] = None,
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    query = db.query(Document).filter(Document.user_id == current_user.id)
    if category:
        query = query.filter(Document.category == category)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Document.title.ilike(pattern), Document.description.ilike(pattern)))

    total = query.count()
    documents = query.order_by(Document.created_at.desc()).offset(offset(page, limit)).limit(limit).all()

    return {
        "success": True,
        "data": {
            "documents": [doc.to_dict() for doc in documents],
            "pagination": pagination(page, limit, total),
        },
    }


@router.get("/documents/{document_id}")
def get_document(
    document_id: str,
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    document = get_owned_document(db, document_id, current_user.id)
    return {"success": True, "data": {"document": document.to_dict()}}


@router.put("/documents/{document_id}")
def update_document(
    document_id: str,
    request: DocumentUpdateRequest,
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    document = get_owned_document(db, document_id, current_user.id)
    document.title = request.title
    document.description = request.description
    document.category = request.category
    db.commit()
    db.refresh(document)

    return {
        "success": True,
        "message": "Document updated successfully",
        "data": {"document": document.to_dict()},
    }


@router.delete("/documents/{document_id}")
def delete_document(
    document_id: str,
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: Bucket = Depends(get_storage),
):
    document = get_owned_document(db, document_id, current_user.id)
    delete_document_cascade(db, storage, document)
    return {"success": True, "message": "Document deleted successfully"}


@router.get("/documents/{document_id}/download")
def download_document(
    document_id: str,
    current_user: UserRecord = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: Bucket = Depends(get_storage),
):
    document = get_owned_document(db, document_id, current_user.id)
    try:
        data = storage.download(document.file_path)
    except StorageError as e:
        raise HTTPException(status_code=500, detail={"message": "Failed to download file", "error": str(e)})

    return Response(
        content=data,
        media_type=document.file_type,
        headers={
            "Content-Disposition": (
                f'attachment; filename="{sanitize_filename(document.file_name)}"; '
                f"filename*=UTF-8''{quote(document.file_name)}"
            )
        },
    )
