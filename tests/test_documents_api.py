from urllib.parse import urlparse

from sqlalchemy.exc import SQLAlchemyError

import database
import upload_routes
from conftest import ANSWER_REPLY, CLAUSE_REPLY, LEASE_TEXT, auth_headers, upload
from models import ClauseFeedback, Document, DocumentClause, DocumentFeedback, DocumentQuery, QueryFeedback
from storage import StorageError, get_storage
from validation import MAX_FILE_SIZE


def _document_count():
    with database.SessionLocal() as db:
        return db.query(Document).count()


def _temp_files():
    return list(upload_routes.UPLOAD_DIR.iterdir())


def _set_status(document_id, status):
    with database.SessionLocal() as db:
        db.query(Document).filter(Document.id == document_id).update({"upload_status": status})
        db.commit()


def test_upload_text_document_completes(client, headers):
    document = upload(client, headers, title="Apartment lease", category="legal")

    assert document["title"] == "Apartment lease"
    assert document["category"] == "legal"
    assert document["upload_status"] == "completed"
    assert document["file_size"] == len(LEASE_TEXT)
    assert get_storage().exists(document["file_path"])


def test_upload_uses_file_name_as_default_title(client, headers):
    document = upload(client, headers)
    assert document["title"] == "Lease.txt"
    assert document["category"] == "general"


def test_file_url_serves_the_stored_file(client, headers):
    document = upload(client, headers)

    response = client.get(urlparse(document["file_url"]).path)

    assert response.status_code == 200
    assert response.content == LEASE_TEXT


def test_temporary_copy_is_removed_after_upload(client, headers):
    upload(client, headers)
    assert _temp_files() == []


def test_failed_metadata_insert_removes_stored_object(client, headers, monkeypatch):
    def fail_insert(db, **fields):
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr(upload_routes, "_insert_document", fail_insert)

    response = client.post(
        "/api/upload/single",
        files={"document": ("Lease.txt", LEASE_TEXT, "text/plain")},
        headers=headers,
    )

    assert response.status_code == 500
    assert response.json()["message"] == "Failed to save document metadata"
    assert get_storage().list_all() == []
    assert _temp_files() == []
    assert _document_count() == 0


def test_failed_storage_upload_writes_nothing(client, headers, monkeypatch):
    def fail_upload(key, data, content_type=None, upsert=False):
        raise StorageError("bucket unavailable")

    monkeypatch.setattr(get_storage(), "upload", fail_upload)

    response = client.post(
        "/api/upload/single",
        files={"document": ("Lease.txt", LEASE_TEXT, "text/plain")},
        headers=headers,
    )

    assert response.status_code == 500
    assert response.json()["message"] == "Failed to upload file to storage"
    assert _temp_files() == []
    assert _document_count() == 0


def test_oversized_upload_is_rejected_before_any_write(client, headers):
    response = client.post(
        "/api/upload/single",
        files={"document": ("huge.txt", b"a" * (MAX_FILE_SIZE + 1), "text/plain")},
        headers=headers,
    )

    assert response.status_code == 413
    assert response.json()["success"] is False
    assert _document_count() == 0
    assert get_storage().list_all() == []


def test_disallowed_type_is_rejected_before_any_write(client, headers):
    response = client.post(
        "/api/upload/single",
        files={"document": ("archive.zip", b"PK\x03\x04", "application/zip")},
        headers=headers,
    )

    assert response.status_code == 400
    assert "Invalid file type" in response.json()["message"]
    assert _document_count() == 0
    assert get_storage().list_all() == []


def test_invalid_category_is_a_validation_error(client, headers):
    response = client.post(
        "/api/upload/single",
        files={"document": ("Lease.txt", LEASE_TEXT, "text/plain")},
        data={"category": "recipes"},
        headers=headers,
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Validation error"
    assert _document_count() == 0


def test_upload_requires_authentication(client):
    response = client.post("/api/upload/single", files={"document": ("Lease.txt", LEASE_TEXT, "text/plain")})
    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Access token is required"}


def test_multiple_upload_reports_per_file_errors(client, headers):
    response = client.post(
        "/api/upload/multiple",
        files=[
            ("documents", ("a.txt", b"first document", "text/plain")),
            ("documents", ("b.zip", b"PK", "application/zip")),
        ],
        headers=headers,
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert len(data["uploaded"]) == 1
    assert data["errors"][0]["file"] == "b.zip"


def test_pagination_reports_total_and_pages(client, headers):
    for index in range(3):
        upload(client, headers, name=f"doc{index}.txt", content=b"some text content")

    response = client.get("/api/upload/documents?page=2&limit=2", headers=headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert len(data["documents"]) == 1
    assert data["pagination"] == {"page": 2, "limit": 2, "total": 3, "totalPages": 2}


def test_documents_are_scoped_to_their_owner(client, headers):
    document = upload(client, headers)
    other = auth_headers(client, email="other@example.com", username="other")

    assert client.get(f"/api/upload/documents/{document['id']}", headers=other).status_code == 404
    assert client.get("/api/documents/all", headers=other).json()["data"]["pagination"]["total"] == 0


def test_update_and_download_document(client, headers):
    document = upload(client, headers)

    response = client.put(
        f"/api/upload/documents/{document['id']}",
        json={"title": "Renamed lease", "description": "Signed copy", "category": "personal"},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["data"]["document"]["title"] == "Renamed lease"

    download = client.get(f"/api/upload/documents/{document['id']}/download", headers=headers)
    assert download.status_code == 200
    assert download.content == LEASE_TEXT
    assert "Lease.txt" in download.headers["content-disposition"]


def test_all_documents_listing_includes_derived_fields(client, headers):
    upload(client, headers)
    upload(client, headers, name="photo.png", content=b"\x89PNG fake", mime_type="image/png")

    response = client.get("/api/documents/all?limit=10", headers=headers)

    data = response.json()["data"]
    by_name = {doc["file_name"]: doc for doc in data["documents"]}
    assert by_name["Lease.txt"]["can_query"] is True
    assert by_name["photo.png"]["can_query"] is False
    assert by_name["Lease.txt"]["file_size_formatted"].endswith("Bytes")
    assert data["summary"]["total_documents"] == 2
    assert data["summary"]["queryable_documents"] == 1


def test_all_documents_rejects_unknown_category(client, headers):
    response = client.get("/api/documents/all?category=recipes", headers=headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Validation error"


def test_documents_by_status_rejects_unknown_status(client, headers):
    response = client.get("/api/documents/all/status/archived", headers=headers)
    assert response.status_code == 400
    assert "completed" in response.json()["valid_statuses"]


def test_category_breakdown(client, headers):
    upload(client, headers, category="legal")
    upload(client, headers, name="notes.txt", content=b"notes", category="personal")

    response = client.get("/api/documents/all/categories", headers=headers)

    data = response.json()["data"]
    categories = {entry["category"]: entry for entry in data["categories"]}
    assert data["total_documents"] == 2
    assert categories["legal"]["count"] == 1
    assert categories["legal"]["total_size"] == len(LEASE_TEXT)
    assert categories["legal"]["status_breakdown"]["completed"] == 1
    assert categories["personal"]["total_size"] == 5
    assert categories["legal"]["percentage_of_total"] > categories["personal"]["percentage_of_total"]


def test_document_status_reports_readiness(client, headers):
    document = upload(client, headers)

    response = client.get(f"/api/documents/status/{document['id']}", headers=headers)
    data = response.json()["data"]
    assert data["status"] == "completed"
    assert data["is_ready"] is True

    _set_status(document["id"], "processing")
    data = client.get(f"/api/documents/status/{document['id']}", headers=headers).json()["data"]
    assert data["is_ready"] is False


def test_search_requires_two_characters(client, headers):
    response = client.get("/api/documents/search?q=a", headers=headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Search term must be at least 2 characters long"

    response = client.get("/api/documents/search?q=%20b%20", headers=headers)
    assert response.status_code == 400


def test_search_matches_title_and_file_name(client, headers):
    upload(client, headers, title="Office lease")
    upload(client, headers, name="invoice.txt", content=b"amount due", title="March invoice")

    response = client.get("/api/documents/search?q=lease", headers=headers)

    assert response.status_code == 200
    titles = [doc["title"] for doc in response.json()["data"]["documents"]]
    assert titles == ["Office lease"]


def test_category_endpoint_rejects_unknown_category(client, headers):
    response = client.get("/api/documents/category/recipes", headers=headers)
    assert response.status_code == 400
    assert "legal" in response.json()["valid_categories"]


def test_statistics_and_analytics(client, headers):
    upload(client, headers, category="legal")

    stats = client.get("/api/documents/statistics", headers=headers)
    assert stats.status_code == 200

    missing = client.get("/api/documents/analytics?start_date=2024-01-01", headers=headers)
    assert missing.status_code == 400

    analytics = client.get(
        "/api/documents/analytics?start_date=2000-01-01&end_date=2100-01-01",
        headers=headers,
    )
    assert analytics.status_code == 200

    utc = client.get(
        "/api/documents/analytics?start_date=2000-01-01T00:00:00Z&end_date=2100-01-01T00:00:00Z",
        headers=headers,
    )
    assert utc.status_code == 200
    assert utc.json()["data"]["total_documents"] == 1
    assert client.get("/api/documents/analytics?start_date=soon&end_date=later", headers=headers).status_code == 400


def test_cascade_delete_then_not_found(client, headers, gateway):
    document = upload(client, headers)
    client.post(f"/api/query/document/{document['id']}", json={"question": "What is the rent?"}, headers=headers)

    response = client.delete(f"/api/delete/{document['id']}", headers=headers)

    assert response.status_code == 200
    assert response.json()["data"]["document_id"] == document["id"]
    assert client.get(f"/api/upload/documents/{document['id']}", headers=headers).status_code == 404
    assert client.delete(f"/api/delete/{document['id']}", headers=headers).status_code == 404
    assert get_storage().list_all() == []
    with database.SessionLocal() as db:
        assert db.query(DocumentQuery).count() == 0


def test_delete_multiple_documents(client, headers):
    first = upload(client, headers)
    second = upload(client, headers, name="second.txt", content=b"second")

    response = client.post(
        "/api/delete/multiple",
        json={"documentIds": [first["id"], second["id"], "missing-id"]},
        headers=headers,
    )

    summary = response.json()["data"]["summary"]
    assert summary == {"requested": 3, "deleted": 2, "failed": 0}

    response = client.post("/api/delete/multiple", json={"documentIds": ["missing-id"]}, headers=headers)
    assert response.status_code == 404


def _attach_activity(client, headers, gateway, document_id):
    gateway.reply = ANSWER_REPLY
    query_id = client.post(
        f"/api/query/document/{document_id}", json={"question": "What is the rent?"}, headers=headers
    ).json()["data"]["query_id"]
    client.post(f"/api/feedback/query/{query_id}", json={"rating": 4, "feedback": "Clear answer with the right figure"}, headers=headers)

    gateway.reply = CLAUSE_REPLY
    clause_id = client.post(f"/api/clauses/extract/{document_id}", headers=headers).json()["data"]["clause_id"]
    client.post(f"/api/feedback/clause/{clause_id}", json={"rating": 5}, headers=headers)
    client.post(f"/api/feedback/document/{document_id}", json={"rating": 3}, headers=headers)


def _rows_for(document_ids):
    with database.SessionLocal() as db:
        query_ids = [q.id for q in db.query(DocumentQuery).filter(DocumentQuery.document_id.in_(document_ids))]
        clause_ids = [c.id for c in db.query(DocumentClause).filter(DocumentClause.document_id.in_(document_ids))]
        return {
            "queries": len(query_ids),
            "clauses": len(clause_ids),
            "query_feedback": db.query(QueryFeedback).filter(QueryFeedback.query_id.in_(query_ids)).count(),
            "clause_feedback": db.query(ClauseFeedback).filter(ClauseFeedback.clause_id.in_(clause_ids)).count(),
            "document_feedback": db.query(DocumentFeedback)
            .filter(DocumentFeedback.document_id.in_(document_ids))
            .count(),
        }


def test_category_delete_requires_confirmation(client, headers, gateway):
    first = upload(client, headers, category="legal")
    second = upload(client, headers, name="Addendum.txt", content=b"Addendum: pets allowed.", category="legal")
    kept = upload(client, headers, name="keep.txt", content=b"keep me", category="personal")
    for document in (first, second, kept):
        _attach_activity(client, headers, gateway, document["id"])
    legal_ids = [first["id"], second["id"]]
    assert _rows_for(legal_ids) == {
        "queries": 2, "clauses": 2, "query_feedback": 2, "clause_feedback": 2, "document_feedback": 2,
    }

    response = client.delete("/api/delete/category/legal", headers=headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Confirmation required. Set confirm: true in request body."
    assert _document_count() == 3

    response = client.request("DELETE", "/api/delete/category/legal", json={"confirm": True}, headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["summary"]["deleted"] == 2

    remaining = client.get("/api/documents/all", headers=headers).json()["data"]["documents"]
    assert [doc["category"] for doc in remaining] == ["personal"]
    assert _rows_for(legal_ids) == {
        "queries": 0, "clauses": 0, "query_feedback": 0, "clause_feedback": 0, "document_feedback": 0,
    }
    assert _rows_for([kept["id"]])["clause_feedback"] == 1
    assert get_storage().list_all() == [kept["file_path"]]


def test_category_delete_of_empty_category(client, headers):
    response = client.request("DELETE", "/api/delete/category/medical", json={"confirm": True}, headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["deleted_count"] == 0


def test_deletion_preview(client, headers):
    first = upload(client, headers)
    upload(client, headers, name="other.txt", content=b"other")

    response = client.get(f"/api/delete/preview?documentIds={first['id']}", headers=headers)

    data = response.json()["data"]
    assert data["summary"]["total_documents"] == 1
    assert "permanently delete 1 document" in data["warning"]
