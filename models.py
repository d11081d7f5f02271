from sqlalchemy import Column, Integer, Float, String, Text, DateTime, ForeignKey, JSON, Boolean
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime
import uuid

Base = declarative_base()

DOCUMENT_CATEGORIES = ["general", "work", "personal", "education", "legal", "medical", "financial", "other"]
UPLOAD_STATUSES = ["pending", "processing", "completed", "failed"]
USER_ROLES = ["user", "admin", "super_admin"]


def new_id() -> str:
    return str(uuid.uuid4())


def _serialize(value):
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class SerializableMixin:
    """Column-level dict projection used by every API response."""

    hidden_columns = ()

    def to_dict(self) -> dict:
        return {
            column.name: _serialize(getattr(self, column.name))
            for column in self.__table__.columns
            if column.name not in self.hidden_columns
        }


class User(SerializableMixin, Base):
    __tablename__ = "users"
    hidden_columns = ("hashed_password",)

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String, unique=True, index=True, nullable=False)
    # Null for accounts created through Google sign-in
    hashed_password = Column(String, nullable=True)
    username = Column(String, nullable=True)
    full_name = Column(String, nullable=True)
    avatar_url = Column(String, nullable=True)
    role = Column(String, default="user", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    email_confirmed_at = Column(DateTime, nullable=True)
    last_sign_in_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Document(SerializableMixin, Base):
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), index=True, nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String, default="general", nullable=False)
    file_name = Column(String, nullable=False)
    file_path = Column(String, nullable=False)
    file_url = Column(String, nullable=True)
    file_size = Column(Integer, default=0, nullable=False)
    file_type = Column(String, nullable=False)
    file_extension = Column(String, nullable=True)
    upload_status = Column(String, default="pending", nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    queries = relationship("DocumentQuery", back_populates="document")
    clauses = relationship("DocumentClause", back_populates="document")
    feedback = relationship("DocumentFeedback", back_populates="document")


class DocumentQuery(SerializableMixin, Base):
    __tablename__ = "document_queries"

    id = Column(String(36), primary_key=True, default=new_id)
    document_id = Column(String(36), ForeignKey("documents.id"), index=True, nullable=False)
    user_id = Column(String(36), index=True, nullable=False)
    question = Column(Text, nullable=False)
    answer = Column(Text, nullable=True)
    confidence = Column(Float, nullable=True)
    context = Column(String, default="general")
    language = Column(String, default="en")
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    document = relationship("Document", back_populates="queries")
    feedback = relationship("QueryFeedback", back_populates="query")


class DocumentClause(SerializableMixin, Base):
    __tablename__ = "document_clauses"

    id = Column(String(36), primary_key=True, default=new_id)
    document_id = Column(String(36), ForeignKey("documents.id"), index=True, nullable=False)
    user_id = Column(String(36), index=True, nullable=False)
    clause_types = Column(JSON, nullable=False)
    language = Column(String, default="en")
    extracted_data = Column(JSON, nullable=True)
    extraction_status = Column(String, default="completed")
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    document = relationship("Document", back_populates="clauses")
    feedback = relationship("ClauseFeedback", back_populates="clause")


class QueryFeedback(SerializableMixin, Base):
    __tablename__ = "query_feedback"

    id = Column(String(36), primary_key=True, default=new_id)
    query_id = Column(String(36), ForeignKey("document_queries.id"), index=True, nullable=False)
    user_id = Column(String(36), index=True, nullable=False)
    rating = Column(Integer, nullable=False)
    feedback = Column(Text, nullable=True)
    feedback_type = Column(String, default="general")
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    query = relationship("DocumentQuery", back_populates="feedback")


class ClauseFeedback(SerializableMixin, Base):
    __tablename__ = "clause_feedback"

    id = Column(String(36), primary_key=True, default=new_id)
    clause_id = Column(String(36), ForeignKey("document_clauses.id"), index=True, nullable=False)
    user_id = Column(String(36), index=True, nullable=False)
    rating = Column(Integer, nullable=False)
    feedback = Column(Text, nullable=True)
    accuracy = Column(Integer, nullable=True)
    relevance = Column(Integer, nullable=True)
    completeness = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    clause = relationship("DocumentClause", back_populates="feedback")


class DocumentFeedback(SerializableMixin, Base):
    __tablename__ = "document_feedback"

    id = Column(String(36), primary_key=True, default=new_id)
    document_id = Column(String(36), ForeignKey("documents.id"), index=True, nullable=False)
    user_id = Column(String(36), index=True, nullable=False)
    rating = Column(Integer, nullable=False)
    feedback = Column(Text, nullable=True)
    aspect = Column(String, default="overall")
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    document = relationship("Document", back_populates="feedback")


class AdminLog(SerializableMixin, Base):
    __tablename__ = "admin_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    admin_id = Column(String(36), index=True, nullable=False)
    action = Column(String, nullable=False)
    endpoint = Column(String, nullable=False)
    method = Column(String, nullable=False)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    request_body = Column(JSON, nullable=True)
    response_status = Column(Integer, nullable=True)
    response_success = Column(Boolean, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
