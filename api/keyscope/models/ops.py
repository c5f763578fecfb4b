"""Operational tracking models: keyword file import jobs."""
from keyscope.models.base import *


class KeywordImportJob(Base):
    """Tracks upload/import jobs for keyword CSV/XLSX files."""
    __tablename__ = "keyword_import_jobs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    filename = Column(String(500), nullable=False)
    upload_period = Column(String(20), nullable=False)
    keyword_type = Column(String(10), nullable=False, default="regular")
    status = Column(String(20), default="pending")  # pending, processing, completed, failed
    total_rows = Column(Integer, default=0)
    rows_imported = Column(Integer, default=0)
    rows_error = Column(Integer, default=0)
    rows_deactivated = Column(Integer, default=0)
    failed_chunks = Column(Integer, default=0)
    error_message = Column(Text, nullable=True)
    error_details = Column(JSONType, nullable=True)  # first MAX_ERROR_DETAILS row errors
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)

    __table_args__ = (
        Index("idx_import_job_status", "status"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_import_job_status"
        ),
        CheckConstraint(
            "keyword_type IN ('regular', 'hpk', 'rk')",
            name="ck_import_job_type"
        ),
    )
