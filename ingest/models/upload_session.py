from datetime import datetime
from enum import Enum

from ingest import db

class UploadStatus(Enum):
    UPLOADING = 'uploading'
    STORED = 'stored'
    COMPRESSING = 'compressing'
    COMPRESSED = 'compressed'
    TRANSFERRING = 'transferring'
    ACTIVE = 'active'
    FAILED = 'failed'


TERMINAL_STATUSES = frozenset({UploadStatus.ACTIVE, UploadStatus.FAILED})

# Statuses a background pipeline owns; a session parked here is in flight
PIPELINE_STATUSES = (
    UploadStatus.STORED,
    UploadStatus.COMPRESSING,
    UploadStatus.COMPRESSED,
    UploadStatus.TRANSFERRING,
)

ALLOWED_TRANSITIONS = {
    UploadStatus.UPLOADING: {UploadStatus.STORED, UploadStatus.FAILED},
    UploadStatus.STORED: {UploadStatus.COMPRESSING, UploadStatus.TRANSFERRING, UploadStatus.FAILED},
    UploadStatus.COMPRESSING: {UploadStatus.COMPRESSED, UploadStatus.FAILED},
    UploadStatus.COMPRESSED: {UploadStatus.TRANSFERRING, UploadStatus.FAILED},
    UploadStatus.TRANSFERRING: {UploadStatus.ACTIVE, UploadStatus.FAILED},
    UploadStatus.ACTIVE: set(),
    UploadStatus.FAILED: set(),
}


class UploadSession(db.Model):
    __tablename__ = 'upload_sessions'

    id = db.Column(db.Integer, primary_key=True)
    upload_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    attempt_id = db.Column(db.String(128), unique=True, nullable=False, index=True)
    owner_session_id = db.Column(db.Integer, nullable=True, index=True)
    filename = db.Column(db.String(500), nullable=False)
    mime_type = db.Column(db.String(100), nullable=False)
    declared_size_bytes = db.Column(db.BigInteger, nullable=False)
    storage_key = db.Column(db.String(1000), nullable=False)
    proxy_storage_key = db.Column(db.String(1000), nullable=True)
    proxy_size_bytes = db.Column(db.BigInteger, nullable=True)
    status = db.Column(db.Enum(UploadStatus), default=UploadStatus.UPLOADING, nullable=False, index=True)
    progress = db.Column(db.JSON, nullable=True)
    remote_file_name = db.Column(db.String(500), nullable=True)
    remote_file_handle = db.Column(db.String(1000), nullable=True)
    last_error = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __init__(self, upload_id, attempt_id, filename, mime_type, declared_size_bytes,
                 storage_key, owner_session_id=None):
        self.upload_id = upload_id
        self.attempt_id = attempt_id
        self.filename = filename
        self.mime_type = mime_type
        self.declared_size_bytes = declared_size_bytes
        self.storage_key = storage_key
        self.owner_session_id = owner_session_id
        self.status = UploadStatus.UPLOADING
        self.progress = {'stage': 'uploading', 'percent': 0, 'message': None}

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    @property
    def percent(self):
        return (self.progress or {}).get('percent', 0)

    def can_transition_to(self, status):
        """Check whether status is a legal successor of the current status"""
        return status in ALLOWED_TRANSITIONS[self.status]

    def to_status_dict(self):
        """Shape returned by the status endpoint"""
        data = {
            'status': self.status.name,
            'progress': self.progress,
            'mimeType': self.mime_type,
            'filename': self.filename,
        }
        if self.remote_file_handle:
            data['remoteFileHandle'] = self.remote_file_handle
        if self.status == UploadStatus.FAILED and self.last_error:
            data['lastError'] = self.last_error
        return data

    def __repr__(self):
        return f'<UploadSession {self.upload_id} {self.status.name}>'
