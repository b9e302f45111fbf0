import re
import uuid
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ingest import db
from ingest.errors import (
    ValidationError, AttemptConsumedError, UploadNotFoundError, InvalidTransitionError
)
from ingest.models import UploadSession, UploadStatus

# Each stage owns a slice of the 0-100 progress bar
STAGE_PROGRESS = {
    'uploading': (0, 40),
    'stored': (40, 41),
    'downloading': (41, 45),
    'compressing': (45, 75),
    'compressed': (75, 80),
    'transferring': (80, 95),
    'processing': (99, 99),
    'ready': (100, 100),
}

# Columns the pipeline may set alongside a transition
PIPELINE_FIELDS = {'proxy_storage_key', 'proxy_size_bytes', 'remote_file_name', 'remote_file_handle'}

_UNSAFE_FILENAME = re.compile(r'[^a-zA-Z0-9._-]')


def stage_percent(stage, fraction=0.0):
    """Map a fraction of a stage onto the overall 0-100 scale"""
    if stage not in STAGE_PROGRESS:
        raise ValueError(f"Unknown progress stage: {stage}")
    start, end = STAGE_PROGRESS[stage]
    fraction = min(max(float(fraction), 0.0), 1.0)
    return start + int((end - start) * fraction)


def build_storage_key(upload_id, filename, owner_session_id=None):
    safe_filename = _UNSAFE_FILENAME.sub('_', filename)
    if owner_session_id:
        return f"sessions/{owner_session_id}/{upload_id}/{safe_filename}"
    return f"uploads/{upload_id}/{safe_filename}"


def new_upload_id():
    return f"upl_{uuid.uuid4().hex}"


class UploadSessionService:
    """Sole writer of upload session status, progress, remote handle and errors"""

    def __init__(self, max_upload_bytes=None, allowed_mimetypes=None):
        self.max_upload_bytes = max_upload_bytes or current_app.config['MAX_UPLOAD_BYTES']
        self.allowed_mimetypes = allowed_mimetypes or current_app.config['ALLOWED_VIDEO_MIMETYPES']

    def get(self, upload_id):
        session = UploadSession.query.filter_by(upload_id=upload_id).first()
        if not session:
            raise UploadNotFoundError('Upload not found')
        return session

    def _get_for_update(self, upload_id):
        session = UploadSession.query.filter_by(upload_id=upload_id).with_for_update().first()
        if not session:
            raise UploadNotFoundError('Upload not found')
        return session

    def validate(self, attempt_id, filename, mime_type, declared_size_bytes, owner_session_id=None):
        if not filename or not mime_type or not attempt_id or declared_size_bytes is None:
            raise ValidationError('Missing required fields: filename, mimeType, sizeBytes, attemptId')

        if isinstance(declared_size_bytes, bool) or not isinstance(declared_size_bytes, int):
            raise ValidationError('sizeBytes must be an integer')

        if declared_size_bytes <= 0:
            raise ValidationError('sizeBytes must be greater than zero')

        if mime_type not in self.allowed_mimetypes:
            raise ValidationError('Invalid file type. Only video files are allowed.')

        if declared_size_bytes > self.max_upload_bytes:
            raise ValidationError(
                f"File too large. Maximum size is {self.max_upload_bytes // (1024 * 1024)}MB"
            )

        if owner_session_id is not None and (isinstance(owner_session_id, bool) or not isinstance(owner_session_id, int)):
            raise ValidationError('ownerSessionId must be an integer')

    def create(self, attempt_id, filename, mime_type, declared_size_bytes, owner_session_id=None):
        """Create a session, or hand back the one already bound to attempt_id"""
        self.validate(attempt_id, filename, mime_type, declared_size_bytes, owner_session_id)

        existing = UploadSession.query.filter_by(attempt_id=attempt_id).first()
        if existing:
            return self._reuse(existing)

        upload_id = new_upload_id()
        session = UploadSession(
            upload_id=upload_id,
            attempt_id=attempt_id,
            filename=filename,
            mime_type=mime_type,
            declared_size_bytes=declared_size_bytes,
            storage_key=build_storage_key(upload_id, filename, owner_session_id),
            owner_session_id=owner_session_id,
        )
        db.session.add(session)
        try:
            db.session.commit()
        except IntegrityError:
            # Lost a race against a concurrent init carrying the same attempt id
            db.session.rollback()
            existing = UploadSession.query.filter_by(attempt_id=attempt_id).first()
            if not existing:
                raise
            return self._reuse(existing)

        print(f"[Upload] Initialized upload {upload_id} for {filename} ({declared_size_bytes} bytes)")
        return session

    def _reuse(self, session):
        if session.status != UploadStatus.UPLOADING:
            raise AttemptConsumedError(
                f"Attempt already used by upload {session.upload_id} ({session.status.name}). "
                "Start a new attempt to upload again."
            )
        print(f"[Upload] Reusing upload {session.upload_id} for attempt {session.attempt_id}")
        return session

    def _apply_progress(self, session, stage, fraction, message):
        percent = max(session.percent, stage_percent(stage, fraction))
        session.progress = {'stage': stage, 'percent': percent, 'message': message}

    def advance(self, upload_id, new_status, stage=None, fraction=0.0, message=None, **fields):
        """Move a session along the state graph; the only place status changes"""
        unknown = set(fields) - PIPELINE_FIELDS
        if unknown:
            raise ValueError(f"Cannot set {', '.join(sorted(unknown))} through advance")

        session = self._get_for_update(upload_id)
        if not session.can_transition_to(new_status):
            db.session.rollback()
            raise InvalidTransitionError(
                f"Cannot move upload {upload_id} from {session.status.name} to {new_status.name}"
            )

        session.status = new_status
        for name, value in fields.items():
            setattr(session, name, value)
        if stage:
            self._apply_progress(session, stage, fraction, message)
        db.session.commit()
        return session

    def report_progress(self, upload_id, stage, fraction=0.0, message=None):
        session = self._get_for_update(upload_id)
        if session.is_terminal:
            db.session.rollback()
            raise InvalidTransitionError(
                f"Upload {upload_id} is already {session.status.name}; progress is frozen"
            )
        self._apply_progress(session, stage, fraction, message)
        # Identical progress payloads are skipped on flush; the timestamp is the heartbeat
        session.updated_at = datetime.utcnow()
        db.session.commit()
        return session

    def record_remote_file(self, upload_id, remote_file_name):
        session = self._get_for_update(upload_id)
        if session.status != UploadStatus.TRANSFERRING:
            db.session.rollback()
            raise InvalidTransitionError(
                f"Upload {upload_id} is {session.status.name}, not TRANSFERRING"
            )
        session.remote_file_name = remote_file_name
        db.session.commit()
        return session

    def activate(self, upload_id, remote_file_handle):
        return self.advance(
            upload_id,
            UploadStatus.ACTIVE,
            stage='ready',
            fraction=1.0,
            message='Ready for analysis',
            remote_file_handle=remote_file_handle,
        )

    def fail(self, upload_id, reason):
        """Move a session to FAILED; a session that already failed is left alone"""
        session = self._get_for_update(upload_id)
        if session.status == UploadStatus.FAILED:
            db.session.rollback()
            return session
        if not session.can_transition_to(UploadStatus.FAILED):
            db.session.rollback()
            raise InvalidTransitionError(
                f"Cannot fail upload {upload_id}: it is already {session.status.name}"
            )

        session.status = UploadStatus.FAILED
        session.last_error = reason
        session.progress = {'stage': 'failed', 'percent': session.percent, 'message': reason}
        db.session.commit()
        print(f"❌ [Upload] {upload_id} failed: {reason}")
        return session
