from flask import current_app

from ingest.errors import NotFoundError, SizeMismatchError
from ingest.models import UploadStatus
from ingest.services.storage_service import ObjectStorageService
from ingest.services.upload_session_service import UploadSessionService


class CompletionVerifier:
    """Confirms a client-reported upload actually landed before the pipeline starts"""

    def __init__(self, sessions=None, storage=None, tolerance=None):
        self.sessions = sessions or UploadSessionService()
        self.storage = storage or ObjectStorageService()
        self.tolerance = current_app.config['UPLOAD_SIZE_TOLERANCE_BYTES'] if tolerance is None else tolerance

    def verify(self, upload_id):
        """Check existence and size, then move the session to STORED.

        Returns (session, newly_stored). A session that already left UPLOADING is
        returned untouched so repeated completion calls stay harmless.
        """
        session = self.sessions.get(upload_id)
        if session.status != UploadStatus.UPLOADING:
            return session, False

        if not self.storage.exists(session.storage_key):
            raise NotFoundError('File not found in storage. Upload may have failed.')

        actual_size = self.storage.size(session.storage_key)
        if abs(actual_size - session.declared_size_bytes) > self.tolerance:
            message = (
                f"File size mismatch. Expected {session.declared_size_bytes} bytes, "
                f"received {actual_size} bytes. Please try uploading again."
            )
            print(f"[Upload] Size mismatch for {upload_id}: expected {session.declared_size_bytes}, got {actual_size}")
            self.sessions.fail(upload_id, message)
            raise SizeMismatchError(message)

        session = self.sessions.advance(
            upload_id, UploadStatus.STORED, stage='stored', fraction=0.0, message='Upload complete'
        )
        print(f"[Upload] Completed upload {upload_id}, starting compression...")
        return session, True
