# Models package
from .upload_session import UploadSession, UploadStatus, ALLOWED_TRANSITIONS, PIPELINE_STATUSES, TERMINAL_STATUSES
