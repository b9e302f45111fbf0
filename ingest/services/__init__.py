# Services package
from .scheduler import init_scheduler, fail_orphaned_uploads
from .upload_session_service import UploadSessionService, STAGE_PROGRESS, stage_percent
from .storage_service import ObjectStorageService
from .authorization import TransferAuthorization
from .verifier import CompletionVerifier
from .gemini_service import GeminiFileService
from .chunked_transfer import ChunkedUploader, iter_chunks
from .activation import wait_for_active
