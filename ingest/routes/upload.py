import traceback

from flask import Blueprint, request, jsonify

from ingest import db
from ingest.errors import UploadError
from ingest.services import UploadSessionService, TransferAuthorization, CompletionVerifier
from ingest.tasks.tasks import dispatch_pipeline

upload_bp = Blueprint('upload', __name__)


@upload_bp.route('/init', methods=['POST'])
def init_upload():
    """Create (or resume) an upload session and hand out a signed PUT URL"""
    try:
        data = request.get_json(silent=True)
        if not data:
            return jsonify({'error': 'No data provided'}), 400

        sessions = UploadSessionService()
        upload = sessions.create(
            attempt_id=data.get('attemptId'),
            filename=data.get('filename'),
            mime_type=data.get('mimeType'),
            declared_size_bytes=data.get('sizeBytes'),
            owner_session_id=data.get('ownerSessionId'),
        )

        grant = TransferAuthorization().authorize_upload(upload.storage_key, upload.mime_type)

        return jsonify({
            'uploadId': upload.upload_id,
            'storageKey': upload.storage_key,
            'putUrl': grant['url'],
            'headers': grant['headers'],
            'expiresInSec': grant['expires_in'],
        }), 200

    except UploadError as e:
        db.session.rollback()
        return jsonify({'error': e.message}), e.status_code
    except Exception as e:
        db.session.rollback()
        print(f"[Upload] Init error: {e}")
        traceback.print_exc()
        return jsonify({'error': 'Failed to initialize upload'}), 500


@upload_bp.route('/complete', methods=['POST'])
def complete_upload():
    """Verify the client's upload and start background processing"""
    try:
        data = request.get_json(silent=True) or {}
        upload_id = data.get('uploadId')
        if not upload_id:
            return jsonify({'error': 'Missing required field: uploadId'}), 400

        upload, newly_stored = CompletionVerifier().verify(upload_id)
        if not newly_stored:
            return jsonify({'status': upload.status.name}), 200

        dispatch_pipeline(upload_id)
        return jsonify({'status': upload.status.name}), 202

    except UploadError as e:
        db.session.rollback()
        return jsonify({'error': e.message}), e.status_code
    except Exception as e:
        db.session.rollback()
        print(f"[Upload] Complete error: {e}")
        traceback.print_exc()
        return jsonify({'error': 'Failed to complete upload'}), 500


@upload_bp.route('/status/<upload_id>', methods=['GET'])
def get_upload_status(upload_id):
    """Report lifecycle state, progress and the outcome of the pipeline"""
    try:
        upload = UploadSessionService().get(upload_id)
        return jsonify(upload.to_status_dict()), 200
    except UploadError as e:
        return jsonify({'error': e.message}), e.status_code
    except Exception as e:
        print(f"[Upload] Status error: {e}")
        return jsonify({'error': 'Failed to get upload status'}), 500
