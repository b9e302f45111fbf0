import os
import posixpath
import shutil
import tempfile
import time
import traceback

from flask import current_app

from ingest import db, celery_app
from ingest.errors import UploadError, UnknownFatal
from ingest.models import UploadStatus
from ingest.services.activation import wait_for_active
from ingest.services.chunked_transfer import ChunkedUploader
from ingest.services.gemini_service import GeminiFileService
from ingest.services.storage_service import ObjectStorageService
from ingest.services.upload_session_service import UploadSessionService
from ingest.utils.compression import decide, configured_thresholds
from ingest.utils.video import probe_video, compress_video


def proxy_key_for(storage_key):
    """uploads/upl_x/clip.mov -> uploads/upl_x/clip_proxy.mp4"""
    root, _ = posixpath.splitext(storage_key)
    return f"{root}_proxy.mp4"


class UploadPipeline:
    """Download, compress if needed, transfer and wait for activation of one upload"""

    def __init__(self, sessions=None, storage=None, backend=None, thresholds=None,
                 probe=probe_video, compress=compress_video, sleep=time.sleep, clock=time.monotonic):
        self.sessions = sessions or UploadSessionService()
        self.storage = storage
        self.backend = backend
        self.thresholds = thresholds
        self.probe = probe
        self.compress = compress
        self.sleep = sleep
        self.clock = clock

    def run(self, upload_id):
        """Drive one session to ACTIVE or FAILED; scratch files never outlive the call"""
        session = self.sessions.get(upload_id)
        if session.status != UploadStatus.STORED:
            # Redelivered or requeued task; another run already owns this session
            print(f"[Pipeline] Skipping {upload_id}: already {session.status.name}")
            return session

        work_dir = None
        try:
            self.storage = self.storage or ObjectStorageService()
            self.thresholds = self.thresholds or configured_thresholds()
            tmp_root = current_app.config['UPLOAD_TMP_DIR']
            os.makedirs(tmp_root, exist_ok=True)
            work_dir = tempfile.mkdtemp(prefix=f"{upload_id}_", dir=tmp_root)

            self._process(session, work_dir)
        except UploadError as e:
            db.session.rollback()
            print(f"❌ [Pipeline] Processing error for {upload_id}: {e.message}")
            self.sessions.fail(upload_id, e.message)
        except Exception as e:
            traceback.print_exc()
            db.session.rollback()
            self.sessions.fail(upload_id, UnknownFatal(e).message)
        finally:
            if work_dir:
                shutil.rmtree(work_dir, ignore_errors=True)

        return self.sessions.get(upload_id)

    def _stage_reporter(self, upload_id, stage, describe):
        """Report progress when the integer percent rises or the heartbeat interval has passed"""
        heartbeat = current_app.config['PROGRESS_HEARTBEAT_SECONDS']
        last = {'percent': 0, 'written_at': self.clock()}

        def report(fraction):
            percent = int(fraction * 100)
            now = self.clock()
            if percent > last['percent'] or now - last['written_at'] >= heartbeat:
                last['percent'] = max(percent, last['percent'])
                last['written_at'] = now
                self.sessions.report_progress(upload_id, stage, fraction, describe(percent))

        return report

    def _process(self, session, work_dir):
        upload_id = session.upload_id
        backend = self.backend or GeminiFileService()

        _, ext = posixpath.splitext(session.storage_key)
        source_path = os.path.join(work_dir, f"source{ext}")

        self.sessions.report_progress(upload_id, 'downloading', 0.0, 'Downloading for compression...')
        print(f"[Pipeline] Downloading {upload_id} to {source_path}...")
        report = self._stage_reporter(upload_id, 'downloading', lambda percent: f"Downloading: {percent}%")
        self.storage.download(
            session.storage_key, source_path,
            on_progress=lambda done, total: report(done / total if total else 1.0)
        )
        self.sessions.report_progress(upload_id, 'downloading', 1.0, 'Download complete')

        metadata = self.probe(source_path)
        decision = decide(metadata, self.thresholds)

        if decision.should_compress:
            print(f"[Pipeline] Compressing {upload_id}: {'; '.join(decision.reasons)}")
            transfer_path = self._compress(session, source_path, work_dir, metadata)
            content_type = 'video/mp4'
        else:
            print(f"[Pipeline] {upload_id} is within analysis limits, sending original")
            transfer_path = source_path
            content_type = session.mime_type

        self._transfer(session, backend, transfer_path, content_type)

    def _compress(self, session, source_path, work_dir, metadata):
        upload_id = session.upload_id
        self.sessions.advance(
            upload_id, UploadStatus.COMPRESSING,
            stage='compressing', fraction=0.0,
            message=f"Creating analysis proxy ({self.thresholds.max_height}p, {self.thresholds.max_fps:g}fps)..."
        )

        on_progress = self._stage_reporter(upload_id, 'compressing', lambda percent: f"Compressing: {percent}%")
        proxy_path = os.path.join(work_dir, 'proxy.mp4')
        result = self.compress(
            source_path,
            proxy_path,
            target_height=self.thresholds.max_height,
            target_fps=self.thresholds.max_fps,
            duration=metadata.duration,
            on_progress=on_progress,
        )
        print(f"[Pipeline] Compression complete for {upload_id}: "
              f"{result.output_size / 1024 / 1024:.1f}MB ({result.compression_ratio:.1f}x smaller)")

        proxy_key = proxy_key_for(session.storage_key)
        self.storage.upload(result.output_path, proxy_key, content_type='video/mp4')
        self.sessions.advance(
            upload_id, UploadStatus.COMPRESSED,
            stage='compressed', fraction=1.0,
            message='Proxy created and stored',
            proxy_storage_key=proxy_key,
            proxy_size_bytes=result.output_size,
        )
        return result.output_path

    def _transfer(self, session, backend, transfer_path, content_type):
        upload_id = session.upload_id
        self.sessions.advance(
            upload_id, UploadStatus.TRANSFERRING,
            stage='transferring', fraction=0.0, message='Sending to AI reviewer...'
        )

        def on_progress(offset, total_size):
            percent = int(offset / total_size * 100)
            self.sessions.report_progress(
                upload_id, 'transferring', offset / total_size, f"Sending to AI: {percent}%"
            )

        uploader = ChunkedUploader(backend, sleep=self.sleep)
        remote_file = uploader.upload(
            transfer_path,
            content_type,
            f"{session.filename} (analysis proxy)",
            on_progress=on_progress,
        )
        self.sessions.record_remote_file(upload_id, remote_file['name'])

        def on_pending(attempt):
            self.sessions.report_progress(upload_id, 'processing', 1.0, 'AI reviewer is processing the video...')

        info = wait_for_active(backend, remote_file['name'], on_pending=on_pending, sleep=self.sleep)
        self.sessions.activate(upload_id, info.get('uri') or remote_file.get('uri') or remote_file['name'])


@celery_app.task(bind=True, name='ingest.tasks.tasks.process_upload_task')
def process_upload_task(self, upload_id):
    """Background task running the post-upload pipeline for one session"""
    print(f"[Pipeline] Task {self.request.id} picked up {upload_id}")
    session = UploadPipeline().run(upload_id)
    return {
        'upload_id': upload_id,
        'status': session.status.name,
        'remote_file_handle': session.remote_file_handle,
        'error': session.last_error,
    }


def dispatch_pipeline(upload_id, sessions=None):
    """Enqueue the pipeline; a session that cannot be enqueued is failed on the spot"""
    try:
        return process_upload_task.delay(upload_id)
    except Exception as e:
        traceback.print_exc()
        (sessions or UploadSessionService()).fail(
            upload_id, f"Could not start processing: {UnknownFatal(e).message}"
        )
        raise UnknownFatal(e) from e
