import os

import pytest

from ingest import create_app, db
from ingest.models import UploadStatus
from ingest.services import UploadSessionService

MB = 1024 * 1024


class FakeStorage:
    """In-memory stand-in for the object storage service"""

    def __init__(self):
        self.objects = {}
        self.content_types = {}
        self.downloads = []
        self.sign_error = None

    def sign(self, path, method, ttl, content_type=None):
        if self.sign_error:
            raise self.sign_error
        return f"https://storage.test/{path}?method={method}&ttl={ttl}&ct={content_type}"

    def exists(self, path):
        return path in self.objects

    def size(self, path):
        return len(self.objects[path])

    def download(self, path, destination, on_progress=None):
        self.downloads.append((path, destination))
        with open(destination, 'wb') as f:
            f.write(self.objects[path])
        if on_progress:
            on_progress(len(self.objects[path]), len(self.objects[path]))
        return destination

    def upload(self, source, path, content_type=None):
        with open(source, 'rb') as f:
            self.objects[path] = f.read()
        self.content_types[path] = content_type
        return path


class FakeBackend:
    """Records the resumable handshake and replays scripted file states"""

    def __init__(self, states=None):
        self.started = []
        self.chunks = []
        self.states = list(states or [{'state': 'ACTIVE', 'uri': 'https://files.test/files/abc'}])
        self.status_checks = 0

    def start_upload(self, size_bytes, content_type, display_name):
        self.started.append({'size': size_bytes, 'content_type': content_type, 'display_name': display_name})
        return 'https://upload.test/session-1'

    def put_chunk(self, upload_uri, data, offset, is_final):
        self.chunks.append({'offset': offset, 'length': len(data), 'final': is_final})
        if is_final:
            return {'name': 'files/abc', 'uri': 'https://files.test/files/abc'}
        return None

    def get_file_status(self, file_name):
        self.status_checks += 1
        if len(self.states) > 1:
            return self.states.pop(0)
        return self.states[0]


@pytest.fixture
def app(tmp_path):
    app = create_app('testing')
    app.config['UPLOAD_TMP_DIR'] = str(tmp_path / 'scratch')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def sessions(app):
    return UploadSessionService()


@pytest.fixture
def storage(monkeypatch):
    fake = FakeStorage()
    monkeypatch.setattr('ingest.services.authorization.ObjectStorageService', lambda: fake)
    monkeypatch.setattr('ingest.services.verifier.ObjectStorageService', lambda: fake)
    return fake


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def make_session(sessions):
    counter = {'n': 0}

    def _make(status=UploadStatus.UPLOADING, size=4 * MB, mime_type='video/mp4', filename='clip.mp4'):
        counter['n'] += 1
        upload = sessions.create(
            attempt_id=f"attempt-{counter['n']}",
            filename=filename,
            mime_type=mime_type,
            declared_size_bytes=size,
        )
        path = {
            UploadStatus.UPLOADING: [],
            UploadStatus.STORED: [UploadStatus.STORED],
            UploadStatus.COMPRESSING: [UploadStatus.STORED, UploadStatus.COMPRESSING],
            UploadStatus.TRANSFERRING: [UploadStatus.STORED, UploadStatus.TRANSFERRING],
            UploadStatus.ACTIVE: [UploadStatus.STORED, UploadStatus.TRANSFERRING, UploadStatus.ACTIVE],
        }[status]
        for step in path:
            sessions.advance(upload.upload_id, step)
        return sessions.get(upload.upload_id)

    return _make


def scratch_entries(app):
    tmp_root = app.config['UPLOAD_TMP_DIR']
    if not os.path.exists(tmp_root):
        return []
    return os.listdir(tmp_root)
