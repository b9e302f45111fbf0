from flask import current_app

from ingest.services.storage_service import ObjectStorageService


class TransferAuthorization:
    """Issues short-lived, single-object, single-method storage URLs.

    Nothing is persisted here; a URL is a capability and nothing more.
    Upload grants bind the Content-Type so the client cannot slip a different
    payload type past the declared one.
    """

    def __init__(self, storage=None, ttl=None):
        self.storage = storage or ObjectStorageService()
        self.ttl = ttl or current_app.config['UPLOAD_URL_TTL_SECONDS']

    def authorize_upload(self, storage_key, mime_type):
        url = self.storage.sign(storage_key, 'PUT', self.ttl, content_type=mime_type)
        return {
            'url': url,
            'headers': {'Content-Type': mime_type},
            'expires_in': self.ttl,
        }

    def authorize_read(self, storage_key):
        url = self.storage.sign(storage_key, 'GET', self.ttl)
        return {
            'url': url,
            'headers': {},
            'expires_in': self.ttl,
        }
