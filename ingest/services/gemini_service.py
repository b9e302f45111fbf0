import requests
from flask import current_app

from ingest.errors import TransferError, RetryableTransferError

RETRYABLE_STATUS_CODES = {408, 429}


def _rejection(action, response):
    message = f"{action} failed ({response.status_code}): {response.text[:500]}"
    if response.status_code in RETRYABLE_STATUS_CODES or response.status_code >= 500:
        return RetryableTransferError(message)
    return TransferError(message)


class GeminiFileService:
    """Client for the inference backend's resumable file-ingestion API"""

    def __init__(self, api_key=None, base_url=None, session=None, timeout=300):
        self.api_key = api_key or current_app.config['GEMINI_API_KEY']
        if not self.api_key:
            raise TransferError('GEMINI_API_KEY not configured')
        self.base_url = (base_url or current_app.config['GEMINI_BASE_URL']).rstrip('/')
        self.timeout = timeout

        if session is None:
            session = requests.Session()
            adapter = requests.adapters.HTTPAdapter(max_retries=3)
            session.mount('https://', adapter)
            session.mount('http://', adapter)
        self.session = session

    def start_upload(self, size_bytes, content_type, display_name):
        """Open a resumable upload and return the URI chunks are sent to"""
        response = self.session.post(
            f"{self.base_url}/upload/v1beta/files",
            headers={
                'x-goog-api-key': self.api_key,
                'Content-Type': 'application/json',
                'X-Goog-Upload-Protocol': 'resumable',
                'X-Goog-Upload-Command': 'start',
                'X-Goog-Upload-Header-Content-Length': str(size_bytes),
                'X-Goog-Upload-Header-Content-Type': content_type,
            },
            json={'file': {'display_name': display_name}},
            timeout=self.timeout,
        )
        if not response.ok:
            raise TransferError(f"Failed to start upload ({response.status_code}): {response.text[:500]}")

        upload_uri = response.headers.get('X-Goog-Upload-URL')
        if not upload_uri:
            raise TransferError('No upload URI returned from the file API')
        return upload_uri

    def put_chunk(self, upload_uri, data, offset, is_final):
        """Send one contiguous byte range; the finalize call returns the file resource"""
        response = self.session.put(
            upload_uri,
            headers={
                'Content-Length': str(len(data)),
                'X-Goog-Upload-Offset': str(offset),
                'X-Goog-Upload-Command': 'upload, finalize' if is_final else 'upload',
            },
            data=data,
            timeout=self.timeout,
        )
        if not response.ok:
            raise _rejection(f"Chunk upload at offset {offset}", response)

        if not is_final:
            return None
        try:
            return response.json().get('file')
        except ValueError as e:
            raise TransferError(f"Unreadable finalize response: {e}") from e

    def get_file_status(self, file_name):
        response = self.session.get(
            f"{self.base_url}/v1beta/{file_name}",
            headers={'x-goog-api-key': self.api_key},
            timeout=30,
        )
        if not response.ok:
            raise _rejection(f"Status check for {file_name}", response)
        data = response.json()
        return {'state': data.get('state'), 'uri': data.get('uri'), 'name': data.get('name', file_name)}
