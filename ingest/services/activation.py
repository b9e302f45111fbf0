import time

import requests
from flask import current_app

from ingest.errors import TransferError, ActivationTimeoutError


def wait_for_active(backend, file_name, interval=None, max_attempts=None, on_pending=None, sleep=time.sleep):
    """Poll the backend until the uploaded file is usable.

    ACTIVE returns the file info, FAILED raises at once. Anything else,
    including an errored status call, counts as still processing.
    """
    cfg = current_app.config
    interval = cfg['ACTIVATION_POLL_INTERVAL'] if interval is None else interval
    max_attempts = max_attempts or cfg['ACTIVATION_MAX_ATTEMPTS']

    for attempt in range(1, max_attempts + 1):
        try:
            info = backend.get_file_status(file_name)
        except (TransferError, requests.RequestException) as e:
            print(f"⚠️ [Activation] Status check {attempt}/{max_attempts} for {file_name} failed: {e}")
            info = {}

        state = info.get('state')
        if state == 'ACTIVE':
            print(f"✅ [Activation] {file_name} is ACTIVE with URI: {info.get('uri')}")
            return info
        if state == 'FAILED':
            raise TransferError('Remote file processing failed')

        if on_pending:
            on_pending(attempt)
        if attempt < max_attempts:
            sleep(interval)

    raise ActivationTimeoutError(
        f"Timeout waiting for {file_name} to become active after {max_attempts} checks"
    )
