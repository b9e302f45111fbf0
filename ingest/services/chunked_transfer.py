import os
import random
import time

import requests
from flask import current_app

from ingest.errors import TransferError, RetryableTransferError

CHUNK_SIZE = 16 * 1024 * 1024
READ_SIZE = 1024 * 1024


def iter_chunks(stream, total_size, chunk_size=CHUNK_SIZE, read_size=READ_SIZE):
    """Yield (offset, chunk, is_final) from a stream in fixed-size chunks.

    Reads never overshoot the chunk boundary, so at most chunk_size bytes are
    ever buffered. The chunk that reaches total_size, or the leftover when the
    stream runs dry, is flagged final.
    """
    buffer = bytearray()
    offset = 0
    exhausted = False

    while not exhausted:
        data = stream.read(min(read_size, chunk_size - len(buffer)))
        if data:
            buffer.extend(data)
        else:
            exhausted = True

        if len(buffer) >= chunk_size or (exhausted and buffer):
            chunk = bytes(buffer)
            buffer.clear()
            is_final = exhausted or offset + len(chunk) >= total_size
            yield offset, chunk, is_final
            offset += len(chunk)
            if is_final:
                return


class ChunkedUploader:
    """Streams a local file through the start / upload / finalize handshake"""

    def __init__(self, backend, chunk_size=None, read_size=None, retry_budget=None,
                 base_delay=None, max_delay=None, sleep=time.sleep):
        cfg = current_app.config
        self.backend = backend
        self.chunk_size = chunk_size or cfg['TRANSFER_CHUNK_SIZE']
        self.read_size = read_size or cfg['TRANSFER_READ_SIZE']
        self.retry_budget = cfg['TRANSFER_RETRY_BUDGET'] if retry_budget is None else retry_budget
        self.base_delay = cfg['TRANSFER_RETRY_BASE_DELAY'] if base_delay is None else base_delay
        self.max_delay = cfg['TRANSFER_RETRY_MAX_DELAY'] if max_delay is None else max_delay
        self.sleep = sleep
        self.retries_left = self.retry_budget

    def _backoff(self, attempt):
        delay = self.base_delay * (2 ** (attempt - 1)) + random.uniform(0, self.base_delay)
        return min(delay, self.max_delay)

    def _put_with_retry(self, upload_uri, chunk, offset, is_final):
        attempt = 0
        while True:
            try:
                return self.backend.put_chunk(upload_uri, chunk, offset, is_final)
            except (RetryableTransferError, requests.RequestException) as e:
                if self.retries_left <= 0:
                    raise TransferError(
                        f"Chunk upload failed at offset {offset} after {self.retry_budget} retries: {e}"
                    ) from e
                self.retries_left -= 1
                attempt += 1
                wait_time = self._backoff(attempt)
                print(f"⚠️ [Transfer] Chunk error at offset {offset / (1024 * 1024):.1f} MB "
                      f"({self.retries_left} retries left): {e}")
                print(f"⏳ [Transfer] Waiting {wait_time:.1f}s before retry...")
                self.sleep(wait_time)

    def upload(self, file_path, content_type, display_name, on_progress=None):
        """Send file_path and return the backend's file resource from finalize"""
        total_size = os.path.getsize(file_path)
        file_size_mb = total_size / (1024 * 1024)
        self.retries_left = self.retry_budget

        upload_uri = self.backend.start_upload(total_size, content_type, display_name)
        print(f"📁 [Transfer] Starting upload: {display_name} ({file_size_mb:.2f} MB, "
              f"{self.chunk_size / (1024 * 1024):.0f} MB chunks)")

        start_time = time.time()
        offset = 0
        with open(file_path, 'rb') as f:
            for chunk_offset, chunk, is_final in iter_chunks(f, total_size, self.chunk_size, self.read_size):
                if chunk_offset != offset:
                    raise TransferError(f"Chunk offset {chunk_offset} does not match sent bytes {offset}")
                if is_final and offset + len(chunk) != total_size:
                    raise TransferError(
                        f"Finalize at {offset + len(chunk)} bytes but file is {total_size} bytes"
                    )

                result = self._put_with_retry(upload_uri, chunk, offset, is_final)
                offset += len(chunk)

                print(f"✓ [Transfer] Progress: {offset / (1024 * 1024):.1f}/{file_size_mb:.1f} MB "
                      f"({offset / total_size * 100:.1f}%)")
                if on_progress:
                    on_progress(offset, total_size)

                if is_final:
                    if not result or not result.get('name'):
                        raise TransferError('No file handle in finalize response')
                    print(f"✅ [Transfer] Upload complete in {time.time() - start_time:.0f}s")
                    return result

        raise TransferError(f"Transfer stopped at {offset} of {total_size} bytes without finalizing")
