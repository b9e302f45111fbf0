import pytest
import requests

from ingest.errors import TransferError, RetryableTransferError
from ingest.services.activation import wait_for_active
from tests.conftest import FakeBackend

PROCESSING = {'state': 'PROCESSING', 'uri': None}
ACTIVE = {'state': 'ACTIVE', 'uri': 'https://files.test/files/abc'}


@pytest.mark.parametrize('k', [0, 1, 30, 59])
def test_becomes_active_after_k_processing_polls(app, k):
    backend = FakeBackend(states=[PROCESSING] * k + [ACTIVE])
    sleeps = []
    pending = []

    info = wait_for_active(backend, 'files/abc', on_pending=pending.append, sleep=sleeps.append)

    assert info['uri'] == 'https://files.test/files/abc'
    assert backend.status_checks == k + 1
    assert pending == list(range(1, k + 1))
    assert sleeps == [5] * k


def test_times_out_after_sixty_processing_polls(app):
    backend = FakeBackend(states=[PROCESSING])
    sleeps = []

    with pytest.raises(TimeoutError):
        wait_for_active(backend, 'files/abc', sleep=sleeps.append)

    assert backend.status_checks == 60
    assert len(sleeps) == 59


def test_remote_failure_stops_polling(app):
    backend = FakeBackend(states=[PROCESSING, {'state': 'FAILED', 'uri': None}, ACTIVE])

    with pytest.raises(TransferError, match='Remote file processing failed'):
        wait_for_active(backend, 'files/abc', sleep=lambda s: None)

    assert backend.status_checks == 2


def test_errored_status_calls_count_as_processing(app):
    backend = FakeBackend(states=[ACTIVE])
    errors = [RetryableTransferError('503'), requests.Timeout('slow')]
    real_status = backend.get_file_status

    def flaky_status(name):
        if errors:
            raise errors.pop(0)
        return real_status(name)

    backend.get_file_status = flaky_status
    pending = []

    info = wait_for_active(backend, 'files/abc', on_pending=pending.append, sleep=lambda s: None)

    assert info['state'] == 'ACTIVE'
    assert pending == [1, 2]


def test_cadence_follows_config(app):
    app.config['ACTIVATION_POLL_INTERVAL'] = 1
    app.config['ACTIVATION_MAX_ATTEMPTS'] = 3
    backend = FakeBackend(states=[PROCESSING])
    sleeps = []

    with pytest.raises(TimeoutError):
        wait_for_active(backend, 'files/abc', sleep=sleeps.append)

    assert sleeps == [1, 1]
