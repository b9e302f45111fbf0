import json
import subprocess
from unittest import mock

import pytest

from ingest.errors import ProbeError, TranscodeError
from ingest.utils.video import parse_frame_rate, probe_video, compress_video, proxy_filter


def ffprobe_output(streams, fmt=None):
    payload = {'streams': streams, 'format': fmt if fmt is not None else {'size': '73400320', 'duration': '12.5'}}
    return subprocess.CompletedProcess(args=['ffprobe'], returncode=0, stdout=json.dumps(payload), stderr='')


@pytest.mark.parametrize('rate, expected', [
    ('30/1', 30.0),
    ('30000/1001', 30000 / 1001),
    ('25', 25.0),
    ('24/0', 24.0),
    ('0/0', 30.0),
    ('', 30.0),
    (None, 30.0),
    ('abc/def', 30.0),
])
def test_parse_frame_rate(rate, expected):
    assert parse_frame_rate(rate) == pytest.approx(expected)


class TestProbe:
    def test_reads_first_video_stream(self):
        streams = [
            {'codec_type': 'audio', 'codec_name': 'aac'},
            {'codec_type': 'video', 'width': 1920, 'height': 1080, 'r_frame_rate': '60/1'},
            {'codec_type': 'video', 'width': 320, 'height': 240, 'r_frame_rate': '5/1'},
        ]
        with mock.patch('ingest.utils.video.subprocess.run', return_value=ffprobe_output(streams)) as run:
            metadata = probe_video('/tmp/clip.mp4')

        assert run.call_args[0][0][0] == 'ffprobe'
        assert metadata.width == 1920
        assert metadata.height == 1080
        assert metadata.fps == 60.0
        assert metadata.size_bytes == 73400320
        assert metadata.duration == 12.5

    def test_falls_back_to_average_frame_rate(self):
        streams = [{'codec_type': 'video', 'width': 640, 'height': 480, 'avg_frame_rate': '15/1'}]
        with mock.patch('ingest.utils.video.subprocess.run', return_value=ffprobe_output(streams)):
            assert probe_video('/tmp/clip.mp4').fps == 15.0

    def test_missing_rates_default_to_30(self):
        streams = [{'codec_type': 'video', 'width': 640, 'height': 480, 'r_frame_rate': '0/0'}]
        with mock.patch('ingest.utils.video.subprocess.run', return_value=ffprobe_output(streams)):
            assert probe_video('/tmp/clip.mp4').fps == 30.0

    def test_size_falls_back_to_file_on_disk(self, tmp_path):
        clip = tmp_path / 'clip.mp4'
        clip.write_bytes(b'x' * 2048)
        streams = [{'codec_type': 'video', 'width': 640, 'height': 480, 'r_frame_rate': '10/1'}]
        with mock.patch('ingest.utils.video.subprocess.run', return_value=ffprobe_output(streams, fmt={})):
            metadata = probe_video(str(clip))

        assert metadata.size_bytes == 2048
        assert metadata.duration is None

    def test_no_video_stream(self):
        streams = [{'codec_type': 'audio'}]
        with mock.patch('ingest.utils.video.subprocess.run', return_value=ffprobe_output(streams)):
            with pytest.raises(ProbeError, match='No video stream'):
                probe_video('/tmp/song.m4a')

    def test_ffprobe_failure(self):
        error = subprocess.CalledProcessError(1, ['ffprobe'], output='', stderr='moov atom not found')
        with mock.patch('ingest.utils.video.subprocess.run', side_effect=error):
            with pytest.raises(ProbeError, match='moov atom not found'):
                probe_video('/tmp/broken.mp4')

    def test_ffprobe_not_installed(self):
        with mock.patch('ingest.utils.video.subprocess.run', side_effect=FileNotFoundError('ffprobe')):
            with pytest.raises(ProbeError):
                probe_video('/tmp/clip.mp4')


class FakePopen:
    """Mimics ffmpeg -progress output and writes the output file"""

    def __init__(self, lines, returncode=0, output_bytes=b'p' * 100):
        self.lines = lines
        self.returncode = returncode
        self.output_bytes = output_bytes
        self.cmd = None

    def __call__(self, cmd, **kwargs):
        self.cmd = cmd
        if self.returncode == 0 and self.output_bytes:
            with open(cmd[-1], 'wb') as f:
                f.write(self.output_bytes)
        self.stdout = iter(self.lines)
        return self

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def wait(self):
        return self.returncode


class TestCompress:
    @pytest.fixture
    def source(self, tmp_path):
        path = tmp_path / 'source.mov'
        path.write_bytes(b's' * 1000)
        return str(path)

    def test_reports_progress_and_ratio(self, source, tmp_path):
        fake = FakePopen([
            'frame=10\n',
            'out_time_us=2500000\n',
            'progress=continue\n',
            'out_time_us=5000000\n',
            'progress=continue\n',
            'progress=end\n',
        ])
        fractions = []
        output = str(tmp_path / 'proxy.mp4')

        with mock.patch('ingest.utils.video.subprocess.Popen', fake):
            result = compress_video(source, output, duration=10.0, on_progress=fractions.append)

        assert fractions == [0.25, 0.5, 1.0]
        assert result.output_path == output
        assert result.output_size == 100
        assert result.compression_ratio == 10.0
        assert '-vf' in fake.cmd
        assert fake.cmd[fake.cmd.index('-vf') + 1] == proxy_filter(720, 10)

    def test_unknown_duration_still_signals_activity(self, source, tmp_path):
        fake = FakePopen([
            'frame=10\n',
            'out_time_us=2500000\n',
            'progress=continue\n',
            'progress=continue\n',
            'progress=end\n',
        ])
        fractions = []

        with mock.patch('ingest.utils.video.subprocess.Popen', fake):
            compress_video(source, str(tmp_path / 'proxy.mp4'), on_progress=fractions.append)

        assert fractions == [0.0, 0.0, 1.0]

    def test_nonzero_exit_raises(self, source, tmp_path):
        fake = FakePopen(['Invalid data found when processing input\n'], returncode=1)

        with mock.patch('ingest.utils.video.subprocess.Popen', fake):
            with pytest.raises(TranscodeError, match='Invalid data found'):
                compress_video(source, str(tmp_path / 'proxy.mp4'))

    def test_empty_output_raises(self, source, tmp_path):
        fake = FakePopen(['progress=end\n'], output_bytes=b'')

        with mock.patch('ingest.utils.video.subprocess.Popen', fake):
            with pytest.raises(TranscodeError):
                compress_video(source, str(tmp_path / 'proxy.mp4'))

    def test_ffmpeg_not_installed(self, source, tmp_path):
        with mock.patch('ingest.utils.video.subprocess.Popen', side_effect=FileNotFoundError('ffmpeg')):
            with pytest.raises(TranscodeError):
                compress_video(source, str(tmp_path / 'proxy.mp4'))


def test_proxy_filter_bounds_the_shorter_side():
    assert proxy_filter(720, 10) == (
        "scale='if(gt(iw,ih),-2,min(720,iw))':'if(gt(iw,ih),min(720,ih),-2)',fps=10"
    )
