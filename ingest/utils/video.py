import json
import os
import subprocess
from collections import deque, namedtuple

from ingest.errors import ProbeError, TranscodeError
from ingest.utils.compression import VideoMetadata

DEFAULT_FPS = 30.0

CompressionResult = namedtuple('CompressionResult', ['output_path', 'output_size', 'compression_ratio'])


def parse_frame_rate(rate, default=DEFAULT_FPS):
    """Parse an ffprobe rational such as '30000/1001'; zero or missing denominators fall back"""
    if not rate:
        return default
    num, _, den = str(rate).partition('/')
    try:
        numerator = float(num)
    except ValueError:
        return default
    try:
        denominator = float(den) if den else 0.0
    except ValueError:
        denominator = 0.0
    if denominator > 0:
        return numerator / denominator
    return numerator or default


def _run_ffprobe(file_path):
    cmd = [
        'ffprobe',
        '-v', 'error',
        '-print_format', 'json',
        '-show_format',
        '-show_streams',
        file_path
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=True)
        return json.loads(result.stdout or '{}')
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or e.stdout or '').strip() or f"exit code {e.returncode}"
        raise ProbeError(f"Failed to probe video: {detail}") from e
    except (ValueError, FileNotFoundError) as e:
        raise ProbeError(f"Failed to probe video: {e}") from e


def probe_video(file_path):
    """Extract size, dimensions, frame rate and duration of the first video stream"""
    probe = _run_ffprobe(file_path)

    video_stream = next(
        (s for s in probe.get('streams') or [] if s.get('codec_type') == 'video'),
        None
    )
    if not video_stream:
        raise ProbeError('No video stream found in file')

    if video_stream.get('r_frame_rate'):
        fps = parse_frame_rate(video_stream['r_frame_rate'])
    else:
        fps = parse_frame_rate(video_stream.get('avg_frame_rate'))

    fmt = probe.get('format') or {}
    try:
        size_bytes = int(fmt['size'])
    except (KeyError, TypeError, ValueError):
        size_bytes = os.path.getsize(file_path)
    try:
        duration = float(fmt['duration'])
    except (KeyError, TypeError, ValueError):
        duration = None

    metadata = VideoMetadata(
        size_bytes=size_bytes,
        width=int(video_stream.get('width') or 0),
        height=int(video_stream.get('height') or 0),
        fps=fps,
        duration=duration,
    )
    print(f"[Compression] Video metadata: {size_bytes / 1024 / 1024:.2f}MB, "
          f"{metadata.width}x{metadata.height}, {fps:.2f}fps")
    return metadata


def proxy_filter(target_height, target_fps):
    """Bound the shorter side to target_height, keep orientation and aspect ratio"""
    return (
        f"scale='if(gt(iw,ih),-2,min({target_height},iw))'"
        f":'if(gt(iw,ih),min({target_height},ih),-2)',"
        f"fps={target_fps}"
    )


def _progress_fraction(line, duration):
    key, _, value = line.partition('=')
    if key == 'progress':
        if value == 'end':
            return 1.0
        # Without a duration a progress block only shows ffmpeg is still working
        return None if duration else 0.0
    if key in ('out_time_us', 'out_time_ms') and duration:
        try:
            return min(max(int(value) / (duration * 1_000_000), 0.0), 1.0)
        except ValueError:
            return None
    return None


def compress_video(input_path, output_path, target_height=720, target_fps=10,
                   duration=None, on_progress=None):
    """Transcode input_path into an analysis proxy, reporting fractions in [0, 1]"""
    cmd = [
        'ffmpeg', '-y',
        '-hide_banner', '-nostats', '-loglevel', 'error',
        '-i', input_path,
        '-vf', proxy_filter(target_height, target_fps),
        '-c:v', 'libx264', '-preset', 'fast', '-crf', '28',
        '-c:a', 'aac', '-b:a', '128k',
        '-movflags', '+faststart',
        '-progress', 'pipe:1',
        output_path
    ]

    output_tail = deque(maxlen=20)
    try:
        process = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
    except FileNotFoundError as e:
        raise TranscodeError(f"Video transcoding failed: {e}") from e

    with process:
        for raw_line in process.stdout:
            line = raw_line.strip()
            if not line:
                continue
            fraction = _progress_fraction(line, duration)
            if fraction is not None:
                if on_progress:
                    on_progress(fraction)
            elif '=' not in line:
                output_tail.append(line)
        returncode = process.wait()

    if returncode != 0:
        detail = ' '.join(output_tail) or f"exit code {returncode}"
        raise TranscodeError(f"Video transcoding failed: {detail}")

    if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
        raise TranscodeError('Video transcoding produced no output')

    original_size = os.path.getsize(input_path)
    output_size = os.path.getsize(output_path)
    return CompressionResult(
        output_path=output_path,
        output_size=output_size,
        compression_ratio=original_size / output_size,
    )
