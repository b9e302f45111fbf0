from collections import namedtuple

from flask import current_app, has_app_context

MB = 1024 * 1024

VideoMetadata = namedtuple('VideoMetadata', ['size_bytes', 'width', 'height', 'fps', 'duration'])
VideoMetadata.__new__.__defaults__ = (None,)

CompressionThresholds = namedtuple('CompressionThresholds', ['max_file_size_mb', 'max_height', 'max_fps'])

CompressionDecision = namedtuple('CompressionDecision', ['should_compress', 'reasons'])

DEFAULT_THRESHOLDS = CompressionThresholds(max_file_size_mb=60, max_height=720, max_fps=10)


def configured_thresholds():
    """Thresholds from the app config, or the defaults outside an app"""
    if not has_app_context():
        return DEFAULT_THRESHOLDS
    cfg = current_app.config
    return CompressionThresholds(
        max_file_size_mb=cfg.get('COMPRESSION_MAX_FILE_SIZE_MB', DEFAULT_THRESHOLDS.max_file_size_mb),
        max_height=cfg.get('COMPRESSION_MAX_HEIGHT', DEFAULT_THRESHOLDS.max_height),
        max_fps=cfg.get('COMPRESSION_MAX_FPS', DEFAULT_THRESHOLDS.max_fps),
    )


def _format_number(value):
    return f"{value:g}" if isinstance(value, float) else str(value)


def decide(metadata, thresholds=DEFAULT_THRESHOLDS):
    """Decide whether a video needs an analysis proxy.

    Resolution is judged on the shorter side so portrait and landscape clips of
    the same quality get the same verdict. A value sitting exactly on a threshold
    passes; every exceeded threshold contributes its own reason.
    """
    reasons = []

    file_size_mb = metadata.size_bytes / MB
    effective_height = min(metadata.width, metadata.height)

    if file_size_mb > thresholds.max_file_size_mb:
        reasons.append(
            f"File size {file_size_mb:.1f}MB exceeds {_format_number(thresholds.max_file_size_mb)}MB threshold"
        )

    if effective_height > thresholds.max_height:
        reasons.append(
            f"Resolution {metadata.width}x{metadata.height} exceeds {thresholds.max_height}p threshold"
        )

    if metadata.fps > thresholds.max_fps:
        reasons.append(
            f"Frame rate {_format_number(metadata.fps)}fps exceeds {_format_number(thresholds.max_fps)}fps threshold"
        )

    return CompressionDecision(should_compress=len(reasons) > 0, reasons=reasons)
