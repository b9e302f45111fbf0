# Utils package
from .compression import decide, configured_thresholds, VideoMetadata, CompressionThresholds, CompressionDecision, DEFAULT_THRESHOLDS
from .video import probe_video, compress_video, parse_frame_rate, CompressionResult
