"""streamtap - capture streaming media segments from a Chrome debugging session.

Attaches to a page over the Chrome DevTools Protocol, watches every network
response, picks out byte-range media segments and downloads the underlying
resources on a bounded pool of workers.

PUBLIC API:
  - CapturePipeline: End-to-end capture and download pipeline
  - CaptureConfig: Pipeline settings
  - load_config: Load settings from streamtap.toml
  - __version__: Package version string
"""

from importlib.metadata import PackageNotFoundError, version

from streamtap.config import CaptureConfig, load_config
from streamtap.pipeline import CapturePipeline

try:
    __version__ = version("streamtap")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = ["CapturePipeline", "CaptureConfig", "load_config", "__version__"]
