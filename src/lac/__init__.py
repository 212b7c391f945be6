"""LAC (Legacy Audio Converter)

Core package for converting audio formats without full playback support
(mp3, flac, ogg, ...) into WAV or AIFF, remembering which albums were done.
See `DESIGN.md` for the architecture and the decisions behind it.
"""

__all__ = [
    "__version__",
]

# Keep in sync with pyproject.toml
__version__ = "0.1.0"
