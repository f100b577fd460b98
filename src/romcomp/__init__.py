"""romcomp (ROM compressor)

Core package for classifying ROM and disc images by content and dispatching
them to the matching external compressor (chdman, maxcso, dolphin-tool, rom64).
"""

__all__ = [
    "__version__",
]

# Keep in sync with pyproject.toml
__version__ = "0.1.0"
