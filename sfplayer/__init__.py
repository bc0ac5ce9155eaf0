"""SoundFont 2 loading and sample-based synthesis into sample buffers."""

__version__ = "0.1.0"