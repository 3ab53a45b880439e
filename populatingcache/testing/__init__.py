"""Testing utilities for PopulatingCache consumers."""

from .fixtures import RecordingBackend, expire

__all__ = ['RecordingBackend', 'expire']
