"""
retune_errors.py

Exceptions raised by the retune pipeline.

Fatal (abort the run, become a Failure outcome):
- FormatError: unsupported bit depth / channel count / container subtype
- ConfigError: bad frame/hop sizes or out-of-range musical parameters
- AudioIOError: the WAV file could not be opened, read or written
- Cancelled: the caller asked the run to stop

Non-fatal:
- EngineError: the correction engine failed on one frame; the adapter
  substitutes the input frame and carries on.
"""

from __future__ import annotations


class RetuneError(Exception):
    pass


class FormatError(RetuneError, ValueError):
    pass


class ConfigError(RetuneError, ValueError):
    pass


class EngineError(RetuneError):
    pass


class AudioIOError(RetuneError, OSError):
    pass


class Cancelled(RetuneError):
    def __init__(self, message: str = "Cancelled"):
        super().__init__(message)
