"""Exception hierarchy for SnapClassify."""

from __future__ import annotations


class SnapClassifyError(Exception):
    """Base class for all SnapClassify errors."""


class ModelLoadError(SnapClassifyError):
    """The numeric runtime or a model could not be initialized."""


class InferenceError(SnapClassifyError):
    """Reading, decoding, or classifying a captured image failed."""


class CaptureError(SnapClassifyError):
    """The image picker returned data that is not a usable image."""


class ActionNotAllowed(SnapClassifyError):
    """A user action was triggered while its control is disabled."""
