#!/usr/bin/env python3
"""
Error taxonomy for Tekno Mix

Per-track failures (decode, analysis) are isolated by the batch
orchestrator; only an empty batch is fatal for a mix request.
"""

from typing import Optional, Dict, Any


class TeknoMixError(Exception):
    """Base error class for all mix errors"""

    def __init__(self, message: str, data: Optional[Dict[str, Any]] = None,
                 cause: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.data = data or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization"""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "data": self.data,
            "cause": str(self.cause) if self.cause else None,
        }


class ConfigurationError(TeknoMixError):
    """Invalid mix configuration"""


class DecodeError(TeknoMixError):
    """Source audio could not be decoded; aborts only that track"""


class BackendUnavailable(TeknoMixError):
    """Full feature extraction backend is missing or failed to initialize"""


class AnalysisCrash(TeknoMixError):
    """Full backend threw mid-analysis"""


class TempoDetectionError(TeknoMixError):
    """Secondary tempo/phase detector could not produce an estimate"""


class NoValidTracks(TeknoMixError):
    """No track reached Ready status before the mix build"""


class DegenerateEvent(TeknoMixError):
    """Timeline event with non-finite timing or non-positive duration"""
