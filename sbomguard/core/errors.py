"""Error taxonomy for the analysis pipeline."""
from enum import Enum


class ErrorKind(str, Enum):
    MALFORMED_DOCUMENT = 'MalformedDocument'
    UNSUPPORTED_FORMAT = 'UnsupportedFormat'
    QUOTA_EXCEEDED = 'QuotaExceeded'
    QUOTA_CHECK_UNAVAILABLE = 'QuotaCheckUnavailable'
    UPSTREAM_UNAVAILABLE = 'UpstreamUnavailable'
    CORRELATION_DEGRADED = 'CorrelationDegraded'
    CANCELLED = 'Cancelled'
    NOT_FOUND = 'NotFound'
    INTERNAL = 'Internal'

    def __str__(self) -> str:
        return self.value


class SbomGuardError(Exception):
    """Base error. Every subclass carries the ErrorKind it represents."""
    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str = ''):
        super().__init__(message or self.kind.value)
        self.message = message or self.kind.value


class MalformedDocument(SbomGuardError):
    kind = ErrorKind.MALFORMED_DOCUMENT


class UnsupportedFormat(SbomGuardError):
    kind = ErrorKind.UNSUPPORTED_FORMAT


class QuotaExceeded(SbomGuardError):
    kind = ErrorKind.QUOTA_EXCEEDED


class QuotaCheckUnavailable(SbomGuardError):
    kind = ErrorKind.QUOTA_CHECK_UNAVAILABLE


class UpstreamUnavailable(SbomGuardError):
    kind = ErrorKind.UPSTREAM_UNAVAILABLE


class Cancelled(SbomGuardError):
    kind = ErrorKind.CANCELLED


class CorrelationDegraded(SbomGuardError):
    """Raised when too many lookups of one batch failed.

    The partial results and failures are kept on the exception so the
    pipeline can persist them for diagnostics.
    """
    kind = ErrorKind.CORRELATION_DEGRADED

    def __init__(self, message: str = '', results=None, failures=None):
        super().__init__(message)
        self.results = results or []
        self.failures = failures or []


class AnalysisNotFound(SbomGuardError):
    kind = ErrorKind.NOT_FOUND


class InvalidTransition(SbomGuardError, ValueError):
    """Raised when an Analysis status would move backward."""
