"""
Shared error types.

Each exception carries the ErrorKind it maps to, so callers that turn
failures into tagged results do not need an isinstance ladder.
"""

from .schemas import ErrorKind


class DetectiveError(Exception):
    """Base exception for FHE Detective errors"""
    kind: ErrorKind = ErrorKind.SUBMISSION_FAILURE


class DecodeError(DetectiveError, ValueError):
    """Confidential token payload is not a valid number"""
    kind = ErrorKind.DECODE_ERROR


class MalformedRecordError(DetectiveError):
    """Stored testimony record cannot be parsed"""
    kind = ErrorKind.MALFORMED_RECORD

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"{key}: {reason}")


class SubmissionFailure(DetectiveError):
    """Write path failed"""
    kind = ErrorKind.SUBMISSION_FAILURE


class SubmissionRejected(SubmissionFailure):
    """Signer declined the write"""


class TestimonyNotFoundError(DetectiveError, KeyError):
    """No testimony with this id in the current snapshot"""
    kind = ErrorKind.VALIDATION_ERROR


class UnknownCaseError(DetectiveError, KeyError):
    """Case id is not part of the case catalog"""
    kind = ErrorKind.VALIDATION_ERROR
