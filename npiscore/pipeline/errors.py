# ========================
# npiscore/pipeline/errors.py
# ========================

"""
Pipeline Exceptions

Fatal conditions raised by the pipeline stages. Row-level data problems are
counted and skipped instead of raised.
"""

from typing import List


class PipelineError(Exception):
    """Base class for unrecoverable pipeline errors."""

    exit_code = 1


class MissingInputError(PipelineError):
    """A required input file or directory does not exist."""


class MissingColumnsError(PipelineError):
    """The source header lacks one or more required columns."""

    def __init__(self, missing: List[str], header: List[str]):
        self.missing = missing
        self.header = header
        super().__init__(
            f"Missing required columns: {', '.join(missing)}. "
            f"Available columns: {', '.join(header)}"
        )


class ConfigurationError(PipelineError):
    """Configuration is invalid or credentials are absent."""


class ResumeOffsetError(PipelineError):
    """The destination's row prefix does not match the source ordering."""


class VerificationMismatchError(PipelineError):
    """Source and destination row counts differ after replication."""

    exit_code = 2

    def __init__(self, report: dict):
        self.report = report
        mismatched = [name for name, row in report.items() if not row['match']]
        super().__init__(f"Row count mismatch in: {', '.join(mismatched)}")
