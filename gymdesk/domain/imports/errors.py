"""
Error taxonomy for member imports.
"""


class ImportValidationError(Exception):
    """Bad file, incomplete mapping or missing date format; blocks the import from starting."""
    pass


class RowError(Exception):
    """A single row could not be turned into a member; counted and logged, never fatal."""
    pass


class FatalImportError(Exception):
    """An unexpected failure outside the per-row boundary; ends the job as failed."""
    pass


class ImportJobNotFoundError(LookupError):
    """No import job with that id exists in the caller's scope."""
    pass
