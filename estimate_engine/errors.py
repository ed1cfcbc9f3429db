from __future__ import annotations


class EstimateEngineError(Exception):
    """Base class for errors raised by the estimate engine."""


class StoreError(EstimateEngineError):
    pass


class RecordNotFound(StoreError):
    def __init__(self, table: str, key: str):
        self.table = table
        self.key = key
        super().__init__(f"{table}: no record for {key!r}")


class RateValidationError(EstimateEngineError):
    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(f"Rate validation failed: {', '.join(self.errors)}")


class IntegrationError(EstimateEngineError):
    pass


class ExportFormatError(EstimateEngineError, ValueError):
    pass


class LibraryImportError(EstimateEngineError):
    pass


class LibraryStatusError(EstimateEngineError):
    pass
