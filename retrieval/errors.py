"""Errors surfaced by the retrieval pipeline."""


class RetrievalError(Exception):
    """Base class for retrieval errors."""


class SearchFailed(RetrievalError):
    """
    Hybrid search could not complete.

    Raised when either the keyword or the vector lane fails; no partial
    result is ever returned alongside it.
    """

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(f"Search failed: {message}")
        self.cause = cause
