class SearchError(Exception):
    """Base class for listing search failures surfaced to callers."""


class StorageUnavailableError(SearchError):
    """Neither store could be reached; no partial result is returned."""


class OptimizedStoreError(SearchError):
    """The Optimized Store could not answer a query it was routed.

    The engine catches this and reruns the query on the Normalized Store.
    """


class MalformedFilterError(ValueError):
    """A single filter value had the wrong type or shape.

    Raised by per-key compilation and converted into a skipped filter.
    """

    def __init__(self, key: str, message: str):
        super().__init__(f"{key}: {message}")
        self.key = key
