"""
Error taxonomy for the EPG ingestion pipeline.

Only the feed-level errors abort a run. Everything else the pipeline
degrades around and reports through the stage result objects.
"""


class EPGServiceError(Exception):
    """Base class for all pipeline errors"""
    pass


class SourceUnavailableError(EPGServiceError):
    """Raised when neither the cached blob nor the remote feed can be read"""
    pass


class MalformedFeedError(EPGServiceError):
    """Raised when the feed is not a parseable XMLTV document"""
    pass


class FeedDecompressionError(EPGServiceError):
    """Raised when the compressed feed cannot be inflated"""
    pass


class ObjectNotFoundError(EPGServiceError):
    """Raised by an object store when the requested path does not exist"""

    def __init__(self, path: str):
        super().__init__(f"No such object: {path}")
        self.path = path


class BatchLimitExceededError(EPGServiceError):
    """Raised by a document store when a commit carries too many operations"""

    def __init__(self, size: int, limit: int):
        super().__init__(f"Batch of {size} operations exceeds the limit of {limit}")
        self.size = size
        self.limit = limit
