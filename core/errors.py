"""
Exception taxonomy for the audiobook core.

Every failure the core reports derives from ``PlexBookError`` so callers can
separate expected domain outcomes from programming errors.
"""


class PlexBookError(Exception):
    """Base exception for all core errors."""


class NetworkError(PlexBookError):
    """Raised when a request to the media service fails or times out."""


class MalformedResponse(PlexBookError):
    """Raised when a response body cannot be decoded or lacks required fields."""


class WaitingOnPin(PlexBookError):
    """Raised when a pairing pin has not been approved yet. Not fatal."""


class PinExpired(PlexBookError):
    """Raised when a pairing pin outlived its local expiry window."""


class NoPinPending(PlexBookError):
    """Raised when a pin check is requested but no pin was issued."""


class NotAuthenticated(PlexBookError):
    """Raised when an operation needs a user token and none is set."""


class NoServerSelected(PlexBookError):
    """Raised when an operation needs a selected server connection."""


class NoLibrarySelected(PlexBookError):
    """Raised when an operation needs a selected library."""


class InvalidServerName(PlexBookError):
    """Raised when a server name is not in the resource cache."""


class InvalidLibraryName(PlexBookError):
    """Raised when a library title is not in the library cache."""


class NoResourcesFound(PlexBookError):
    """Raised when the resource cache is empty."""


class NoLibrariesFound(PlexBookError):
    """Raised when the library cache is empty."""


class NoAlbumsFound(PlexBookError):
    """Raised when the album cache is empty."""


class NoAlbumFound(PlexBookError):
    """Raised when an album key is not in the album cache."""


class NoValidConnections(PlexBookError):
    """Raised when no candidate connection of a resource answered a probe."""


class DownloadFailed(PlexBookError):
    """Raised when a book download location cannot be prepared."""


class BookNotDownloaded(PlexBookError):
    """Raised when removing a download from a book that has none."""


class NoBookFound(PlexBookError):
    """Raised when a book key is not in the book collection."""


class InvalidProgress(PlexBookError):
    """Raised when a progress value falls outside [0, 1]."""


class StoreError(PlexBookError):
    """Raised when the persistent store cannot be written."""


class LockFailure(PlexBookError):
    """
    Raised when the application state lock is unusable because an earlier
    operation failed unexpectedly while holding it.
    """
