"""
Authentication and the server -> library -> album selection cascade.

Caches are derived data: each one is rebuilt wholesale by a pure ``fetch_*``
function from the current selection and the service client, and selecting or
clearing a level always empties every cache below it.
"""
import logging
from typing import Any, Dict, List, Optional

from .connection_prober import find_working_connection
from .data_models import Album, Identity, Library, Resource, SelectedConnection
from .errors import (
    InvalidLibraryName,
    InvalidServerName,
    NoAlbumFound,
    NoAlbumsFound,
    NoLibrariesFound,
    NoLibrarySelected,
    NoResourcesFound,
    NoServerSelected,
    NotAuthenticated,
    PlexBookError,
)

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Pure cache builders
# ----------------------------------------------------------------------
def fetch_resources(identity: Identity, client) -> Dict[str, Resource]:
    if not identity.is_authenticated:
        raise NotAuthenticated("Sign in before listing servers")
    return {resource.name: resource for resource in client.list_resources()}


def fetch_libraries(selected: Optional[SelectedConnection], client) -> Dict[str, Library]:
    if selected is None:
        raise NoServerSelected("Select a server before listing libraries")
    return {library.title: library for library in client.list_libraries(selected.uri)}


def fetch_albums(
    selected: Optional[SelectedConnection], library: Optional[Library], client
) -> Dict[str, Album]:
    if selected is None:
        raise NoServerSelected("Select a server before listing albums")
    if library is None:
        raise NoLibrarySelected("Select a library before listing albums")
    return {album.rating_key: album for album in client.list_albums(selected.uri, library.key)}


class SessionCascade:
    """Owns the user token, the current selections and their caches."""

    def __init__(
        self,
        client,
        identity: Optional[Identity] = None,
        *,
        selected_connection: Optional[SelectedConnection] = None,
        selected_library: Optional[Library] = None,
    ) -> None:
        self.client = client
        self.identity = identity or Identity()
        self._selected_connection = selected_connection
        # A library selection without a server cannot be honoured
        self._selected_library = selected_library if selected_connection else None

        self._resources: Dict[str, Resource] = {}
        self._libraries: Dict[str, Library] = {}
        self._albums: Dict[str, Album] = {}

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    def has_user(self) -> bool:
        return self.identity.is_authenticated

    def sign_in(self, token: str) -> None:
        logger.info("Signing in")
        self.identity.user_token = token
        self.refresh_all()

    def sign_out(self) -> None:
        logger.info("Signing out")
        self.identity.user_token = None
        self.identity.regenerate_session()
        self._selected_connection = None
        self._resources = {}
        self._clear_library_level()

    def refresh_all(self) -> None:
        """Rebuild every cache; each level may fail without stopping the others."""
        for refresh in (self.refresh_resources, self.refresh_libraries, self.refresh_albums):
            try:
                refresh()
            except PlexBookError as exc:
                logger.warning("%s skipped: %s", refresh.__name__, exc)

    # ------------------------------------------------------------------
    # Servers
    # ------------------------------------------------------------------
    def refresh_resources(self) -> None:
        self._resources = fetch_resources(self.identity, self.client)
        logger.debug("Resource cache holds %d servers", len(self._resources))
        selected = self._selected_connection
        if selected is not None and selected.name not in self._resources:
            logger.warning("Selected server %s is no longer listed", selected.name)
            self.reset_server_selection()

    def list_servers(self) -> List[str]:
        if not self._resources:
            raise NoResourcesFound("No servers available")
        return sorted(self._resources)

    @property
    def selected_server(self) -> Optional[str]:
        return self._selected_connection.name if self._selected_connection else None

    @property
    def selected_connection(self) -> Optional[SelectedConnection]:
        return self._selected_connection

    def select_server(self, name: str) -> SelectedConnection:
        """
        Select a server and probe for a reachable connection.

        The selection is atomic: any failure leaves the previous selection
        and caches untouched. On success the library level is cleared and
        libraries are refetched best-effort.

        Raises:
            NotAuthenticated, NoResourcesFound, InvalidServerName,
            NoValidConnections
        """
        if not self.has_user():
            raise NotAuthenticated("Sign in before selecting a server")
        if not self._resources:
            raise NoResourcesFound("No servers available")
        resource = self._resources.get(name)
        if resource is None:
            raise InvalidServerName(f"Unknown server: {name}")

        connection = find_working_connection(resource, self.client)

        self._selected_connection = SelectedConnection(name=resource.name, uri=connection.uri)
        self._clear_library_level()
        logger.info("Selected server %s at %s", resource.name, connection.uri)
        try:
            self.refresh_libraries()
        except PlexBookError as exc:
            logger.warning("Library refresh after server selection failed: %s", exc)
        return self._selected_connection

    def reset_server_selection(self) -> None:
        logger.info("Resetting server selection")
        self._selected_connection = None
        self._clear_library_level()

    # ------------------------------------------------------------------
    # Libraries
    # ------------------------------------------------------------------
    def refresh_libraries(self) -> None:
        self._libraries = fetch_libraries(self._selected_connection, self.client)
        logger.debug("Library cache holds %d libraries", len(self._libraries))

    def list_libraries(self) -> List[str]:
        if not self._libraries:
            raise NoLibrariesFound("No libraries available")
        return sorted(self._libraries)

    @property
    def selected_library(self) -> Optional[Library]:
        return self._selected_library

    def select_library(self, title: str) -> Library:
        if self._selected_connection is None:
            raise NoServerSelected("Select a server before selecting a library")
        library = self._libraries.get(title)
        if library is None:
            raise InvalidLibraryName(f"Unknown library: {title}")

        self._selected_library = library
        self._albums = {}
        logger.info("Selected library %s", title)
        try:
            self.refresh_albums()
        except PlexBookError as exc:
            logger.warning("Album refresh after library selection failed: %s", exc)
        return library

    def reset_library_selection(self) -> None:
        logger.info("Resetting library selection")
        self._selected_library = None
        self._albums = {}

    def _clear_library_level(self) -> None:
        self._selected_library = None
        self._libraries = {}
        self._albums = {}

    # ------------------------------------------------------------------
    # Albums
    # ------------------------------------------------------------------
    def refresh_albums(self) -> None:
        self._albums = fetch_albums(self._selected_connection, self._selected_library, self.client)
        logger.debug("Album cache holds %d albums", len(self._albums))

    def list_albums(self) -> List[Album]:
        if not self._albums:
            raise NoAlbumsFound("No albums available")
        return sorted(self._albums.values(), key=lambda album: (album.parent_title, album.title))

    def get_album(self, key: str) -> Album:
        album = self._albums.get(key)
        if album is None:
            raise NoAlbumFound(f"Unknown album: {key}")
        return album

    def authenticated_thumb_url(self, thumb: str) -> str:
        if self._selected_connection is None:
            raise NoServerSelected("Select a server before loading artwork")
        if not self.identity.user_token:
            raise NotAuthenticated("Sign in before loading artwork")
        return f"{self._selected_connection.uri}{thumb}?X-Plex-Token={self.identity.user_token}"

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def to_settings(self) -> Dict[str, Any]:
        """Serializable settings; the session identifier is never persisted."""
        return {
            "clientIdentifier": self.identity.client_identifier,
            "userToken": self.identity.user_token,
            "selectedConnection": (
                self._selected_connection.to_dict() if self._selected_connection else None
            ),
            "selectedLibrary": (
                self._selected_library.to_dict() if self._selected_library else None
            ),
        }


def parse_settings(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Turn a persisted settings blob into constructor arguments.

    Unreadable selections are dropped rather than failing startup.

    Returns:
        Dict with ``identity``, ``selected_connection`` and ``selected_library``
    """
    data = data or {}
    identity = Identity(user_token=data.get("userToken") or None)
    if data.get("clientIdentifier"):
        identity.client_identifier = str(data["clientIdentifier"])

    selected_connection = None
    selected_library = None
    try:
        if data.get("selectedConnection"):
            selected_connection = SelectedConnection.from_dict(data["selectedConnection"])
        if data.get("selectedLibrary") and selected_connection is not None:
            selected_library = Library.from_dict(data["selectedLibrary"])
    except (KeyError, TypeError) as exc:
        logger.warning("Ignoring unreadable selection in settings: %s", exc)
        selected_connection = None
        selected_library = None

    return {
        "identity": identity,
        "selected_connection": selected_connection,
        "selected_library": selected_library,
    }
