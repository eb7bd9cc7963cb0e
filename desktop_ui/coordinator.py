import logging
from typing import Any, Dict, List, Optional

from PySide6.QtCore import Property, QObject, Signal, Slot

from core.app_state import AppState, ChangeEvent
from core.errors import PlexBookError
from core.results import OperationResult

logger = logging.getLogger(__name__)

# Configure default console logging if not already configured
if not logging.getLogger().hasHandlers():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )


class DesktopCoordinator(QObject):
    """Qt facade over AppState: slots in, change signals out."""

    settingsChanged = Signal()
    playerStateChanged = Signal()
    downloadStateChanged = Signal()
    errorOccurred = Signal(str, str)  # error type, message

    def __init__(self, state: AppState):
        super().__init__()
        self.state = state
        self._signals = {
            ChangeEvent.SETTINGS_CHANGED: self.settingsChanged,
            ChangeEvent.PLAYER_STATE_CHANGED: self.playerStateChanged,
            ChangeEvent.DOWNLOAD_STATE_CHANGED: self.downloadStateChanged,
        }
        self.state.add_listener(self._on_state_change)
        logger.info("Creating DesktopCoordinator instance")

    def _on_state_change(self, event: ChangeEvent) -> None:
        """Relay core change notifications; safe to call from worker threads."""
        logger.debug("State change: %s", event.value)
        self._signals[event].emit()

    def _report(self, name: str, result: OperationResult) -> bool:
        # CHANGED results can carry a store error too
        if result.error is not None:
            error_type = type(result.error).__name__
            logger.warning("%s reported %s (%s)", name, error_type, result.outcome.value)
            self.errorOccurred.emit(error_type, str(result.error))
        return not result.is_failed

    # Qt Properties for QML binding
    @Property(bool, notify=settingsChanged)
    def isSignedIn(self) -> bool:
        return self.state.has_user()

    @Property(str, notify=settingsChanged)
    def pinCode(self) -> str:
        pin = self.state.pending_pin()
        return pin.code if pin else ""

    @Property(str, notify=settingsChanged)
    def selectedServer(self) -> str:
        return self.state.selected_server() or ""

    @Property(str, notify=settingsChanged)
    def selectedLibrary(self) -> str:
        return self.state.selected_library() or ""

    @Property(str, notify=playerStateChanged)
    def currentBookKey(self) -> str:
        book = self.state.current_book()
        return book.album_key if book else ""

    @Property(bool, notify=playerStateChanged)
    def isPlaying(self) -> bool:
        book = self.state.current_book()
        return bool(book and book.is_playing)

    # ------------------------------------------------------------------
    # Authentication slots
    # ------------------------------------------------------------------
    @Slot(result=str)
    def signIn(self) -> str:
        """Request a pairing pin and return its code for display."""
        logger.info("Sign-in requested")
        result = self.state.create_pin()
        if not self._report("signIn", result):
            return ""
        return result.value.code

    @Slot(result=bool)
    def checkPin(self) -> bool:
        """Poll the pending pin; True once signed in."""
        result = self.state.check_pin()
        self._report("checkPin", result)
        return result.is_changed

    @Slot()
    def signOut(self) -> None:
        logger.info("Sign-out requested")
        self._report("signOut", self.state.sign_out())

    # ------------------------------------------------------------------
    # Selection slots
    # ------------------------------------------------------------------
    @Slot(result=list)
    def servers(self) -> List[str]:
        try:
            return self.state.servers()
        except PlexBookError:
            return []

    @Slot(str, result=bool)
    def selectServer(self, name: str) -> bool:
        logger.info("Select server request: %s", name)
        return self._report("selectServer", self.state.select_server(name))

    @Slot()
    def resetServer(self) -> None:
        self._report("resetServer", self.state.reset_server_selection())

    @Slot(result=list)
    def libraries(self) -> List[str]:
        try:
            return self.state.libraries()
        except PlexBookError:
            return []

    @Slot(str, result=bool)
    def selectLibrary(self, title: str) -> bool:
        logger.info("Select library request: %s", title)
        return self._report("selectLibrary", self.state.select_library(title))

    @Slot()
    def resetLibrary(self) -> None:
        self._report("resetLibrary", self.state.reset_library_selection())

    @Slot(result=list)
    def albums(self) -> List[Dict[str, Any]]:
        """Albums in a QML-friendly format."""
        try:
            albums = self.state.albums()
        except PlexBookError:
            return []
        qml_albums = []
        for album in albums:
            qml_albums.append({
                "key": album.rating_key,
                "title": album.title,
                "author": album.author,
                "summary": album.summary,
                "thumb": self._thumb(album.thumb),
            })
        return qml_albums

    def _thumb(self, thumb: str) -> str:
        if not thumb:
            return ""
        try:
            return self.state.thumb_url(thumb)
        except PlexBookError:
            return ""

    # ------------------------------------------------------------------
    # Playback and download slots
    # ------------------------------------------------------------------
    @Slot(str)
    def startPlaying(self, key: str) -> None:
        logger.info("Play request: %s", key)
        self._report("startPlaying", self.state.start_playing(key))

    @Slot(str, float)
    def updateProgress(self, key: str, progress: float) -> None:
        self._report("updateProgress", self.state.update_progress(key, progress))

    @Slot(str)
    def download(self, key: str) -> None:
        logger.info("Download request: %s", key)
        self._report("download", self.state.download(key))

    @Slot(str)
    def removeDownload(self, key: str) -> None:
        logger.info("Remove download request: %s", key)
        self._report("removeDownload", self.state.remove_download(key))

    def current_book_title(self) -> Optional[str]:
        book = self.state.current_book()
        if book is None:
            return None
        album = self.state.book_album(book.album_key)
        return album.title if album else book.album_key

    def cleanup(self) -> None:
        """Clean shutdown of coordinator"""
        logger.info("Cleaning up DesktopCoordinator")
        self.state.remove_listener(self._on_state_change)
        self.state.close()
        logger.info("Coordinator cleaned up")
