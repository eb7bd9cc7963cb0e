"""
Reading and download state of books.

A book is created the first time its album is played and is keyed by the
album's rating key. Only one book in the collection may be playing; the
current-book pointer decides whether a play request toggles, starts or
switches playback.
"""
import logging
import re
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional

from .data_models import Album, Book, ReadingState
from .errors import BookNotDownloaded, DownloadFailed, InvalidProgress, NoBookFound
from .results import OperationResult

logger = logging.getLogger(__name__)

AlbumLookup = Callable[[str], Album]

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def download_location(download_dir: Path, album_key: str) -> Path:
    """Local directory for an album, derived from its rating key."""
    safe_key = _UNSAFE_CHARS.sub("_", album_key).strip(".") or "_"
    return Path(download_dir) / safe_key


class Books:
    """The book collection and the current-book pointer."""

    def __init__(
        self, books: Optional[Dict[str, Book]] = None, current_key: Optional[str] = None
    ) -> None:
        self._books: Dict[str, Book] = dict(books or {})
        self.current_key = current_key if current_key in self._books else None
        self._enforce_single_playing()

    def _enforce_single_playing(self) -> None:
        for key, book in self._books.items():
            if book.is_playing and key != self.current_key:
                logger.warning("Pausing %s: only the current book may play", key)
                book.reading_state = ReadingState.PAUSED

    def __iter__(self) -> Iterator[Book]:
        return iter(self._books.values())

    def __len__(self) -> int:
        return len(self._books)

    def __contains__(self, key: object) -> bool:
        return key in self._books

    def keys(self):
        return list(self._books)

    def get(self, key: str) -> Book:
        book = self._books.get(key)
        if book is None:
            raise NoBookFound(f"No book for album {key}")
        return book

    def current(self) -> Optional[Book]:
        if self.current_key is None:
            return None
        return self._books.get(self.current_key)

    def playing(self) -> Optional[Book]:
        return next((book for book in self._books.values() if book.is_playing), None)

    # ------------------------------------------------------------------
    # Reading state
    # ------------------------------------------------------------------
    def start_playing(self, key: str, album_lookup: AlbumLookup) -> OperationResult:
        """
        Play, pause or switch to the book for ``key``.

        Args:
            key: Album rating key
            album_lookup: Resolves a key to a cached album; used only when
                the book does not exist yet

        Returns:
            CHANGED with the book when a book was created or playback moved
            to another book, UNCHANGED with the book for a pause/resume
            toggle of the current book

        Raises:
            NoAlbumFound: If the book is new and its album is not cached
        """
        if self.current_key == key and key in self._books:
            book = self._books[key]
            book.reading_state = (
                ReadingState.PAUSED if book.is_playing else ReadingState.PLAYING
            )
            logger.debug("Toggled %s to %s", key, book.reading_state.value)
            return OperationResult.unchanged(book)

        book = self._books.get(key)
        if book is None:
            # Raises before anything is touched when the album is unknown
            album_lookup(key)
            book = Book(album_key=key)

        previous = self.current()
        if previous is not None:
            previous.reading_state = ReadingState.PAUSED

        book.reading_state = ReadingState.PLAYING
        self._books[key] = book
        self.current_key = key
        logger.info(
            "Now playing %s%s",
            key,
            f" (paused {previous.album_key})" if previous is not None else "",
        )
        return OperationResult.changed(book)

    def pause_current(self) -> OperationResult:
        book = self.current()
        if book is None or not book.is_playing:
            return OperationResult.unchanged(book)
        book.reading_state = ReadingState.PAUSED
        return OperationResult.changed(book)

    def update_progress(self, key: str, progress: float) -> OperationResult:
        if not 0.0 <= progress <= 1.0:
            raise InvalidProgress(f"Progress must be within [0, 1], got {progress}")
        book = self.get(key)
        if book.progress == progress:
            return OperationResult.unchanged(book)
        book.progress = progress
        return OperationResult.changed(book)

    # ------------------------------------------------------------------
    # Download state
    # ------------------------------------------------------------------
    def download(self, key: str, download_dir: Path) -> OperationResult:
        """Resolve and prepare a local location for the book. Idempotent."""
        book = self.get(key)
        if book.is_downloaded:
            logger.debug("%s already downloaded to %s", key, book.downloaded_location)
            return OperationResult.unchanged(book)

        location = download_location(download_dir, key)
        try:
            location.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DownloadFailed(f"Cannot prepare {location}: {exc}") from exc

        book.downloaded_location = str(location)
        logger.info("Downloaded %s to %s", key, location)
        return OperationResult.changed(book)

    def remove_download(self, key: str) -> OperationResult:
        book = self.get(key)
        if not book.is_downloaded:
            raise BookNotDownloaded(f"{key} is not downloaded")

        location = Path(book.downloaded_location)
        try:
            location.rmdir()
        except FileNotFoundError:
            pass
        except OSError as exc:
            # Leave a non-empty directory for the user to inspect
            logger.warning("Keeping %s: %s", location, exc)

        book.downloaded_location = None
        logger.info("Removed download of %s", key)
        return OperationResult.changed(book)
