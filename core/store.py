"""
Key-value persistence and the repository that maps state slices onto it.

Keys:
    settings       session cascade settings blob
    books          index of book keys
    book:{key}     one entry per book
    current-book   key of the current book, or null
"""
import contextlib
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from .data_models import Book
from .errors import StoreError

logger = logging.getLogger(__name__)

SETTINGS_KEY = "settings"
BOOK_INDEX_KEY = "books"
CURRENT_BOOK_KEY = "current-book"


def book_key(album_key: str) -> str:
    return f"book:{album_key}"


class Store(Protocol):
    def load(self) -> None: ...

    def get(self, key: str) -> Any: ...

    def insert(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...

    def save(self) -> None: ...

    def clear(self) -> None: ...


class MemoryStore:
    """Store kept entirely in memory; ``saves`` counts flushes."""

    def __init__(self, data: Optional[Dict[str, Any]] = None) -> None:
        self.data: Dict[str, Any] = dict(data or {})
        self.saves = 0

    def load(self) -> None:
        pass

    def get(self, key: str) -> Any:
        return self.data.get(key)

    def insert(self, key: str, value: Any) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)

    def save(self) -> None:
        self.saves += 1

    def clear(self) -> None:
        self.data.clear()


class JsonFileStore(MemoryStore):
    """Store persisted as a single JSON object on disk."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self.path = Path(path)
        self._write_lock = threading.Lock()

    def load(self) -> None:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            data = {}
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Ignoring unreadable store {self.path}: {e}")
            data = {}
        self.data = data if isinstance(data, dict) else {}
        logger.debug(f"Loaded {len(self.data)} keys from {self.path}")

    def save(self) -> None:
        with self._write_lock:
            tmp_path = None
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(self.data, f, indent=2)
                os.replace(tmp_path, self.path)
            except (OSError, TypeError, ValueError) as e:
                if tmp_path is not None:
                    with contextlib.suppress(FileNotFoundError):
                        os.unlink(tmp_path)
                raise StoreError(f"Cannot write {self.path}: {e}") from e
            self.saves += 1


class StateRepository:
    """Loads and saves the settings, book and current-book slices."""

    def __init__(self, store: Store) -> None:
        self.store = store

    def _load_or_default(self, key: str, default: Any) -> Any:
        value = self.store.get(key)
        if value is None:
            logger.warning("Store has no %s entry, initialising default", key)
            self.store.insert(key, default)
            self.store.save()
            return default
        return value

    def load_settings(self) -> Dict[str, Any]:
        settings = self._load_or_default(SETTINGS_KEY, {})
        return settings if isinstance(settings, dict) else {}

    def save_settings(self, settings: Dict[str, Any]) -> None:
        logger.debug("Saving settings")
        self.store.insert(SETTINGS_KEY, settings)
        self.store.save()

    def load_books(self) -> Dict[str, Book]:
        """Load every indexed book, pruning entries that cannot be read."""
        index = self._load_or_default(BOOK_INDEX_KEY, [])
        index = index if isinstance(index, list) else []
        books: Dict[str, Book] = {}
        for key in index:
            entry = self.store.get(book_key(key))
            if entry is None:
                logger.warning("Book index lists %s but it has no entry", key)
                continue
            try:
                books[key] = Book.from_dict(entry)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Dropping unreadable book %s: %s", key, exc)
                self.store.delete(book_key(key))

        if len(books) != len(index):
            self.store.insert(BOOK_INDEX_KEY, list(books))
            self.store.save()
        return books

    def load_current_book(self) -> Optional[str]:
        current = self.store.get(CURRENT_BOOK_KEY)
        return str(current) if current else None

    def save_books(
        self, books: List[Book], current_key: Optional[str], *, changed: Optional[List[Book]] = None
    ) -> None:
        """Write the index, the current pointer and the given (or all) book entries."""
        logger.debug("Saving %d books", len(books))
        self.store.insert(BOOK_INDEX_KEY, [book.album_key for book in books])
        for book in books if changed is None else changed:
            self.store.insert(book_key(book.album_key), book.to_dict())
        self.store.insert(CURRENT_BOOK_KEY, current_key)
        self.store.save()

    def save_book(self, book: Book) -> None:
        self.store.insert(book_key(book.album_key), book.to_dict())
        self.store.save()

    def reset(self) -> None:
        logger.warning("Resetting persistent store")
        self.store.clear()
        self.store.save()
