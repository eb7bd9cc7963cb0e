"""
Single point of shared mutable access to the application state.

Every operation takes one process-wide lock for its whole duration, network
calls included, then persists the slices it changed and notifies listeners
once the lock is released. Domain failures come back as FAILED results.
A store write that fails after a change was applied leaves the result
CHANGED with the ``StoreError`` attached. A lock left inconsistent by an
unexpected error raises ``LockFailure`` on every later call.
"""
import contextlib
import logging
import threading
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Set, Tuple, Type

from config import AppConfiguration

from .api_client import create_client
from .books import Books
from .data_models import Album, Book, Identity, PinRequest
from .errors import LockFailure, PinExpired, PlexBookError, StoreError, WaitingOnPin
from .pin_auth import PinAuthenticator
from .results import OperationResult
from .session_cascade import SessionCascade, parse_settings
from .store import JsonFileStore, StateRepository, Store

logger = logging.getLogger(__name__)


class ChangeEvent(str, Enum):
    SETTINGS_CHANGED = "update-settings"
    PLAYER_STATE_CHANGED = "update-player"
    DOWNLOAD_STATE_CHANGED = "update-download"


ChangeListener = Callable[[ChangeEvent], None]


class AppState:
    """Owns the session cascade, the pending pin, the books and the repository."""

    def __init__(
        self,
        session: SessionCascade,
        books: Books,
        repository: StateRepository,
        *,
        pin_auth: Optional[PinAuthenticator] = None,
        download_dir: Path = Path("books"),
    ) -> None:
        self.session = session
        self.books = books
        self.repository = repository
        self.pin_auth = pin_auth or PinAuthenticator(session.client)
        self.download_dir = Path(download_dir)

        self._lock = threading.Lock()
        self._poisoned = False
        self._listeners: List[ChangeListener] = []

    @classmethod
    def load(
        cls,
        config: AppConfiguration,
        *,
        store: Optional[Store] = None,
        client=None,
        refresh: bool = True,
    ) -> "AppState":
        """
        Build the state from the persistent store.

        Args:
            config: Application configuration
            store: Store to use instead of the configured JSON file
            client: Service client to use instead of ``create_client``; it
                must read headers from the returned state's identity
            refresh: If True and a user is signed in, rebuild caches
        """
        store = store if store is not None else JsonFileStore(config.store_path)
        store.load()
        repository = StateRepository(store)
        if config.reset_store:
            repository.reset()

        settings = parse_settings(repository.load_settings())
        identity: Identity = settings["identity"]
        if client is None:
            client = create_client(config, identity)
        elif hasattr(client, "identity"):
            client.identity = identity

        session = SessionCascade(
            client,
            identity,
            selected_connection=settings["selected_connection"],
            selected_library=settings["selected_library"],
        )
        books = Books(repository.load_books(), repository.load_current_book())
        pin_auth = PinAuthenticator(client, default_timeout=config.pin_timeout_seconds)

        state = cls(session, books, repository, pin_auth=pin_auth, download_dir=config.download_dir)
        if refresh and session.has_user():
            session.refresh_all()
            if session.selected_connection != settings["selected_connection"]:
                repository.save_settings(session.to_settings())
        logger.info(
            "Application state loaded: signed_in=%s books=%d",
            session.has_user(),
            len(books),
        )
        return state

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------
    def add_listener(self, callback: ChangeListener) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: ChangeListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self, events: Set[ChangeEvent]) -> None:
        for event in sorted(events, key=lambda e: e.value):
            for callback in list(self._listeners):
                try:
                    callback(event)
                except Exception as exc:
                    logger.error(f"Error in change listener: {exc}")

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------
    @contextlib.contextmanager
    def _exclusive(self) -> Iterator[None]:
        with self._lock:
            if self._poisoned:
                raise LockFailure("Application state is inconsistent after an earlier failure")
            try:
                yield
            except PlexBookError:
                raise
            except BaseException:
                self._poisoned = True
                logger.exception("Unexpected failure while holding the state lock")
                raise

    def _run(
        self,
        name: str,
        operation,
        events: Set[ChangeEvent],
        *,
        notify_failures: Tuple[Type[PlexBookError], ...] = (),
    ) -> OperationResult:
        """
        Run ``operation`` under the lock and notify on CHANGED.

        Failures listed in ``notify_failures`` still changed state (for
        instance a pin dropped on expiry) and notify as well.
        """
        try:
            with self._exclusive():
                result = operation()
        except LockFailure:
            raise
        except PlexBookError as exc:
            logger.error("%s failed: %s", name, exc)
            if isinstance(exc, notify_failures):
                self._notify(events)
            return OperationResult.failed(exc)
        if result.is_changed:
            self._notify(events)
        return result

    def _read(self, getter):
        with self._exclusive():
            return getter()

    def _persist(self, save, *args, **kwargs) -> Optional[StoreError]:
        """Write an applied change; a store failure is reported, not undone."""
        try:
            save(*args, **kwargs)
        except StoreError as exc:
            logger.error(f"Change applied but not persisted: {exc}")
            return exc
        return None

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    def create_pin(self) -> OperationResult:
        def operation():
            return OperationResult.changed(self.pin_auth.create_pin())

        return self._run("create_pin", operation, {ChangeEvent.SETTINGS_CHANGED})

    def check_pin(self) -> OperationResult:
        """Poll the pending pin; sign in and refresh every cache once approved."""

        def operation():
            try:
                token = self.pin_auth.poll()
            except WaitingOnPin:
                return OperationResult.unchanged(self.pin_auth.pending)
            self.session.sign_in(token)
            return OperationResult.changed(token, self._persist(self._save_settings))

        return self._run(
            "check_pin",
            operation,
            {ChangeEvent.SETTINGS_CHANGED},
            notify_failures=(PinExpired,),
        )

    def sign_out(self) -> OperationResult:
        def operation():
            self.session.sign_out()
            self.pin_auth.reset()
            return OperationResult.changed(None, self._persist(self._save_settings))

        return self._run("sign_out", operation, {ChangeEvent.SETTINGS_CHANGED})

    def refresh(self) -> OperationResult:
        def operation():
            self.session.refresh_all()
            return OperationResult.changed(None, self._persist(self._save_settings))

        return self._run("refresh", operation, {ChangeEvent.SETTINGS_CHANGED})

    # ------------------------------------------------------------------
    # Selection cascade
    # ------------------------------------------------------------------
    def select_server(self, name: str) -> OperationResult:
        def operation():
            selected = self.session.select_server(name)
            return OperationResult.changed(selected, self._persist(self._save_settings))

        return self._run("select_server", operation, {ChangeEvent.SETTINGS_CHANGED})

    def reset_server_selection(self) -> OperationResult:
        def operation():
            self.session.reset_server_selection()
            return OperationResult.changed(None, self._persist(self._save_settings))

        return self._run("reset_server_selection", operation, {ChangeEvent.SETTINGS_CHANGED})

    def select_library(self, title: str) -> OperationResult:
        def operation():
            library = self.session.select_library(title)
            return OperationResult.changed(library, self._persist(self._save_settings))

        return self._run("select_library", operation, {ChangeEvent.SETTINGS_CHANGED})

    def reset_library_selection(self) -> OperationResult:
        def operation():
            self.session.reset_library_selection()
            return OperationResult.changed(None, self._persist(self._save_settings))

        return self._run("reset_library_selection", operation, {ChangeEvent.SETTINGS_CHANGED})

    # ------------------------------------------------------------------
    # Books
    # ------------------------------------------------------------------
    def start_playing(self, key: str) -> OperationResult:
        def operation():
            previous = self.books.current()
            result = self.books.start_playing(key, self.session.get_album)
            if not result.is_changed:
                return result
            changed = [book for book in (previous, result.value) if book is not None]
            error = self._persist(
                self.repository.save_books,
                list(self.books),
                self.books.current_key,
                changed=changed,
            )
            return OperationResult.changed(result.value, error)

        return self._run("start_playing", operation, {ChangeEvent.PLAYER_STATE_CHANGED})

    def update_progress(self, key: str, progress: float) -> OperationResult:
        def operation():
            result = self.books.update_progress(key, progress)
            if not result.is_changed:
                return result
            return OperationResult.changed(
                result.value, self._persist(self.repository.save_book, result.value)
            )

        return self._run("update_progress", operation, {ChangeEvent.PLAYER_STATE_CHANGED})

    def download(self, key: str) -> OperationResult:
        def operation():
            result = self.books.download(key, self.download_dir)
            if not result.is_changed:
                return result
            return OperationResult.changed(
                result.value, self._persist(self.repository.save_book, result.value)
            )

        return self._run("download", operation, {ChangeEvent.DOWNLOAD_STATE_CHANGED})

    def remove_download(self, key: str) -> OperationResult:
        def operation():
            result = self.books.remove_download(key)
            return OperationResult.changed(
                result.value, self._persist(self.repository.save_book, result.value)
            )

        return self._run("remove_download", operation, {ChangeEvent.DOWNLOAD_STATE_CHANGED})

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def has_user(self) -> bool:
        return self._read(self.session.has_user)

    def pending_pin(self) -> Optional[PinRequest]:
        return self._read(lambda: self.pin_auth.pending)

    def servers(self) -> List[str]:
        return self._read(self.session.list_servers)

    def selected_server(self) -> Optional[str]:
        return self._read(lambda: self.session.selected_server)

    def libraries(self) -> List[str]:
        return self._read(self.session.list_libraries)

    def selected_library(self) -> Optional[str]:
        return self._read(
            lambda: self.session.selected_library.title if self.session.selected_library else None
        )

    def albums(self) -> List[Album]:
        return self._read(self.session.list_albums)

    def album(self, key: str) -> Album:
        return self._read(lambda: self.session.get_album(key))

    def thumb_url(self, thumb: str) -> str:
        return self._read(lambda: self.session.authenticated_thumb_url(thumb))

    def book_list(self) -> List[Book]:
        return self._read(lambda: list(self.books))

    def current_book(self) -> Optional[Book]:
        return self._read(self.books.current)

    def book_album(self, key: str) -> Optional[Album]:
        """The cached album of a book, or None when the cache no longer has it."""

        def getter():
            self.books.get(key)
            try:
                return self.session.get_album(key)
            except PlexBookError:
                return None

        return self._read(getter)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def _save_settings(self) -> None:
        self.repository.save_settings(self.session.to_settings())

    def save_all(self) -> None:
        with self._exclusive():
            self._save_settings()
            self.repository.save_books(list(self.books), self.books.current_key)

    def close(self) -> None:
        """Best-effort final save, then release the service client."""
        try:
            self.save_all()
        except PlexBookError as exc:
            logger.error(f"Final save failed: {exc}")
        self.session.client.close()
        logger.info("Application state closed")


def build_app_state(config: Optional[AppConfiguration] = None) -> AppState:
    """Construct the one AppState of a running application."""
    return AppState.load(config or AppConfiguration.from_env())
