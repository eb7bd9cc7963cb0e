"""
AppState coordination: locking, persistence of changed slices and change
notifications, driven through the fake media service.
"""
import threading
import time

import pytest

from config import AppConfiguration
from core.app_state import AppState, ChangeEvent
from core.data_models import Album, Connection, Library, ReadingState, Resource
from core.errors import (
    BookNotDownloaded,
    LockFailure,
    NetworkError,
    NoAlbumFound,
    NoAlbumsFound,
    NoLibrariesFound,
    NoPinPending,
    NoResourcesFound,
    PinExpired,
    StoreError,
)
from core.fake_client import FakeServiceClient
from core.results import Outcome
from core.store import (
    BOOK_INDEX_KEY,
    CURRENT_BOOK_KEY,
    SETTINGS_KEY,
    JsonFileStore,
    MemoryStore,
    book_key,
)

HOME_URI = "http://home:32400"


def _client(**kwargs):
    library = Library(title="Audiobooks", key="3", media_type="artist")
    albums = [
        Album(rating_key="abc", title="The Hobbit", parent_title="Tolkien", thumb="/t/abc"),
        Album(rating_key="def", title="Dune", parent_title="Herbert", thumb="/t/def"),
    ]
    return FakeServiceClient(
        resources=[Resource("Home", (Connection(HOME_URI),))],
        libraries={HOME_URI: [library]},
        albums={(HOME_URI, "3"): albums},
        reachable={HOME_URI},
        **kwargs,
    )


def _state(tmp_path, store=None, client=None, **config):
    config.setdefault("download_dir", tmp_path / "books")
    return AppState.load(
        AppConfiguration(**config),
        store=store if store is not None else MemoryStore(),
        client=client or _client(),
    )


def _events(state):
    events = []
    state.add_listener(events.append)
    return events


def _browsing(tmp_path, store=None):
    client = _client(auto_approve_token="T1")
    state = _state(tmp_path, store=store, client=client)
    state.create_pin()
    state.check_pin()
    state.select_server("Home")
    state.select_library("Audiobooks")
    return state


# ----------------------------------------------------------------------
# Sign-in
# ----------------------------------------------------------------------
def test_pin_flow_waits_then_signs_in(tmp_path):
    client = _client()
    store = MemoryStore()
    state = _state(tmp_path, store=store, client=client)
    events = _events(state)

    created = state.create_pin()
    assert created.is_changed
    assert (created.value.id, created.value.code, created.value.auth_token) == (1, "ABCD", None)

    waiting = state.check_pin()
    assert waiting.outcome is Outcome.UNCHANGED
    assert waiting.value == created.value
    assert not state.has_user()

    client.approve("T1")
    signed_in = state.check_pin()
    assert signed_in.is_changed
    assert state.has_user()
    assert state.servers() == ["Home"]
    assert client.call_count("list_resources") == 1
    assert state.pending_pin() is None
    assert store.get(SETTINGS_KEY)["userToken"] == "T1"
    assert events == [ChangeEvent.SETTINGS_CHANGED, ChangeEvent.SETTINGS_CHANGED]


def test_check_pin_without_pin_fails(tmp_path):
    result = _state(tmp_path).check_pin()

    assert result.is_failed
    assert isinstance(result.error, NoPinPending)


def test_expired_pin_fails_clears_and_notifies(tmp_path):
    state = _state(tmp_path)
    state.create_pin()
    state.pin_auth.default_timeout = 0
    events = _events(state)

    result = state.check_pin()
    assert isinstance(result.error, PinExpired)
    assert state.pending_pin() is None
    assert events == [ChangeEvent.SETTINGS_CHANGED]


def test_network_failure_while_polling_keeps_pin(tmp_path):
    client = _client()
    state = _state(tmp_path, client=client)
    pin = state.create_pin().value
    client.fail_with("check_pin", NetworkError("timeout"))

    result = state.check_pin()
    assert isinstance(result.error, NetworkError)
    assert state.pending_pin() == pin


def test_sign_out_clears_session_and_persists(tmp_path):
    store = MemoryStore()
    state = _browsing(tmp_path, store=store)

    assert state.sign_out().is_changed
    assert not state.has_user()
    assert state.selected_server() is None
    assert store.get(SETTINGS_KEY)["userToken"] is None
    assert store.get(SETTINGS_KEY)["selectedConnection"] is None
    assert state.sign_out().is_changed


# ----------------------------------------------------------------------
# Selection
# ----------------------------------------------------------------------
def test_selection_persists_settings(tmp_path):
    store = MemoryStore()
    state = _browsing(tmp_path, store=store)

    settings = store.get(SETTINGS_KEY)
    assert settings["selectedConnection"] == {"name": "Home", "uri": HOME_URI}
    assert settings["selectedLibrary"]["title"] == "Audiobooks"
    assert [a.rating_key for a in state.albums()] == ["def", "abc"]
    assert state.thumb_url("/t/abc") == f"{HOME_URI}/t/abc?X-Plex-Token=T1"


def test_select_server_with_empty_cache_changes_nothing(tmp_path):
    store = MemoryStore()
    state = _state(tmp_path, store=store)
    state.session.identity.user_token = "T1"
    saves = store.saves
    events = _events(state)
    before = state.session.to_settings()

    result = state.select_server("Home")

    assert isinstance(result.error, NoResourcesFound)
    assert state.session.to_settings() == before
    assert store.saves == saves
    assert events == []


def test_failed_selection_keeps_previous(tmp_path):
    state = _browsing(tmp_path)

    assert state.select_server("Nowhere").is_failed
    assert state.select_library("Comics").is_failed
    assert state.selected_server() == "Home"
    assert state.selected_library() == "Audiobooks"


def test_reset_server_selection_cascades(tmp_path):
    state = _browsing(tmp_path)
    assert state.reset_server_selection().is_changed

    assert state.selected_server() is None
    assert state.selected_library() is None
    with pytest.raises(NoAlbumsFound):
        state.albums()
    with pytest.raises(NoLibrariesFound):
        state.libraries()


def test_reset_library_selection(tmp_path):
    state = _browsing(tmp_path)
    assert state.reset_library_selection().is_changed

    assert state.selected_server() == "Home"
    assert state.selected_library() is None


def test_refresh_drops_server_no_longer_listed(tmp_path):
    store = MemoryStore()
    state = _browsing(tmp_path, store=store)
    state.session.client.resources = [Resource("Other", (Connection("http://other:32400"),))]
    events = _events(state)

    assert state.refresh().is_changed

    assert state.servers() == ["Other"]
    assert state.selected_server() is None
    assert state.selected_library() is None
    assert store.get(SETTINGS_KEY)["selectedConnection"] is None
    assert events == [ChangeEvent.SETTINGS_CHANGED]


def test_reload_drops_persisted_server_no_longer_listed(tmp_path):
    store = MemoryStore()
    _browsing(tmp_path, store=store).close()

    client = _client()
    client.resources = [Resource("Other", (Connection("http://other:32400"),))]
    reloaded = _state(tmp_path, store=store, client=client)

    assert reloaded.has_user()
    assert reloaded.selected_server() is None
    assert reloaded.selected_library() is None
    assert store.get(SETTINGS_KEY)["selectedConnection"] is None
    assert store.get(SETTINGS_KEY)["selectedLibrary"] is None


# ----------------------------------------------------------------------
# Playback and downloads
# ----------------------------------------------------------------------
def test_start_playing_persists_and_notifies(tmp_path):
    store = MemoryStore()
    state = _browsing(tmp_path, store=store)
    events = _events(state)

    result = state.start_playing("abc")

    assert result.is_changed
    assert store.get(BOOK_INDEX_KEY) == ["abc"]
    assert store.get(book_key("abc"))["readingState"] == "Playing"
    assert store.get(CURRENT_BOOK_KEY) == "abc"
    assert events == [ChangeEvent.PLAYER_STATE_CHANGED]


def test_toggle_skips_persistence_and_notification(tmp_path):
    store = MemoryStore()
    state = _browsing(tmp_path, store=store)
    state.start_playing("abc")
    saves = store.saves
    events = _events(state)

    result = state.start_playing("abc")

    assert result.is_unchanged
    assert result.value.reading_state is ReadingState.PAUSED
    assert len(state.book_list()) == 1
    assert store.saves == saves
    assert events == []


def test_switching_books_leaves_one_playing(tmp_path):
    store = MemoryStore()
    state = _browsing(tmp_path, store=store)
    state.start_playing("abc")
    state.start_playing("def")

    playing = [book.album_key for book in state.book_list() if book.is_playing]
    assert playing == ["def"]
    assert store.get(book_key("abc"))["readingState"] == "Paused"
    assert store.get(CURRENT_BOOK_KEY) == "def"


def test_start_playing_unknown_album_fails(tmp_path):
    state = _browsing(tmp_path)
    result = state.start_playing("zzz")

    assert isinstance(result.error, NoAlbumFound)
    assert state.book_list() == []


def test_download_twice_stores_one_location(tmp_path):
    store = MemoryStore()
    state = _browsing(tmp_path, store=store)
    state.start_playing("abc")
    events = _events(state)

    first = state.download("abc")
    saves = store.saves
    second = state.download("abc")

    assert first.is_changed and second.is_unchanged
    assert store.saves == saves
    assert store.get(book_key("abc"))["downloadedLocation"] == str(tmp_path / "books" / "abc")
    assert events == [ChangeEvent.DOWNLOAD_STATE_CHANGED]


def test_remove_download_of_never_downloaded_book(tmp_path):
    state = _browsing(tmp_path)
    state.start_playing("abc")
    before = state.current_book().to_dict()

    result = state.remove_download("abc")

    assert isinstance(result.error, BookNotDownloaded)
    assert state.current_book().to_dict() == before


def test_stale_book_reference_is_tolerated(tmp_path):
    state = _browsing(tmp_path)
    state.start_playing("abc")
    state.reset_library_selection()

    assert state.book_album("abc") is None
    assert state.start_playing("abc").is_unchanged
    assert state.download("abc").is_changed


# ----------------------------------------------------------------------
# Loading and shutdown
# ----------------------------------------------------------------------
def test_reload_restores_session_and_books(tmp_path):
    store = MemoryStore()
    state = _browsing(tmp_path, store=store)
    state.start_playing("abc")
    state.update_progress("abc", 0.3)
    client_id = state.session.identity.client_identifier
    session_id = state.session.identity.session_identifier
    state.close()

    client = _client()
    reloaded = _state(tmp_path, store=store, client=client)

    assert reloaded.has_user()
    assert reloaded.selected_server() == "Home"
    assert reloaded.selected_library() == "Audiobooks"
    assert reloaded.session.identity.client_identifier == client_id
    assert reloaded.session.identity.session_identifier != session_id
    assert reloaded.current_book().progress == 0.3
    assert [a.rating_key for a in reloaded.albums()] == ["def", "abc"]
    assert client.call_count("list_resources") == 1


def test_close_saves_toggled_state(tmp_path):
    store = MemoryStore()
    state = _browsing(tmp_path, store=store)
    state.start_playing("abc")
    state.start_playing("abc")
    state.close()

    assert store.get(book_key("abc"))["readingState"] == "Paused"
    assert state.session.client.closed


def test_reset_store_starts_fresh(tmp_path):
    store = MemoryStore({SETTINGS_KEY: {"userToken": "T1"}})
    state = _state(tmp_path, store=store, reset_store=True)

    assert not state.has_user()


# ----------------------------------------------------------------------
# Persistence failures
# ----------------------------------------------------------------------
def _unwritable(store, tmp_path):
    blocked = tmp_path / "blocked"
    blocked.mkdir()
    store.path = blocked


def test_store_failure_after_selection_keeps_change(tmp_path):
    store = JsonFileStore(tmp_path / "store.json")
    state = _browsing(tmp_path, store=store)
    _unwritable(store, tmp_path)
    events = _events(state)

    result = state.select_server("Home")

    assert result.is_changed
    assert isinstance(result.error, StoreError)
    assert state.selected_server() == "Home"
    assert events == [ChangeEvent.SETTINGS_CHANGED]
    assert list(tmp_path.glob("*.tmp")) == []


def test_store_failure_after_playback_keeps_change(tmp_path):
    store = JsonFileStore(tmp_path / "store.json")
    state = _browsing(tmp_path, store=store)
    _unwritable(store, tmp_path)
    events = _events(state)

    result = state.start_playing("abc")

    assert result.is_changed
    assert isinstance(result.error, StoreError)
    assert state.current_book().is_playing
    assert events == [ChangeEvent.PLAYER_STATE_CHANGED]


# ----------------------------------------------------------------------
# Locking
# ----------------------------------------------------------------------
def test_operations_are_serialised(tmp_path):
    client = _client(probe_delays={HOME_URI: 0.3}, auto_approve_token="T1")
    state = _state(tmp_path, client=client)
    state.create_pin()
    state.check_pin()

    worker = threading.Thread(target=state.select_server, args=("Home",))
    worker.start()
    time.sleep(0.1)
    started = time.monotonic()
    # Blocks until the probing select_server releases the lock
    server = state.selected_server()
    waited = time.monotonic() - started
    worker.join()

    assert server == "Home"
    assert waited >= 0.1


def test_unexpected_failure_poisons_lock(tmp_path):
    state = _browsing(tmp_path)

    def broken(_event):
        raise AssertionError("listener errors are contained")

    state.add_listener(broken)
    assert state.start_playing("abc").is_changed

    state.books.start_playing = None
    with pytest.raises(TypeError):
        state.start_playing("def")
    with pytest.raises(LockFailure):
        state.has_user()
    with pytest.raises(LockFailure):
        state.select_library("Audiobooks")


def test_listener_removal(tmp_path):
    state = _state(tmp_path)
    events = _events(state)
    state.remove_listener(events.append)
    state.create_pin()

    assert events == []
