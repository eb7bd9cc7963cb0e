"""
Deterministic in-memory media service.

Stands in for ``PlexAPIClient`` in tests and in demo mode. Probe latency is
controlled per URI so concurrent probing is reproducible.
"""
import logging
import threading
import time
from collections import deque
from typing import Dict, Iterable, List, Optional, Tuple

from .data_models import Album, Connection, Library, PinRequest, Resource
from .errors import PlexBookError

logger = logging.getLogger(__name__)


class FakeServiceClient:
    """ServiceClient backed by fixed data and scripted pin approvals."""

    def __init__(
        self,
        *,
        resources: Iterable[Resource] = (),
        libraries: Optional[Dict[str, List[Library]]] = None,
        albums: Optional[Dict[Tuple[str, str], List[Album]]] = None,
        reachable: Iterable[str] = (),
        probe_delays: Optional[Dict[str, float]] = None,
        pin_codes: Iterable[str] = (),
        auto_approve_token: Optional[str] = None,
    ) -> None:
        self.resources = list(resources)
        self.libraries = dict(libraries or {})
        self.albums = dict(albums or {})
        self.reachable = set(reachable)
        self.probe_delays = dict(probe_delays or {})
        self.auto_approve_token = auto_approve_token

        self.calls: List[Tuple[str, tuple]] = []
        self.closed = False

        self._pin_codes = deque(pin_codes)
        self._next_pin_id = 1
        self._pins: Dict[int, PinRequest] = {}
        self._failures: Dict[str, PlexBookError] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Test controls
    # ------------------------------------------------------------------
    def approve(self, token: str, pin_id: Optional[int] = None) -> None:
        """Simulate the user completing pairing out-of-band."""
        with self._lock:
            targets = [pin_id] if pin_id is not None else list(self._pins)
            for pid in targets:
                pin = self._pins[pid]
                self._pins[pid] = PinRequest(pin.id, pin.code, token, pin.expires_in)

    def fail_with(self, operation: str, error: Optional[PlexBookError]) -> None:
        """Make ``operation`` raise ``error`` until cleared with None."""
        with self._lock:
            if error is None:
                self._failures.pop(operation, None)
            else:
                self._failures[operation] = error

    def call_count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def _record(self, operation: str, *args) -> None:
        with self._lock:
            self.calls.append((operation, args))
            error = self._failures.get(operation)
        if error is not None:
            raise error

    # ------------------------------------------------------------------
    # ServiceClient
    # ------------------------------------------------------------------
    def generate_pin(self) -> PinRequest:
        self._record("generate_pin")
        with self._lock:
            code = self._pin_codes.popleft() if self._pin_codes else "ABCD"
            pin = PinRequest(id=self._next_pin_id, code=code)
            self._next_pin_id += 1
            self._pins[pin.id] = pin
        return pin

    def check_pin(self, pin_id: int) -> PinRequest:
        self._record("check_pin", pin_id)
        with self._lock:
            pin = self._pins.get(pin_id) or PinRequest(id=pin_id, code="")
            if pin.auth_token is None and self.auto_approve_token:
                pin = PinRequest(pin.id, pin.code, self.auto_approve_token, pin.expires_in)
                self._pins[pin_id] = pin
        return pin

    def list_resources(self) -> List[Resource]:
        self._record("list_resources")
        return list(self.resources)

    def list_libraries(self, server_uri: str) -> List[Library]:
        self._record("list_libraries", server_uri)
        return list(self.libraries.get(server_uri, []))

    def list_albums(self, server_uri: str, library_key: str) -> List[Album]:
        self._record("list_albums", server_uri, library_key)
        return list(self.albums.get((server_uri, library_key), []))

    def probe(self, uri: str) -> bool:
        self._record("probe", uri)
        delay = self.probe_delays.get(uri, 0.0)
        if delay:
            time.sleep(delay)
        return uri in self.reachable

    def close(self) -> None:
        self.closed = True

    @classmethod
    def demo(cls) -> "FakeServiceClient":
        """A populated service whose pins approve on first check."""
        home = "http://192.168.1.10:32400"
        library = Library(title="Audiobooks", key="3", media_type="artist")
        albums = [
            Album(
                rating_key="101",
                title="The Hobbit",
                summary="A hobbit goes there and back again.",
                parent_title="J. R. R. Tolkien",
                thumb="/library/metadata/101/thumb/1",
                year=1937,
                index=1,
            ),
            Album(
                rating_key="102",
                title="Dune",
                summary="Spice, sand and prophecy.",
                parent_title="Frank Herbert",
                thumb="/library/metadata/102/thumb/1",
                year=1965,
                index=1,
            ),
        ]
        return cls(
            resources=[
                Resource(
                    name="Home",
                    connections=(Connection("http://10.255.255.1:32400"), Connection(home)),
                )
            ],
            libraries={home: [library]},
            albums={(home, library.key): albums},
            reachable={home},
            auto_approve_token="demo-token",
        )
