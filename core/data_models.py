"""Core data structures for the audiobook companion.

Plain dataclasses shared by the service client, the session cascade and the
book state machine. Parsing from the media server's JSON lives here so every
layer sees the same field names.
"""
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .errors import MalformedResponse


def new_identifier() -> str:
    return str(uuid.uuid4())


def _require(data: Any, key: str, kind: str) -> Any:
    if not isinstance(data, dict):
        raise MalformedResponse(f"Expected an object for {kind}, got {type(data).__name__}")
    if data.get(key) is None:
        raise MalformedResponse(f"{kind} is missing '{key}'")
    return data[key]


@dataclass
class Identity:
    """Request identity: installation id, per-process session id and user token."""
    client_identifier: str = field(default_factory=new_identifier)
    session_identifier: str = field(default_factory=new_identifier)
    user_token: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_token is not None

    def regenerate_session(self) -> None:
        self.session_identifier = new_identifier()


@dataclass(frozen=True)
class PinRequest:
    """A pairing pin issued by the media service."""
    id: int
    code: str
    auth_token: Optional[str] = None
    expires_in: Optional[int] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "PinRequest":
        pin_id = _require(data, "id", "pin")
        code = _require(data, "code", "pin")
        try:
            pin_id = int(pin_id)
        except (TypeError, ValueError) as exc:
            raise MalformedResponse(f"pin id is not an integer: {pin_id!r}") from exc
        expires_in = data.get("expiresIn")
        return cls(
            id=pin_id,
            code=str(code),
            auth_token=data.get("authToken") or None,
            expires_in=int(expires_in) if isinstance(expires_in, (int, float)) else None,
        )


@dataclass(frozen=True)
class Connection:
    """One candidate network endpoint of a resource."""
    uri: str


@dataclass(frozen=True)
class Resource:
    """A server advertised by the media service."""
    name: str
    connections: Tuple[Connection, ...] = ()

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Resource":
        name = _require(data, "name", "resource")
        connections = []
        for conn in data.get("connections") or []:
            connections.append(Connection(uri=str(_require(conn, "uri", "connection"))))
        return cls(name=str(name), connections=tuple(connections))


@dataclass(frozen=True)
class SelectedConnection:
    """The resource and endpoint currently in use."""
    name: str
    uri: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "uri": self.uri}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SelectedConnection":
        return cls(name=str(data["name"]), uri=str(data["uri"]))


@dataclass(frozen=True)
class Library:
    """A library section on a media server."""
    title: str
    key: str
    media_type: str = ""

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Library":
        return cls(
            title=str(_require(data, "title", "library")),
            key=str(_require(data, "key", "library")),
            media_type=str(data.get("type") or ""),
        )

    def to_dict(self) -> Dict[str, str]:
        return {"title": self.title, "key": self.key, "type": self.media_type}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Library":
        return cls(title=str(data["title"]), key=str(data["key"]), media_type=str(data.get("type", "")))


@dataclass(frozen=True)
class Album:
    """An album-kind entry of a library; identity is ``rating_key``."""
    rating_key: str
    title: str
    summary: str = ""
    parent_title: str = ""
    thumb: str = ""
    year: Optional[int] = None
    index: Optional[int] = None

    @property
    def author(self) -> str:
        return self.parent_title

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Album":
        year = data.get("year")
        index = data.get("index")
        return cls(
            rating_key=str(_require(data, "ratingKey", "album")),
            title=str(_require(data, "title", "album")),
            summary=str(data.get("summary") or ""),
            parent_title=str(data.get("parentTitle") or ""),
            thumb=str(data.get("thumb") or ""),
            year=int(year) if isinstance(year, int) else None,
            index=int(index) if isinstance(index, int) else None,
        )


class ReadingState(str, Enum):
    PLAYING = "Playing"
    PAUSED = "Paused"


@dataclass
class Book:
    """Reading and download state of one album, keyed by its rating key."""
    album_key: str
    reading_state: ReadingState = ReadingState.PLAYING
    progress: float = 0.0
    downloaded_location: Optional[str] = None

    @property
    def is_playing(self) -> bool:
        return self.reading_state is ReadingState.PLAYING

    @property
    def is_downloaded(self) -> bool:
        return self.downloaded_location is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "albumKey": self.album_key,
            "readingState": self.reading_state.value,
            "progress": self.progress,
            "downloadedLocation": self.downloaded_location,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Book":
        progress = float(data.get("progress") or 0.0)
        return cls(
            album_key=str(data["albumKey"]),
            reading_state=ReadingState(data.get("readingState", ReadingState.PAUSED.value)),
            progress=min(1.0, max(0.0, progress)),
            downloaded_location=data.get("downloadedLocation"),
        )
