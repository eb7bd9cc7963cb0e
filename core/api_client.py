import logging
import platform
from typing import Any, Dict, List, Optional, Protocol

import requests

from config import AppConfiguration
from core.data_models import Album, Identity, Library, PinRequest, Resource
from core.errors import MalformedResponse, NetworkError

logger = logging.getLogger(__name__)

ALBUM_MEDIA_TYPE = "9"


class ServiceClient(Protocol):
    """Operations the core needs from the media service."""

    def generate_pin(self) -> PinRequest: ...

    def check_pin(self, pin_id: int) -> PinRequest: ...

    def list_resources(self) -> List[Resource]: ...

    def list_libraries(self, server_uri: str) -> List[Library]: ...

    def list_albums(self, server_uri: str, library_key: str) -> List[Album]: ...

    def probe(self, uri: str) -> bool: ...

    def close(self) -> None: ...


class PlexAPIClient:

    def __init__(
        self,
        identity: Identity,
        *,
        base_url: str = "https://plex.tv/api/v2",
        timeout: float = 5.0,
        product_name: str = "plexbooks",
        version: str = "0.1.0",
        session: Optional[requests.Session] = None,
    ):
        self.identity = identity
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.product_name = product_name
        self.version = version
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        # Rebuilt per request so sign-in and sign-out take effect immediately
        headers = {
            "Accept": "application/json",
            "X-Plex-Provides": "player",
            "X-Plex-Platform": platform.system() or "unknown",
            "X-Plex-Platform-Version": platform.machine() or "unknown",
            "X-Plex-Client-Name": self.product_name,
            "X-Plex-Product": self.product_name,
            "X-Plex-Version": self.version,
            "X-Plex-Client-Identifier": self.identity.client_identifier,
            "X-Plex-Session-Identifier": self.identity.session_identifier,
        }
        if self.identity.user_token:
            headers["X-Plex-Token"] = self.identity.user_token
        return headers

    def _request(self, method: str, url: str, params: Optional[Dict[str, str]] = None) -> Any:
        logger.debug(f"{method} {url}")
        try:
            response = self.session.request(
                method, url, headers=self._headers(), params=params, timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"{method} {url} failed: {e}")
            raise NetworkError(str(e)) from e

        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponse(f"Invalid JSON from {url}: {e}") from e

    @staticmethod
    def _media_container(data: Any, item_key: str) -> List[Dict[str, Any]]:
        if not isinstance(data, dict) or not isinstance(data.get("MediaContainer"), dict):
            raise MalformedResponse("Response is missing MediaContainer")
        items = data["MediaContainer"].get(item_key)
        # Plex omits the item list entirely for empty sections
        if items is None:
            return []
        if not isinstance(items, list):
            raise MalformedResponse(f"MediaContainer.{item_key} is not a list")
        return items

    def generate_pin(self) -> PinRequest:
        data = self._request("POST", f"{self.base_url}/pins")
        pin = PinRequest.from_json(data)
        logger.debug(f"Created pin {pin.id}")
        return pin

    def check_pin(self, pin_id: int) -> PinRequest:
        data = self._request("GET", f"{self.base_url}/pins/{pin_id}")
        return PinRequest.from_json(data)

    def list_resources(self) -> List[Resource]:
        data = self._request("GET", f"{self.base_url}/resources")
        if not isinstance(data, list):
            raise MalformedResponse("Resource listing is not a list")
        resources = [Resource.from_json(item) for item in data]
        logger.info(f"Loaded {len(resources)} resources")
        return resources

    def list_libraries(self, server_uri: str) -> List[Library]:
        data = self._request("GET", f"{server_uri.rstrip('/')}/library/sections/")
        libraries = [Library.from_json(item) for item in self._media_container(data, "Directory")]
        logger.info(f"Loaded {len(libraries)} libraries from {server_uri}")
        return libraries

    def list_albums(self, server_uri: str, library_key: str) -> List[Album]:
        url = f"{server_uri.rstrip('/')}/library/sections/{library_key}/all"
        data = self._request("GET", url, params={"type": ALBUM_MEDIA_TYPE})
        albums = [Album.from_json(item) for item in self._media_container(data, "Metadata")]
        logger.info(f"Loaded {len(albums)} albums from library {library_key}")
        return albums

    def probe(self, uri: str) -> bool:
        """True if the endpoint answered at all, whatever the status or payload."""
        try:
            self.session.get(uri, headers=self._headers(), timeout=self.timeout)
            return True
        except requests.RequestException as e:
            logger.debug(f"Probe of {uri} failed: {e}")
            return False

    def close(self) -> None:
        self.session.close()
        logger.info("PlexAPIClient closed")


def create_client(config: AppConfiguration, identity: Identity) -> ServiceClient:
    """Build the service client selected by ``config.use_mock_client``."""
    if config.use_mock_client:
        from core.fake_client import FakeServiceClient

        logger.info("Using demo media service")
        return FakeServiceClient.demo()
    return PlexAPIClient(
        identity,
        base_url=config.api_base_url,
        timeout=config.request_timeout,
        product_name=config.product_name,
        version=config.version,
    )
