"""
Pairing-pin authentication.

The user is shown a short code, approves it elsewhere, and the caller polls
until the service attaches a user token to the pin. This module keeps no
timers; the caller owns the polling cadence.
"""
import logging
import time
from enum import Enum
from typing import Callable, Optional

from .data_models import PinRequest
from .errors import NoPinPending, PinExpired, WaitingOnPin

logger = logging.getLogger(__name__)


class PinState(str, Enum):
    NO_PIN = "no_pin"
    PIN_PENDING = "pin_pending"
    AUTHENTICATED = "authenticated"


class PinAuthenticator:
    """
    Creates pairing pins and polls them for approval.

    Pins are never tracked for expiry by the service itself, so each pin is
    given a local lifetime: the ``expiresIn`` the service reported, or
    ``default_timeout`` seconds.
    """

    def __init__(
        self,
        client,
        *,
        default_timeout: float = 900,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.default_timeout = default_timeout
        self._clock = clock
        self._pending: Optional[PinRequest] = None
        self._issued_at: float = 0.0
        self._state = PinState.NO_PIN

    @property
    def state(self) -> PinState:
        return self._state

    @property
    def pending(self) -> Optional[PinRequest]:
        return self._pending

    def create_pin(self) -> PinRequest:
        """Issue a new pin, replacing any pending one."""
        pin = self.client.generate_pin()
        self._pending = pin
        self._issued_at = self._clock()
        self._state = PinState.PIN_PENDING
        logger.info("Pairing pin issued (id=%s)", pin.id)
        return pin

    def _expired(self, pin: PinRequest) -> bool:
        lifetime = pin.expires_in if pin.expires_in else self.default_timeout
        return self._clock() - self._issued_at >= lifetime

    def poll(self, pin: Optional[PinRequest] = None) -> str:
        """
        Check whether a pin has been approved.

        Args:
            pin: Pin to check, defaults to the pending pin

        Returns:
            The user token attached to the approved pin

        Raises:
            NoPinPending: If there is no pin to check
            PinExpired: If the pin's local lifetime has elapsed
            WaitingOnPin: If the pin is not approved yet
        """
        pin = pin or self._pending
        if pin is None:
            raise NoPinPending("No pairing pin has been issued")

        if self._pending is not None and pin.id == self._pending.id and self._expired(pin):
            logger.warning("Pairing pin %s expired", pin.id)
            self.reset()
            raise PinExpired(f"Pin {pin.code} expired")

        checked = self.client.check_pin(pin.id)
        if not checked.auth_token:
            logger.debug("Pin %s not approved yet", pin.id)
            raise WaitingOnPin(f"Waiting on pin {pin.code}")

        self._pending = None
        self._state = PinState.AUTHENTICATED
        logger.info("Pairing pin %s approved", pin.id)
        return checked.auth_token

    def reset(self) -> None:
        self._pending = None
        self._issued_at = 0.0
        self._state = PinState.NO_PIN
