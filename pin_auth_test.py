"""
Pairing pin creation and polling.
"""
import pytest

from core.data_models import PinRequest
from core.errors import NetworkError, NoPinPending, PinExpired, WaitingOnPin
from core.fake_client import FakeServiceClient
from core.pin_auth import PinAuthenticator, PinState


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_create_pin_returns_pending_pin():
    auth = PinAuthenticator(FakeServiceClient())
    pin = auth.create_pin()

    assert pin == PinRequest(id=1, code="ABCD", auth_token=None)
    assert auth.pending == pin
    assert auth.state is PinState.PIN_PENDING


def test_poll_before_approval_waits_and_keeps_pin():
    auth = PinAuthenticator(FakeServiceClient())
    pin = auth.create_pin()

    with pytest.raises(WaitingOnPin):
        auth.poll(pin)
    with pytest.raises(WaitingOnPin):
        auth.poll()
    assert auth.pending == pin
    assert auth.state is PinState.PIN_PENDING


def test_poll_after_approval_returns_token():
    client = FakeServiceClient()
    auth = PinAuthenticator(client)
    pin = auth.create_pin()
    client.approve("T1")

    assert auth.poll(pin) == "T1"
    assert auth.state is PinState.AUTHENTICATED
    assert auth.pending is None


def test_poll_without_pin_fails():
    with pytest.raises(NoPinPending):
        PinAuthenticator(FakeServiceClient()).poll()


def test_expired_pin_returns_to_no_pin():
    clock = _Clock()
    client = FakeServiceClient()
    auth = PinAuthenticator(client, default_timeout=60, clock=clock)
    auth.create_pin()

    clock.now += 61
    with pytest.raises(PinExpired):
        auth.poll()
    assert auth.state is PinState.NO_PIN
    assert auth.pending is None
    assert client.call_count("check_pin") == 0


def test_network_error_keeps_pending_pin():
    client = FakeServiceClient()
    auth = PinAuthenticator(client)
    pin = auth.create_pin()
    client.fail_with("check_pin", NetworkError("timeout"))

    with pytest.raises(NetworkError):
        auth.poll()
    assert auth.pending == pin


def test_new_pin_supersedes_pending_one():
    client = FakeServiceClient(pin_codes=["ONE1", "TWO2"])
    auth = PinAuthenticator(client)
    first = auth.create_pin()
    second = auth.create_pin()

    assert first.code == "ONE1"
    assert auth.pending == second
    assert second.id == 2
