import pytest
from unittest.mock import AsyncMock

from avnu import RemoteToken
from token_service import TokenService, reset_token_service


LORDS_ADDRESS = "0x0124aeb495b947201f5fac96fd1138e326ad86195b98df6dec9009158a533b49"
ZEND_ADDRESS = "0x00585c32b625999e6e5e78645ff8df7a9001cf5cf3eb6b80ccdd16cb64bd3a34"


class FakeClock:
    """Controllable time source in seconds."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: int) -> None:
        self.now += ms / 1000


def lords_token() -> RemoteToken:
    return RemoteToken(
        address=LORDS_ADDRESS,
        symbol="LORDS",
        name="LORDS",
        decimals=18,
        logo_uri="https://example.com/lords.png",
        daily_volume_usd=12345.0,
        tags=["Verified"],
    )


def zend_token() -> RemoteToken:
    return RemoteToken(address=ZEND_ADDRESS, symbol="ZEND", name="zkLend Token", decimals=18, tags=["Verified"])


@pytest.fixture(autouse=True)
def fresh_token_service():
    reset_token_service()
    yield
    reset_token_service()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def remote():
    source = AsyncMock()
    source.fetch_token_by_address = AsyncMock(return_value=lords_token())
    source.fetch_verified_token_by_symbol = AsyncMock(return_value=lords_token())
    return source


@pytest.fixture
def service(remote, clock):
    return TokenService(remote=remote, clock=clock)
