"""Host application gateways."""

from .gateway import FakeHostGateway, HostError, HostGateway, UserMessage
from .http import HttpHostGateway

__all__ = [
    "FakeHostGateway",
    "HostError",
    "HostGateway",
    "HttpHostGateway",
    "UserMessage",
]
