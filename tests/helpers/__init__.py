"""Test helper utilities."""

from tests.helpers.fake_gateway import FakeGateway, FakeGatewayFactory

__all__ = [
    "FakeGateway",
    "FakeGatewayFactory",
]
