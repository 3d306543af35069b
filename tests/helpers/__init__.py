"""Test helper utilities."""

from tests.helpers.fake_agent import FakeAgentClient

__all__ = [
    "FakeAgentClient",
]
