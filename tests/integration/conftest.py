"""Shared fixtures for kubemirror integration tests.

Wires a ResourceMirror to a scripted FakeRemoteStore so the full
watch -> queue -> dispatch pipeline runs without a real cluster.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from kubemirror.mirror import ResourceMirror

from fakes import FakeRemoteStore


@pytest.fixture
def remote() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture
async def mirror(remote: FakeRemoteStore) -> AsyncIterator[ResourceMirror]:
    """A mirror with fast back-off; always stopped and joined on teardown."""
    mirror = ResourceMirror(remote, backoff_initial=0.001, backoff_max=0.01)
    yield mirror
    mirror.stop()
    if mirror.started:
        await mirror.wait()
