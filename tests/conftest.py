"""Shared fixtures for the printwatch test suite."""

from __future__ import annotations

import pytest

from printwatch.registry import FleetRegistry

from helpers import FakeClock


@pytest.fixture
def registry() -> FleetRegistry:
    return FleetRegistry()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
