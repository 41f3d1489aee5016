"""Shared fixtures for the dgk test suite."""

from __future__ import annotations

import pytest

from dgk.core.models import ChangeDescriptor
from tests.helpers import make_change


@pytest.fixture
def change() -> ChangeDescriptor:
    return make_change()
