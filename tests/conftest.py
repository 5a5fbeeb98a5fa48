"""Common utilities for tests."""

from tests.mock_utils import (  # noqa: F401
    FakeTimer,
    FakeTimerFactory,
    MockFieldFilter,
    TempDirMixin,
    patch_mockfirestore,
    stored_drafts,
)

patch_mockfirestore()
