"""Shared pytest fixtures."""

from __future__ import annotations

import os

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")


@pytest.fixture(scope="session")
def qapp():
    """Return the process-wide QApplication, creating it on first use."""

    from PySide6.QtWidgets import QApplication

    app = QApplication.instance() or QApplication([])
    yield app
