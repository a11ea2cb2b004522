"""Pytest configuration and fixtures for skyhost tests.

Provides guider, pipeline and logging fixtures shared across test
modules. The digital twin stands in for PHD2 so no guider software or
guide camera is needed.
"""

import io
import logging

import pytest

from skyhost import config as config_module
from skyhost.guider import (
    DigitalTwinConfig,
    DigitalTwinPhd2Guider,
    GuiderProvider,
    Phd2Bridge,
)
from skyhost.observability import configure_logging, reset_logging
from skyhost.pipeline import ImagePipeline


@pytest.fixture
def log_stream():
    """Capture skyhost log output as text.

    The skyhost logger does not propagate to the root logger, so caplog
    does not see its records. This fixture reconfigures logging onto a
    StringIO at DEBUG and restores the default afterwards.

    Yields:
        io.StringIO receiving formatted log lines.

    Example:
        >>> def test_warns(log_stream):
        ...     do_something()
        ...     assert "deleted" in log_stream.getvalue()
    """
    stream = io.StringIO()
    configure_logging(level=logging.DEBUG, stream=stream, force=True)
    yield stream
    reset_logging()
    configure_logging(force=True)


@pytest.fixture
def twin_guider(tmp_path):
    """Digital twin PHD2 saving its frames into tmp_path."""
    return DigitalTwinPhd2Guider(DigitalTwinConfig(save_dir=tmp_path))


@pytest.fixture
def provider(twin_guider):
    """GuiderProvider with the digital twin selected."""
    return GuiderProvider(twin_guider)


@pytest.fixture
def pipeline(provider):
    """ImagePipeline over the twin with the real OpenCV encoder."""
    return ImagePipeline(Phd2Bridge(provider.get_device, timeout=2.0))


@pytest.fixture
def restore_config():
    """Restore the global ServerConfig singleton after the test."""
    saved = config_module._config
    yield
    config_module._config = saved
