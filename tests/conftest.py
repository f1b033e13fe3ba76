"""
Pytest Configuration and Shared Fixtures

This file contains pytest configuration and fixtures that are available
to all tests in the test suite.
"""

import pytest
from pathlib import Path

from mapsharvest.core import error_logger as error_logger_module
from mapsharvest.core import process_logger as process_logger_module
from mapsharvest.core.config import Config
from mapsharvest.core.error_logger import ErrorLogger
from mapsharvest.core.process_logger import ProcessLogger

from tests.fakes import (
    FakeClock,
    FakeExtractor,
    FakeLauncher,
    FakeLookupProvider,
    FakeSession,
    MemoryDebugSink,
    MemorySink,
)


# ============================================================================
# Paths and Directories
# ============================================================================

@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def test_output_dir(tmp_path: Path) -> Path:
    """Create a temporary output directory for tests."""
    output_dir = tmp_path / "test_output"
    output_dir.mkdir(exist_ok=True)
    return output_dir


# ============================================================================
# Structured loggers
# ============================================================================

@pytest.fixture(autouse=True)
def isolated_loggers(tmp_path: Path, monkeypatch):
    """Point the error and process loggers at a temp dir, never at Supabase."""
    errors = ErrorLogger(fallback_dir=tmp_path / "logs" / "errors")
    process = ProcessLogger(fallback_dir=tmp_path / "logs" / "process")
    monkeypatch.setattr(error_logger_module, "_error_logger", errors)
    monkeypatch.setattr(process_logger_module, "_process_logger", process)
    return errors, process


@pytest.fixture
def error_log_dir(tmp_path: Path) -> Path:
    return tmp_path / "logs" / "errors"


# ============================================================================
# Configuration
# ============================================================================

@pytest.fixture
def harvest_config(tmp_path: Path, monkeypatch) -> Config:
    """A Config with defaults, outputs under tmp_path and no Supabase."""
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)
    monkeypatch.delenv("HARVEST_RELAY_URL", raising=False)
    config = Config(env_path=tmp_path / "missing.env")
    config.base_out_dir = tmp_path / "out"
    config.log_dir = tmp_path / "logs"
    config.relay_url = None
    config.direct_retries = 0
    return config


# ============================================================================
# Fakes
# ============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_session(clock) -> FakeSession:
    return FakeSession(clock=clock)


@pytest.fixture
def fake_launcher():
    return FakeLauncher


@pytest.fixture
def fake_extractor():
    return FakeExtractor()


@pytest.fixture
def lookup_provider():
    return FakeLookupProvider()


@pytest.fixture
def memory_sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def debug_sink() -> MemoryDebugSink:
    return MemoryDebugSink()


# ============================================================================
# Test Markers
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
