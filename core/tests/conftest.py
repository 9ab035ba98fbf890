"""Shared fixtures: keep every test independent of the user's config and env."""

import pytest

from wavegraph.observability import clear_trace_context


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    monkeypatch.setenv("WAVEGRAPH_CONFIG", str(tmp_path / "missing-configuration.json"))
    for var in (
        "WAVEGRAPH_MAX_STEPS",
        "WAVEGRAPH_RETRY_BASE_DELAY",
        "WAVEGRAPH_BACKOFF",
        "WAVEGRAPH_CONFLICT_STRATEGY",
    ):
        monkeypatch.delenv(var, raising=False)
    clear_trace_context()
    yield
    clear_trace_context()
