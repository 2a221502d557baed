"""Shared fixtures."""

import pytest

_ENV_VARS = (
    "POTION_TOKEN",
    "POTION_CLIENT_ID",
    "POTION_CLIENT_SECRET",
    "POTION_BACKEND",
    "POTION_MCP_SERVER_URL",
    "POTION_API_BASE_URL",
    "NOTION_TOKEN",
)


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point the config directory at a temp dir and clear related env vars."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    config_dir = tmp_path / "config"
    monkeypatch.setenv("POTION_CONFIG_DIR", str(config_dir))
    return config_dir
