"""
Tests for environment-driven settings.
"""
import os
import sys

import dotenv
import pytest

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from treemeta.utils import config
from treemeta.utils.config import Settings, load_settings
from treemeta.traverser.dom_traverser import TraversalOptions
from treemeta.utils.errors import ConfigurationError

ENV_VARS = [
    "WEBSITE_URL", "MAX_DEPTH", "MAX_CHILDREN_PER_ELEMENT", "MAX_ELEMENTS",
    "SKIP_HIDDEN_ELEMENTS", "VERBOSE_LOGGING", "EXTRACT_SCREENSHOTS", "HEADLESS",
    "OUTPUT_DIR", "PHONE_WIDTH", "PHONE_HEIGHT", "TABLET_WIDTH", "TABLET_HEIGHT",
    "DESKTOP_WIDTH", "DESKTOP_HEIGHT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    # Keep a developer's local .env out of the picture
    monkeypatch.setattr(config, "load_dotenv", lambda *args, **kwargs: False)


def test_defaults():
    settings = load_settings()
    assert settings.website_url is None
    assert settings.max_depth == 15
    assert settings.max_children == 50
    assert settings.max_elements == 5000
    assert settings.skip_hidden_elements is False
    assert settings.extract_screenshots is True
    assert settings.headless is True
    assert settings.output_dir == "dataset"


def test_environment_values(monkeypatch):
    monkeypatch.setenv("WEBSITE_URL", "https://example.com")
    monkeypatch.setenv("MAX_CHILDREN_PER_ELEMENT", "20")
    monkeypatch.setenv("EXTRACT_SCREENSHOTS", "false")
    monkeypatch.setenv("HEADLESS", "0")
    monkeypatch.setenv("SKIP_HIDDEN_ELEMENTS", "yes")
    monkeypatch.setenv("DESKTOP_WIDTH", "1440")

    settings = load_settings()
    assert settings.require_url() == "https://example.com"
    assert settings.max_children == 20
    assert settings.extract_screenshots is False
    assert settings.headless is False
    assert settings.skip_hidden_elements is True
    assert settings.viewports()[-1].width == 1440


def test_invalid_integer_is_a_configuration_error(monkeypatch):
    monkeypatch.setenv("MAX_DEPTH", "deep")
    with pytest.raises(ConfigurationError, match="MAX_DEPTH"):
        load_settings()


def test_overrides_win_and_none_is_ignored(monkeypatch):
    monkeypatch.setenv("MAX_DEPTH", "9")
    monkeypatch.setenv("OUTPUT_DIR", "from-env")

    settings = load_settings(max_depth=4, output_dir=None)
    assert settings.max_depth == 4
    assert settings.output_dir == "from-env"


def test_missing_url_is_reported():
    with pytest.raises(ConfigurationError, match="WEBSITE_URL"):
        load_settings().require_url()


def test_viewports_order_and_emulation():
    phone, tablet, desktop = Settings().viewports()
    assert [phone.name, tablet.name, desktop.name] == ["phone", "tablet", "desktop"]
    assert (phone.width, phone.height) == (375, 667)
    assert (tablet.width, tablet.height) == (768, 1024)
    assert (desktop.width, desktop.height) == (1920, 1080)
    assert phone.is_mobile and phone.has_touch and phone.device_scale_factor == 2
    assert not desktop.is_mobile and desktop.device_scale_factor == 1


def test_traversal_options_follow_settings():
    options = Settings(max_depth=3, max_children=7, skip_hidden_elements=True).traversal_options()
    assert isinstance(options, TraversalOptions)
    assert options.max_depth == 3
    assert options.max_children == 7
    assert options.max_elements == 5000
    assert options.skip_hidden_elements is True


def test_env_file_is_loaded(monkeypatch, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("WEBSITE_URL=https://from-file.example\nMAX_DEPTH=6\n")
    monkeypatch.setattr(config, "load_dotenv", dotenv.load_dotenv)
    # Recorded so the values load_dotenv writes are removed afterwards
    for name in ("WEBSITE_URL", "MAX_DEPTH"):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)

    settings = load_settings(env_file=str(env_file))
    assert settings.website_url == "https://from-file.example"
    assert settings.max_depth == 6


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
