"""
Environment-driven settings for the tree extractor.
Values come from the process environment, optionally seeded from a .env file.
"""
import os
from typing import Dict, List, Optional
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

from treemeta.traverser.dom_traverser import TraversalOptions
from treemeta.utils.errors import ConfigurationError
from treemeta.utils.schema import ViewportConfig


FALSE_VALUES = ("false", "0", "no", "off")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() not in FALSE_VALUES


class Settings(BaseModel):
    """Resolved configuration for one extraction run."""
    model_config = ConfigDict(frozen=True)

    website_url: Optional[str] = None
    max_depth: int = 15
    max_children: int = 50
    max_elements: int = 5000
    skip_hidden_elements: bool = False
    verbose_logging: bool = False
    extract_screenshots: bool = True
    headless: bool = True
    output_dir: str = "dataset"

    phone_width: int = 375
    phone_height: int = 667
    tablet_width: int = 768
    tablet_height: int = 1024
    desktop_width: int = 1920
    desktop_height: int = 1080

    def viewports(self) -> List[ViewportConfig]:
        """Phone, tablet and desktop viewports, in processing order."""
        return [
            ViewportConfig(
                name="phone",
                width=self.phone_width,
                height=self.phone_height,
                device_scale_factor=2,
                is_mobile=True,
                has_touch=True,
            ),
            ViewportConfig(
                name="tablet",
                width=self.tablet_width,
                height=self.tablet_height,
                device_scale_factor=2,
                is_mobile=True,
                has_touch=True,
            ),
            ViewportConfig(
                name="desktop",
                width=self.desktop_width,
                height=self.desktop_height,
                device_scale_factor=1,
                is_mobile=False,
                has_touch=False,
            ),
        ]

    def traversal_options(self) -> TraversalOptions:
        return TraversalOptions(
            max_depth=self.max_depth,
            max_children=self.max_children,
            max_elements=self.max_elements,
            skip_hidden_elements=self.skip_hidden_elements,
            verbose_logging=self.verbose_logging,
        )

    def require_url(self) -> str:
        if not self.website_url:
            raise ConfigurationError("WEBSITE_URL environment variable is required")
        return self.website_url


def load_settings(env_file: Optional[str] = None, **overrides) -> Settings:
    """
    Build Settings from the environment.

    Args:
        env_file: Optional path to a .env file (default: .env lookup from cwd)
        **overrides: Explicit values that win over the environment (None is ignored)

    Returns:
        Frozen Settings instance
    """
    if env_file:
        load_dotenv(dotenv_path=env_file)
    else:
        load_dotenv()

    values: Dict[str, object] = {
        "website_url": os.getenv("WEBSITE_URL") or None,
        "max_depth": _env_int("MAX_DEPTH", 15),
        "max_children": _env_int("MAX_CHILDREN_PER_ELEMENT", 50),
        "max_elements": _env_int("MAX_ELEMENTS", 5000),
        "skip_hidden_elements": _env_flag("SKIP_HIDDEN_ELEMENTS", False),
        "verbose_logging": _env_flag("VERBOSE_LOGGING", False),
        "extract_screenshots": _env_flag("EXTRACT_SCREENSHOTS", True),
        "headless": _env_flag("HEADLESS", True),
        "output_dir": os.getenv("OUTPUT_DIR") or "dataset",
        "phone_width": _env_int("PHONE_WIDTH", 375),
        "phone_height": _env_int("PHONE_HEIGHT", 667),
        "tablet_width": _env_int("TABLET_WIDTH", 768),
        "tablet_height": _env_int("TABLET_HEIGHT", 1024),
        "desktop_width": _env_int("DESKTOP_WIDTH", 1920),
        "desktop_height": _env_int("DESKTOP_HEIGHT", 1080),
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    return Settings(**values)
