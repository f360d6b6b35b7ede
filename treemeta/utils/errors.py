"""
Exception types raised by the tree extractor.
"""


class TreeMetadataError(Exception):
    """Base class for fatal extraction errors."""


class RootElementNotFoundError(TreeMetadataError):
    """The page has no body element to start the traversal from."""

    def __init__(self, viewport: str):
        super().__init__(f"Could not find body element for {viewport}")
        self.viewport = viewport


class ConfigurationError(TreeMetadataError):
    """Missing or malformed configuration value."""
