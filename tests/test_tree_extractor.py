"""
End-to-end extractor tests against a mocked browser manager.
"""
import asyncio
import json
import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from treemeta.extractor import tree_extractor
from treemeta.extractor.tree_extractor import TreeMetadataExtractor, main
from treemeta.utils import config
from treemeta.utils.config import Settings
from treemeta.utils.schema import PageInfo
from fakes import make_element, make_page

URL = "https://example.com"


def build_body():
    button = make_element({"role": "button", "id": "go"}, text="Go",
                          box={"x": 900, "y": 600, "width": 80, "height": 30})
    link = make_element({"href": "/about"}, text="About",
                        box={"x": 10, "y": 10, "width": 60, "height": 20})
    return make_element(children=[link, button],
                        box={"x": 0, "y": 0, "width": 1920, "height": 1080})


def make_manager(failing_viewports=()):
    """Fake BrowserManager; navigation fails for the named viewports."""
    manager = MagicMock()

    async def create_page(viewport):
        session_id = f"{viewport.name}-session"
        page = make_page(build_body())
        page.screenshot = AsyncMock(return_value=b"")
        page.viewport_name = viewport.name
        return page, session_id

    async def navigate(page, url, **options):
        if page.viewport_name in failing_viewports:
            raise RuntimeError(f"Timeout 30000ms exceeded for {page.viewport_name}")
        return PageInfo(page_title="Example Domain", page_url=url)

    manager.launch = AsyncMock()
    manager.create_page = AsyncMock(side_effect=create_page)
    manager.navigate = AsyncMock(side_effect=navigate)
    manager.close_page = AsyncMock()
    manager.cleanup = AsyncMock()
    return manager


def make_settings(tmp_path, **overrides):
    values = {"website_url": URL, "output_dir": str(tmp_path), "extract_screenshots": False}
    values.update(overrides)
    return Settings(**values)


def test_process_viewport_success(tmp_path):
    manager = make_manager()
    settings = make_settings(tmp_path)
    extractor = TreeMetadataExtractor(settings, browser_manager=manager)
    phone = settings.viewports()[0]

    result = asyncio.run(extractor.process_viewport(phone, URL))

    assert result.error is None
    assert result.viewport == "phone"
    assert result.dimensions == {"width": 375, "height": 667}
    assert result.page_info.page_title == "Example Domain"
    assert [c.tag_name for c in result.dom_tree.children] == ["a", "button"]
    assert result.stats.processed_elements == 3
    manager.close_page.assert_awaited_once_with("phone-session")


def test_process_viewport_error_still_closes_page(tmp_path):
    manager = make_manager(failing_viewports=("tablet",))
    settings = make_settings(tmp_path)
    extractor = TreeMetadataExtractor(settings, browser_manager=manager)
    tablet = settings.viewports()[1]

    result = asyncio.run(extractor.process_viewport(tablet, URL))

    assert result.dom_tree is None
    assert "Timeout" in result.error
    manager.close_page.assert_awaited_once_with("tablet-session")


def test_screenshot_written_to_output_dir(tmp_path):
    manager = make_manager()
    settings = make_settings(tmp_path, extract_screenshots=True)
    extractor = TreeMetadataExtractor(settings, browser_manager=manager)

    result = asyncio.run(extractor.process_viewport(settings.viewports()[2], URL))

    assert result.screenshot_path == str(tmp_path / "html-tree-screenshot-desktop.png")


def test_run_writes_report_files(tmp_path):
    manager = make_manager()
    extractor = TreeMetadataExtractor(make_settings(tmp_path), browser_manager=manager)

    report = asyncio.run(extractor.run(URL))

    manager.launch.assert_awaited_once()
    manager.cleanup.assert_awaited_once()
    assert set(report.trees) == {"phone", "tablet", "desktop"}
    assert report.summary == {
        "totalElements": 9,
        "interactiveElements": 6,
        "visibleElements": 9,
        "elementsWithText": 6,
    }
    assert report.metadata["pageTitle"] == "Example Domain"
    assert report.metadata["viewportsProcessed"] == ["phone", "tablet", "desktop"]
    assert report.metadata["cspSafe"] is True

    for name in ("metadata", "phone", "tablet", "desktop", "summary"):
        assert (tmp_path / f"html-tree-{name}.json").exists()

    with open(tmp_path / "html-tree-metadata.json", encoding="utf-8") as f:
        saved = json.load(f)
    desktop = saved["trees"]["desktop"]
    assert desktop["tagName"] == "div"
    assert desktop["children"][0]["locatorStrategies"]["css"] == "a"
    assert desktop["children"][1]["locatorStrategies"]["byId"] == "#go"
    assert saved["statistics"]["phone"]["totalElements"] == 3

    with open(tmp_path / "html-tree-summary.json", encoding="utf-8") as f:
        summary = json.load(f)
    assert "html-tree-metadata.json" in summary["stats"]["generatedFiles"]


def test_failed_viewport_is_reported(tmp_path):
    manager = make_manager(failing_viewports=("desktop",))
    extractor = TreeMetadataExtractor(make_settings(tmp_path), browser_manager=manager)

    report = asyncio.run(extractor.run(URL))

    assert report.trees["desktop"] is None
    assert "desktop" in report.errors
    assert set(report.statistics) == {"phone", "tablet"}
    assert not (tmp_path / "html-tree-desktop.json").exists()
    manager.cleanup.assert_awaited_once()


def test_statistics_use_each_viewport_size(tmp_path):
    """The button at (900, 600) is central on desktop but bottom-right on phone."""
    manager = make_manager()
    settings = make_settings(tmp_path)
    extractor = TreeMetadataExtractor(settings, browser_manager=manager)

    report = asyncio.run(extractor.run(URL))

    assert report.statistics["desktop"].position_distribution.center == 1
    assert report.statistics["phone"].position_distribution.center == 0
    assert report.statistics["phone"].position_distribution.bottom_right == 1


def test_cleanup_runs_when_launch_fails(tmp_path):
    manager = make_manager()
    manager.launch.side_effect = RuntimeError("chromium missing")
    extractor = TreeMetadataExtractor(make_settings(tmp_path), browser_manager=manager)

    with pytest.raises(RuntimeError):
        asyncio.run(extractor.run(URL))
    manager.cleanup.assert_awaited_once()


@pytest.fixture
def no_env(monkeypatch):
    for name in ("WEBSITE_URL", "OUTPUT_DIR", "MAX_DEPTH", "EXTRACT_SCREENSHOTS"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config, "load_dotenv", lambda *args, **kwargs: False)


def test_main_requires_url(no_env):
    assert main([]) == 1


def test_main_success(no_env, monkeypatch, tmp_path, capsys):
    manager = make_manager()
    monkeypatch.setattr(tree_extractor, "BrowserManager", lambda headless=True: manager)

    code = main(["--url", URL, "--output", str(tmp_path), "--no-screenshots"])

    assert code == 0
    assert (tmp_path / "html-tree-metadata.json").exists()
    assert "Total elements: 9" in capsys.readouterr().out


def test_main_fails_when_a_viewport_has_no_tree(no_env, monkeypatch, tmp_path):
    manager = make_manager(failing_viewports=("phone",))
    monkeypatch.setattr(tree_extractor, "BrowserManager", lambda headless=True: manager)

    assert main(["--url", URL, "-o", str(tmp_path), "--no-screenshots"]) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
