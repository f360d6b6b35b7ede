"""
HTML tree metadata extractor.
Coordinates the browser manager, element detector and DOM traverser across
phone, tablet and desktop viewports, then writes the JSON report.
"""
import asyncio
import json
import logging
import platform
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from treemeta.browser.browser_manager import BrowserManager
from treemeta.detector.element_detector import ElementDetector
from treemeta.traverser.dom_traverser import DOMTraverser
from treemeta.utils.config import Settings, load_settings
from treemeta.utils.errors import TreeMetadataError
from treemeta.utils.logging_setup import configure_logging
from treemeta.utils.schema import (
    ExtractionReport,
    TreeStatistics,
    ViewportConfig,
    ViewportResult,
)

logger = logging.getLogger(__name__)

EXTRACTOR_NAME = "CSP-Safe HTML Tree Metadata Extractor"
EXTRACTOR_VERSION = "2.0.0"


class TreeMetadataExtractor:
    """Runs the extraction for every configured viewport."""

    def __init__(self, settings: Settings, browser_manager: Optional[BrowserManager] = None,
                 traverser: Optional[DOMTraverser] = None):
        self.settings = settings
        self.browser_manager = browser_manager or BrowserManager(headless=settings.headless)
        self.traverser = traverser or DOMTraverser(ElementDetector(), settings.traversal_options())
        self.output_dir = Path(settings.output_dir)

    async def process_viewport(self, viewport: ViewportConfig, url: str) -> ViewportResult:
        """
        Extract one viewport's tree. The page is always closed afterwards.

        Errors are reported in the result rather than raised so the other
        viewports still run.
        """
        dimensions = {"width": viewport.width, "height": viewport.height}
        session_id = None

        try:
            page, session_id = await self.browser_manager.create_page(viewport)
            page_info = await self.browser_manager.navigate(page, url)

            logger.info(f"Extracting DOM tree for {viewport.name}...")
            tree_result = await self.traverser.traverse_from_body(page, viewport.name)

            screenshot_path = None
            if self.settings.extract_screenshots:
                screenshot_path = await self.take_screenshot(page, viewport)

            return ViewportResult(
                viewport=viewport.name,
                dimensions=dimensions,
                page_info=page_info,
                dom_tree=tree_result.dom_tree,
                stats=tree_result.stats,
                traversal_time=tree_result.traversal_time,
                screenshot_path=screenshot_path,
                error=tree_result.error,
            )
        except Exception as e:
            logger.error(f"Error processing {viewport.name} viewport: {e}")
            return ViewportResult(viewport=viewport.name, dimensions=dimensions, error=str(e))
        finally:
            if session_id:
                await self.browser_manager.close_page(session_id)

    async def take_screenshot(self, page, viewport: ViewportConfig) -> Optional[str]:
        """Full-page screenshot; a failure is logged and yields None."""
        path = self.output_dir / f"html-tree-screenshot-{viewport.name}.png"
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            await page.screenshot(path=str(path), full_page=True)
        except Exception as e:
            logger.warning(f"Screenshot failed for {viewport.name}: {e}")
            return None
        logger.info(f"Screenshot saved: {path}")
        return str(path)

    def generate_report(self, results: List[ViewportResult], url: str) -> ExtractionReport:
        """Combine viewport results into one report with statistics."""
        viewports = {v.name: v for v in self.settings.viewports()}
        trees = {}
        statistics: Dict[str, TreeStatistics] = {}
        errors = {}

        for result in results:
            if result.error:
                errors[result.viewport] = result.error
            if result.dom_tree is None:
                continue
            trees[result.viewport] = result.dom_tree
            viewport = viewports.get(result.viewport)
            width = viewport.width if viewport else result.dimensions.get("width", 1920)
            height = viewport.height if viewport else result.dimensions.get("height", 1080)
            statistics[result.viewport] = self.traverser.calculate_tree_statistics(
                result.dom_tree, width, height
            )

        page_title = "Unknown"
        for result in results:
            if result.page_info is not None:
                page_title = result.page_info.page_title
                break

        metadata = {
            "extractionTime": datetime.now(timezone.utc).isoformat(),
            "websiteUrl": url,
            "pageTitle": page_title,
            "extractor": EXTRACTOR_NAME,
            "version": EXTRACTOR_VERSION,
            "cspSafe": True,
            "extractionMethod": "Playwright Native APIs Only",
            "viewportsProcessed": [r.viewport for r in results],
            "configuration": {
                "maxDepth": self.settings.max_depth,
                "maxChildren": self.settings.max_children,
                "maxElements": self.settings.max_elements,
                "screenshotsEnabled": self.settings.extract_screenshots,
                "viewports": {
                    name: v.model_dump(by_alias=True) for name, v in viewports.items()
                },
            },
        }

        summary = {
            "totalElements": sum(s.total_elements for s in statistics.values()),
            "interactiveElements": sum(s.interactive for s in statistics.values()),
            "visibleElements": sum(s.visible for s in statistics.values()),
            "elementsWithText": sum(s.with_text for s in statistics.values()),
        }

        return ExtractionReport(
            metadata=metadata,
            trees={name: trees.get(name) for name in viewports},
            statistics=statistics,
            summary=summary,
            errors=errors,
        )

    def save_results(self, report: ExtractionReport) -> Dict[str, str]:
        """
        Write the report files into the output directory.

        Returns:
            Mapping of file kind ("main", "phone", ..., "summary") to path
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)
        files = {}

        main_path = self.output_dir / "html-tree-metadata.json"
        self._write_json(main_path, report.model_dump(mode="json", by_alias=True))
        files["main"] = str(main_path)

        for name, tree in report.trees.items():
            if tree is None:
                continue
            path = self.output_dir / f"html-tree-{name}.json"
            self._write_json(path, {
                "metadata": report.metadata,
                "viewport": name,
                "tree": tree.model_dump(mode="json", by_alias=True),
            })
            files[name] = str(path)

        summary_path = self.output_dir / "html-tree-summary.json"
        files["summary"] = str(summary_path)
        self._write_json(summary_path, {
            "metadata": report.metadata,
            "stats": {
                "viewports": report.metadata.get("viewportsProcessed", []),
                "statistics": {
                    name: stats.model_dump(mode="json", by_alias=True)
                    for name, stats in report.statistics.items()
                },
                "summary": report.summary,
                "errors": report.errors,
                "generatedFiles": [Path(p).name for p in files.values()],
            },
        })

        for kind, path in files.items():
            logger.info(f"Saved {kind}: {path}")
        return files

    def _write_json(self, path: Path, data):
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)

    async def run(self, url: str) -> ExtractionReport:
        """Launch, process every viewport in order, report and save."""
        try:
            await self.browser_manager.launch()

            results = []
            for viewport in self.settings.viewports():
                result = await self.process_viewport(viewport, url)
                results.append(result)
                if result.error:
                    logger.error(f"{viewport.name} viewport finished with error: {result.error}")
                else:
                    logger.info(f"{viewport.name} viewport processing completed")

            report = self.generate_report(results, url)
            self.save_results(report)
            return report
        finally:
            await self.browser_manager.cleanup()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the extractor."""
    import argparse

    parser = argparse.ArgumentParser(description="Extract a CSP-safe HTML tree snapshot for each viewport")
    parser.add_argument("--url", help="Target website URL (default: WEBSITE_URL)")
    parser.add_argument("--output", "-o", help="Output directory (default: OUTPUT_DIR or dataset)")
    parser.add_argument("--max-depth", type=int, help="Maximum traversal depth")
    parser.add_argument("--max-children", type=int, help="Maximum children processed per element")
    parser.add_argument("--no-screenshots", action="store_true", help="Skip full-page screenshots")
    parser.add_argument("--verbose", "-v", action="store_true", help="Per-node debug logging")
    parser.add_argument("--env-file", help="Path to a .env file")

    args = parser.parse_args(argv)

    try:
        settings = load_settings(
            env_file=args.env_file,
            website_url=args.url,
            output_dir=args.output,
            max_depth=args.max_depth,
            max_children=args.max_children,
            extract_screenshots=False if args.no_screenshots else None,
            verbose_logging=True if args.verbose else None,
        )
        configure_logging(settings.verbose_logging)
        url = settings.require_url()
    except TreeMetadataError as e:
        configure_logging()
        logger.error(str(e))
        return 1

    logger.info(f"Python {platform.python_version()} on {sys.platform}")
    logger.info(
        f"URL: {url} | max depth {settings.max_depth} | "
        f"max children {settings.max_children} | screenshots {settings.extract_screenshots}"
    )

    extractor = TreeMetadataExtractor(settings)
    try:
        report = asyncio.run(extractor.run(url))
    except Exception as e:
        logger.exception(f"HTML tree metadata extraction failed: {e}")
        return 1

    print(f"\n{'='*60}")
    print(f"Total elements: {report.summary['totalElements']}")
    print(f"Interactive elements: {report.summary['interactiveElements']}")
    print(f"Visible elements: {report.summary['visibleElements']}")
    print(f"Elements with text: {report.summary['elementsWithText']}")
    for name, stats in report.statistics.items():
        print(f"  {name.capitalize()}: {stats.total_elements} elements")
    for name, error in report.errors.items():
        print(f"  {name.capitalize()}: failed ({error})")

    # Any viewport without a tree hit a fatal error (navigation, missing body)
    if any(tree is None for tree in report.trees.values()):
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
