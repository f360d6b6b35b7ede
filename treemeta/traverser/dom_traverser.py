"""
CSP-safe DOM traverser.
Walks the live child hierarchy of an element with bounded depth, width and
total size, and isolates failures so one bad branch never aborts the walk.
"""
import logging
import time
from typing import Iterator, List, NamedTuple, Optional, Tuple, Union

from pydantic import BaseModel

from treemeta.detector.element_detector import ElementDetector
from treemeta.utils.errors import RootElementNotFoundError
from treemeta.utils.schema import (
    BoundingBox,
    ElementNode,
    ErrorMarker,
    InteractiveElement,
    Position,
    TraversalCounters,
    TraversalResult,
    TreeStatistics,
    TruncationMarker,
)

logger = logging.getLogger(__name__)


# Direct children only, so max_children bounds the branching factor per level
CHILD_SELECTOR = ":scope > *"

# Edge band (px) used for the position quadrants
EDGE_BAND = 100
HIGH_CONFIDENCE = 0.8

KEY_LOCATOR_ATTRIBUTES = ("role", "aria-label", "data-testid", "data-test", "data-cy", "href", "type", "name")


class TraversalOptions(BaseModel):
    max_depth: int = 15
    max_children: int = 50
    max_elements: int = 5000
    skip_hidden_elements: bool = False
    verbose_logging: bool = False


class _Frame(NamedTuple):
    """Pending unit of work: an element to visit, or a marker to append."""
    parent: Optional[ElementNode]
    element: object = None
    index: int = 0
    depth: int = 0
    marker: Optional[TruncationMarker] = None


TreeLike = Union[TraversalResult, ElementNode, None]


def _root_of(tree: TreeLike) -> Optional[ElementNode]:
    if isinstance(tree, TraversalResult):
        return tree.dom_tree
    return tree


def iter_elements(tree: TreeLike) -> Iterator[ElementNode]:
    """Element nodes in document order; markers are skipped."""
    root = _root_of(tree)
    if root is None:
        return
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.element_children()))


class DOMTraverser:
    """Bounded tree extraction on top of an ElementDetector."""

    def __init__(self, detector: Optional[ElementDetector] = None,
                 options: Optional[TraversalOptions] = None, **overrides):
        self.detector = detector or ElementDetector()
        base = options or TraversalOptions()
        self.options = base.model_copy(update=overrides) if overrides else base

    async def traverse_from_body(self, page, viewport: str = "unknown") -> TraversalResult:
        """
        Extract the tree rooted at the page's body element.

        Args:
            page: Playwright page (borrowed for the duration of the call)
            viewport: Label stored on every node

        Returns:
            TraversalResult with the tree and fresh counters

        Raises:
            RootElementNotFoundError: the page has no body
        """
        logger.info(f"Starting DOM traversal for {viewport} viewport...")
        counters = TraversalCounters()

        body = await page.query_selector("body")
        if body is None:
            logger.error(f"Could not find body element for {viewport}")
            raise RootElementNotFoundError(viewport)

        start = time.time()
        try:
            dom_tree = await self.traverse_node(body, 0, 0, viewport, counters)
        except Exception as e:
            logger.error(f"Fatal error during DOM traversal for {viewport}: {e}")
            return TraversalResult(
                dom_tree=None,
                stats=counters,
                traversal_time=(time.time() - start) * 1000,
                viewport=viewport,
                error=str(e),
            )
        traversal_time = (time.time() - start) * 1000

        logger.info(f"DOM traversal completed for {viewport} in {int(traversal_time)}ms")
        logger.info(
            f"Elements: {counters.processed_elements} processed, "
            f"{counters.skipped_elements} skipped, {counters.error_elements} errors; "
            f"max depth reached: {counters.max_depth_reached}"
        )

        return TraversalResult(
            dom_tree=dom_tree,
            stats=counters,
            traversal_time=traversal_time,
            viewport=viewport,
        )

    async def traverse_node(self, element, index: int = 0, depth: int = 0,
                            viewport: str = "unknown",
                            counters: Optional[TraversalCounters] = None) -> Optional[ElementNode]:
        """
        Depth-first walk from `element` using an explicit work stack.

        Children are pushed in reverse so they pop in document order; a
        truncation marker is pushed first so it lands after its siblings.
        A failure while visiting a child becomes an ErrorMarker in the
        parent's children; a failure on the starting element propagates.

        Returns:
            The starting node, or None if it was pruned or skipped
        """
        if counters is None:
            counters = TraversalCounters()
        opts = self.options

        root: Optional[ElementNode] = None
        cap_logged = False
        stack: List[_Frame] = [_Frame(parent=None, element=element, index=index, depth=depth)]

        while stack:
            frame = stack.pop()

            if frame.marker is not None:
                frame.parent.children.append(frame.marker)
                continue

            if frame.depth > opts.max_depth:
                if opts.verbose_logging:
                    logger.debug(f"Max depth {opts.max_depth} reached, stopping traversal")
                continue

            if counters.total_elements > opts.max_elements:
                if not cap_logged:
                    logger.warning(f"Max elements limit {opts.max_elements} reached, stopping traversal")
                    cap_logged = True
                continue

            try:
                node, child_elements = await self._visit(frame, viewport, counters)
            except Exception as e:
                counters.error_elements += 1
                if frame.parent is None:
                    raise
                logger.warning(f"Error processing child {frame.index} at depth {frame.depth - 1}: {e}")
                frame.parent.children.append(ErrorMarker(
                    error=f"Failed to process child {frame.index}",
                    message=str(e),
                    index=frame.index,
                    depth=frame.depth,
                ))
                continue

            if node is None:
                continue
            if frame.parent is None:
                root = node
            else:
                frame.parent.children.append(node)

            if not child_elements or frame.depth + 1 > opts.max_depth:
                continue

            to_process = child_elements[:opts.max_children]
            if opts.verbose_logging and len(child_elements) > 5:
                logger.debug(
                    f"Processing {len(to_process)}/{len(child_elements)} children "
                    f"at depth {frame.depth} for {node.tag_name}"
                )

            if len(child_elements) > opts.max_children:
                truncated = len(child_elements) - len(to_process)
                stack.append(_Frame(parent=node, marker=TruncationMarker(
                    note=f"... and {truncated} more children (truncated for performance)",
                    truncated_count=truncated,
                    total_children=len(child_elements),
                    processed_children=len(to_process),
                )))

            for i in reversed(range(len(to_process))):
                stack.append(_Frame(parent=node, element=to_process[i], index=i, depth=frame.depth + 1))

        return root

    async def _visit(self, frame: _Frame, viewport: str,
                     counters: TraversalCounters) -> Tuple[Optional[ElementNode], list]:
        """Classify one element and list its direct children."""
        element, index, depth = frame.element, frame.index, frame.depth

        counters.total_elements += 1
        counters.max_depth_reached = max(counters.max_depth_reached, depth)

        analysis = await self.detector.analyze_element(element, index)
        bounding_box = await self._read_bounding_box(element, index)
        is_visible = await self._read_state(element, "is_visible")
        is_enabled = await self._read_state(element, "is_enabled")

        if self.options.skip_hidden_elements and not is_visible:
            counters.skipped_elements += 1
            if self.options.verbose_logging:
                logger.debug(f"Skipping hidden element at depth {depth}")
            return None, []

        node = ElementNode(
            index=index,
            depth=depth,
            tag_name=analysis.tag_name,
            id=(analysis.attributes.get("id") or "").strip() or None,
            classes=(analysis.attributes.get("class") or "").split(),
            attributes=analysis.attributes,
            text_content=analysis.text_content,
            bounding_box=bounding_box,
            position=Position.from_box(bounding_box),
            is_visible=is_visible,
            is_enabled=is_enabled,
            is_interactive=analysis.semantic_data.is_interactive,
            semantic_data=analysis.semantic_data,
            locator_strategies=analysis.locator_strategies,
            detection_confidence=analysis.detection_confidence,
            viewport=viewport,
            error=analysis.error,
        )
        counters.processed_elements += 1

        try:
            child_elements = await element.query_selector_all(CHILD_SELECTOR)
        except Exception as e:
            logger.warning(f"Error processing children for element at depth {depth}: {e}")
            node.children_error = str(e)
            child_elements = []

        node.has_children = len(child_elements) > 0
        node.children_count = len(child_elements)
        return node, child_elements

    async def _read_bounding_box(self, element, index: int) -> BoundingBox:
        try:
            box = await element.bounding_box()
        except Exception as e:
            logger.warning(f"Could not get boundingBox for element {index}: {e}")
            return BoundingBox()
        return BoundingBox(**box) if box else BoundingBox()

    async def _read_state(self, element, method: str) -> bool:
        # Not every element supports every state query
        try:
            return bool(await getattr(element, method)())
        except Exception:
            return False

    def calculate_tree_statistics(self, tree: TreeLike, viewport_width: int = 1920,
                                  viewport_height: int = 1080) -> TreeStatistics:
        """
        Aggregate counts and distributions over a completed tree.

        Pure: the same tree always yields the same statistics.
        Quadrants use a 100px band along each edge of the reference viewport.
        """
        if _root_of(tree) is None:
            return TreeStatistics(error="No tree data available")

        stats = TreeStatistics()
        total_confidence = 0.0
        right_edge = viewport_width - EDGE_BAND
        bottom_edge = viewport_height - EDGE_BAND

        for node in iter_elements(tree):
            stats.total_elements += 1

            if node.is_interactive:
                stats.interactive += 1
            if node.text_content.strip():
                stats.with_text += 1
            if node.is_visible:
                stats.visible += 1
            if node.semantic_data.has_id:
                stats.with_id += 1
            if node.semantic_data.has_class:
                stats.with_class += 1
            if node.semantic_data.has_test_id:
                stats.with_test_id += 1
            if node.semantic_data.has_role:
                stats.with_role += 1
            if node.detection_confidence > HIGH_CONFIDENCE:
                stats.high_confidence += 1

            total_confidence += node.detection_confidence

            stats.tag_distribution[node.tag_name] = stats.tag_distribution.get(node.tag_name, 0) + 1
            stats.depth_distribution[node.depth] = stats.depth_distribution.get(node.depth, 0) + 1
            stats.max_depth = max(stats.max_depth, node.depth)

            x, y = node.position.x, node.position.y
            quadrants = stats.position_distribution
            if x < EDGE_BAND and y < EDGE_BAND:
                quadrants.top_left += 1
            elif x > right_edge and y < EDGE_BAND:
                quadrants.top_right += 1
            elif x < EDGE_BAND and y > bottom_edge:
                quadrants.bottom_left += 1
            elif x > right_edge and y > bottom_edge:
                quadrants.bottom_right += 1
            else:
                quadrants.center += 1

        stats.avg_confidence = round(total_confidence / stats.total_elements, 2)
        return stats

    def extract_interactive_elements(self, tree: TreeLike) -> List[InteractiveElement]:
        """Nodes worth targeting from tests: interactive or with a strong locator."""
        found = []
        for node in iter_elements(tree):
            strategies = node.locator_strategies
            if not (node.is_interactive or strategies.by_role or strategies.by_test_id
                    or node.semantic_data.has_test_id):
                continue

            key_attributes = {
                name: node.attributes[name]
                for name in KEY_LOCATOR_ATTRIBUTES
                if node.attributes.get(name)
            }
            found.append(InteractiveElement(
                tag_name=node.tag_name,
                id=node.id,
                classes=list(node.classes),
                text_content=node.text_content,
                bounding_box=node.bounding_box,
                position=node.position,
                locator_strategies=node.locator_strategies,
                semantic_data=node.semantic_data,
                depth=node.depth,
                detection_confidence=node.detection_confidence,
                attributes=key_attributes,
            ))
        return found
