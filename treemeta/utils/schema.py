"""
Data schemas for the CSP-safe HTML tree extractor.
"""
from typing import List, Optional, Dict, Any, Union, Literal, Annotated
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class TreeModel(BaseModel):
    """Base model: snake_case in Python, camelCase in JSON output."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ViewportConfig(TreeModel):
    """Viewport emulation settings for one page session."""
    model_config = ConfigDict(frozen=True)

    name: str
    width: int
    height: int
    device_scale_factor: float = 1
    is_mobile: bool = False
    has_touch: bool = False


class BoundingBox(TreeModel):
    """Bounding box as reported by the driver; all-zero when unavailable."""
    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0


class Position(TreeModel):
    """Derived geometry of an element."""
    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0
    center_x: float = 0
    center_y: float = 0
    area: float = 0

    @classmethod
    def from_box(cls, box: BoundingBox) -> "Position":
        return cls(
            x=box.x,
            y=box.y,
            width=box.width,
            height=box.height,
            center_x=box.x + box.width / 2,
            center_y=box.y + box.height / 2,
            area=box.width * box.height,
        )


class SemanticData(TreeModel):
    """Boolean flags derived from tag, attributes and text."""
    has_text: bool = False
    has_id: bool = False
    has_class: bool = False
    has_test_id: bool = False
    has_aria_label: bool = False
    has_role: bool = False
    is_accessible: bool = False
    is_form_field: bool = False
    is_interactive: bool = False
    is_media: bool = False
    is_container: bool = False


class LocatorStrategies(TreeModel):
    """Ways to re-select an element later, most reliable first."""
    by_id: Optional[str] = None
    by_test_id: Optional[str] = None
    by_role: Optional[str] = None
    by_text: Optional[str] = None
    by_label: Optional[str] = None
    css: Optional[str] = None
    xpath: Optional[str] = None


class ElementAnalysis(TreeModel):
    """Classifier output for a single element handle."""
    tag_name: str
    attributes: Dict[str, str] = Field(default_factory=dict)
    text_content: str = ""
    semantic_data: SemanticData = Field(default_factory=SemanticData)
    locator_strategies: LocatorStrategies = Field(default_factory=LocatorStrategies)
    detection_confidence: float = 0.5
    error: Optional[str] = None


class TruncationMarker(TreeModel):
    """Stands in for children beyond the configured cap."""
    kind: Literal["truncation"] = "truncation"
    note: str
    truncated_count: int
    total_children: int
    processed_children: int


class ErrorMarker(TreeModel):
    """Inline record for a child whose traversal raised."""
    kind: Literal["error"] = "error"
    error: str
    message: str
    index: int
    depth: int


class ElementNode(TreeModel):
    """One element of the extracted tree."""
    kind: Literal["element"] = "element"

    # Core identification
    index: int
    depth: int
    tag_name: str

    # Attributes and content
    id: Optional[str] = None
    classes: List[str] = Field(default_factory=list)
    attributes: Dict[str, str] = Field(default_factory=dict)
    text_content: str = ""

    # Position and dimensions
    bounding_box: BoundingBox = Field(default_factory=BoundingBox)
    position: Position = Field(default_factory=Position)

    # State
    is_visible: bool = False
    is_enabled: bool = False
    is_interactive: bool = False

    semantic_data: SemanticData = Field(default_factory=SemanticData)
    locator_strategies: LocatorStrategies = Field(default_factory=LocatorStrategies)
    detection_confidence: float = 0.5
    viewport: str = "unknown"

    # Tree structure
    has_children: bool = False
    children_count: int = 0
    children: List["ChildEntry"] = Field(default_factory=list)
    children_error: Optional[str] = None
    error: Optional[str] = None

    def element_children(self) -> List["ElementNode"]:
        """Children that are real elements (markers skipped)."""
        return [c for c in self.children if isinstance(c, ElementNode)]


ChildEntry = Annotated[
    Union[ElementNode, ErrorMarker, TruncationMarker],
    Field(discriminator="kind"),
]

ElementNode.model_rebuild()


class TraversalCounters(TreeModel):
    """Per-call accumulator filled while the traversal runs."""
    total_elements: int = 0
    processed_elements: int = 0
    skipped_elements: int = 0
    error_elements: int = 0
    max_depth_reached: int = 0


class PositionDistribution(TreeModel):
    top_left: int = 0
    top_right: int = 0
    bottom_left: int = 0
    bottom_right: int = 0
    center: int = 0


class TreeStatistics(TreeModel):
    """Aggregates computed from a completed tree."""
    total_elements: int = 0
    interactive: int = 0
    with_text: int = 0
    visible: int = 0
    with_id: int = 0
    with_class: int = 0
    with_test_id: int = 0
    with_role: int = 0
    high_confidence: int = 0  # confidence > 0.8
    tag_distribution: Dict[str, int] = Field(default_factory=dict)
    depth_distribution: Dict[int, int] = Field(default_factory=dict)
    position_distribution: PositionDistribution = Field(default_factory=PositionDistribution)
    max_depth: int = 0
    avg_confidence: float = 0
    error: Optional[str] = None


class TraversalResult(TreeModel):
    """Tree plus counters for one traversal call."""
    dom_tree: Optional[ElementNode] = None
    stats: TraversalCounters = Field(default_factory=TraversalCounters)
    traversal_time: float = 0  # ms
    viewport: str = "unknown"
    error: Optional[str] = None


class InteractiveElement(TreeModel):
    """Trimmed node record for downstream locator consumers."""
    tag_name: str
    id: Optional[str] = None
    classes: List[str] = Field(default_factory=list)
    text_content: str = ""
    bounding_box: BoundingBox = Field(default_factory=BoundingBox)
    position: Position = Field(default_factory=Position)
    locator_strategies: LocatorStrategies = Field(default_factory=LocatorStrategies)
    semantic_data: SemanticData = Field(default_factory=SemanticData)
    depth: int = 0
    detection_confidence: float = 0
    attributes: Dict[str, str] = Field(default_factory=dict)


class PageInfo(TreeModel):
    """Title and final URL read after navigation."""
    page_title: str = "Unknown"
    page_url: str = ""


class ViewportResult(TreeModel):
    """Outcome of processing one viewport."""
    viewport: str
    dimensions: Dict[str, int]
    page_info: Optional[PageInfo] = None
    dom_tree: Optional[ElementNode] = None
    stats: TraversalCounters = Field(default_factory=TraversalCounters)
    traversal_time: float = 0
    screenshot_path: Optional[str] = None
    error: Optional[str] = None


class ExtractionReport(TreeModel):
    """Whole-run report across all viewports."""
    metadata: Dict[str, Any]
    trees: Dict[str, Optional[ElementNode]]
    statistics: Dict[str, TreeStatistics]
    summary: Dict[str, int]
    errors: Dict[str, str] = Field(default_factory=dict)
