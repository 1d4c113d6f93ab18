"""
ATLAS VIEWPORT CULLER - Render-Time Visibility Filter

Drops positioned nodes that fall outside the visible graph-space box (plus
padding) and the edges left without both endpoints. Only kicks in above the
culling threshold; aggregation has already bounded the logical node count
and culling never feeds back into it.

Graph-space box for a viewport translated by (x, y) at `zoom`:

    [(-x - pad) / zoom, (-x + width + pad) / zoom]   horizontally
    [(-y - pad) / zoom, (-y + height + pad) / zoom]  vertically
"""
import logging
from typing import List, Optional, Tuple

import msgspec

from infrastructure.config import GraphConfig
from viz.core import RenderEdge, RenderNode

logger = logging.getLogger(__name__)


class Viewport(msgspec.Struct, kw_only=True, frozen=True):
    """Renderer transform: pan offset, zoom factor and screen size in px."""
    x: float = 0.0
    y: float = 0.0
    zoom: float = 1.0
    width: float = 1920.0
    height: float = 1080.0


class Bounds(msgspec.Struct, frozen=True):
    min_x: float
    max_x: float
    min_y: float
    max_y: float

    def contains(self, x: float, y: float) -> bool:
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y


class CullResult(msgspec.Struct, kw_only=True, frozen=True):
    nodes: List[RenderNode]
    edges: List[RenderEdge]
    culled_count: int = 0
    labels_hidden: bool = False


class ViewportCuller:
    """
    Filters nodes/edges to the viewport.

    Usage:
        culler = ViewportCuller.from_config(get_config().graph)
        result = culler.cull(nodes, edges, viewport)
    """

    def __init__(
        self,
        threshold: int = 100,
        padding: float = 200.0,
        label_zoom_threshold: float = 0.5,
    ):
        self.threshold = threshold
        self.padding = padding
        self.label_zoom_threshold = label_zoom_threshold

    @classmethod
    def from_config(cls, config: GraphConfig) -> "ViewportCuller":
        return cls(
            threshold=config.culling_threshold,
            padding=config.viewport_padding,
            label_zoom_threshold=config.label_zoom_threshold,
        )

    def is_active(self, node_count: int) -> bool:
        return node_count > self.threshold

    def bounds(self, viewport: Viewport) -> Bounds:
        if viewport.zoom <= 0:
            raise ValueError(f"Viewport zoom must be positive, got {viewport.zoom}")
        pad = self.padding
        zoom = viewport.zoom
        return Bounds(
            min_x=(-viewport.x - pad) / zoom,
            max_x=(-viewport.x + viewport.width + pad) / zoom,
            min_y=(-viewport.y - pad) / zoom,
            max_y=(-viewport.y + viewport.height + pad) / zoom,
        )

    def cull(
        self,
        nodes: List[RenderNode],
        edges: List[RenderEdge],
        viewport: Optional[Viewport],
    ) -> CullResult:
        """
        Filter to the viewport.

        Below the threshold, or without a viewport, the input passes through
        unchanged. Nodes without a position are always kept.
        """
        if viewport is None or not self.is_active(len(nodes)):
            return CullResult(nodes=list(nodes), edges=list(edges))

        box = self.bounds(viewport)
        visible: List[RenderNode] = [
            n for n in nodes
            if n.x is None or n.y is None or box.contains(n.x, n.y)
        ]
        visible_ids = {n.id for n in visible}
        kept_edges = [
            e for e in edges
            if e.source_node_id in visible_ids and e.target_node_id in visible_ids
        ]

        hide_labels = viewport.zoom < self.label_zoom_threshold
        if hide_labels:
            visible = [
                msgspec.structs.replace(
                    n, visual_state=msgspec.structs.replace(n.visual_state, hide_label=True)
                )
                for n in visible
            ]

        culled = len(nodes) - len(visible)
        if culled:
            logger.debug(f"Culled {culled} of {len(nodes)} nodes outside the viewport")

        return CullResult(
            nodes=visible,
            edges=kept_edges,
            culled_count=culled,
            labels_hidden=hide_labels,
        )


def visible_range(viewport: Viewport, padding: float = 200.0) -> Tuple[float, float, float, float]:
    """(min_x, max_x, min_y, max_y) of the padded graph-space box."""
    box = ViewportCuller(padding=padding).bounds(viewport)
    return box.min_x, box.max_x, box.min_y, box.max_y
