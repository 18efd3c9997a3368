"""Virtualized list rendering.

Only the items inside the visible window (plus a buffer on each side) are
materialized. The host UI layer owns the actual elements: the scroller talks
to it through the ``ElementHost`` protocol and never touches a toolkit
directly, so the index math can run headless.

Scroll events are coalesced: each burst schedules at most one render on the
next frame.
"""
import asyncio
import math
import sys
from bisect import bisect_left, bisect_right
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from promptverse.config import RendererConfig


class ScrollerState(Enum):
    IDLE = "idle"
    RENDERED = "rendered"
    DESTROYED = "destroyed"


class ElementHost(Protocol):
    """Capabilities a UI layer provides to the scroller."""

    def create_element(self, item: Any, index: int) -> Any:
        """Build the element for ``item``; a falsy return skips the index."""
        ...

    def position_element(self, handle: Any, offset: float, height: Optional[float]) -> None: ...

    def destroy_element(self, handle: Any) -> None: ...

    def set_content_height(self, height: float) -> None:
        """Size the scrollable content to the full logical list."""
        ...

    def remove_content_sizer(self) -> None: ...

    def get_viewport(self) -> Tuple[float, float]:
        """Return (scroll_top, viewport_height)."""
        ...

    def add_scroll_listener(self, callback: Callable[[], None]) -> None: ...

    def remove_scroll_listener(self, callback: Callable[[], None]) -> None: ...


class FrameScheduler(Protocol):
    """Schedules callbacks at paint granularity."""

    def request_frame(self, callback: Callable[[], None]) -> Any: ...

    def cancel_frame(self, handle: Any) -> None: ...


class AsyncioFrameScheduler:
    """Frame scheduler backed by the running asyncio event loop."""

    def __init__(self, interval: float = RendererConfig.frame_interval,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        self.interval = interval
        self._loop = loop

    def request_frame(self, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(self.interval, callback)

    def cancel_frame(self, handle: asyncio.TimerHandle) -> None:
        handle.cancel()


class VirtualScroller:
    """Render only the visible slice of a large ordered collection."""

    def __init__(
        self,
        host: ElementHost,
        items: Sequence[Any],
        render_item: Optional[Callable[[Any, int], Any]] = None,
        item_height: Optional[float] = None,
        buffer_size: Optional[int] = None,
        get_item_height: Optional[Callable[[int], float]] = None,
        scheduler: Optional[FrameScheduler] = None,
        config: Optional[RendererConfig] = None,
    ):
        """Set up a scroller over ``items``.

        Args:
            host: UI capabilities (element creation, positioning, viewport)
            items: Full ordered list to display
            render_item: Optional (item, index) -> handle; defaults to
                host.create_element
            item_height: Fixed row height (default from config)
            buffer_size: Rows materialized above and below the viewport
            get_item_height: index -> height, for variable-height rows
            scheduler: Frame scheduler for scroll coalescing (default: asyncio)
            config: Renderer defaults
        """
        config = config or RendererConfig()
        self.host = host
        self.render_item = render_item or host.create_element
        self.item_height = item_height or config.item_height
        self.buffer_size = config.buffer_size if buffer_size is None else buffer_size
        self.get_item_height = get_item_height
        self.scheduler = scheduler or AsyncioFrameScheduler(config.frame_interval)

        self.items: List[Any] = list(items)
        self.scroll_top = 0.0
        self.viewport_height = 0.0
        self.total_height = 0.0
        self.visible_range: Tuple[int, int] = (0, -1)
        self.state = ScrollerState.IDLE

        self._offsets: List[float] = []
        self._ends: List[float] = []
        self._rendered: Dict[int, Any] = {}
        self._pending_frame: Any = None

        self._calculate_layout()
        self.host.set_content_height(self.total_height)
        self.host.add_scroll_listener(self.on_scroll)
        self.update_viewport()

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def _calculate_layout(self) -> None:
        if self.get_item_height is None:
            self._offsets = []
            self._ends = []
            self.total_height = len(self.items) * self.item_height
            return

        offsets = []
        ends = []
        position = 0.0
        for index in range(len(self.items)):
            offsets.append(position)
            position += max(0.0, float(self.get_item_height(index)))
            ends.append(position)
        self._offsets = offsets
        self._ends = ends
        self.total_height = position

    def offset_for(self, index: int) -> float:
        """Top offset of the item at ``index``."""
        if self.get_item_height is None:
            return index * self.item_height
        return self._offsets[index]

    def compute_range(self) -> Tuple[int, int]:
        """Window [start, end] for the current viewport, buffer included."""
        count = len(self.items)
        if count == 0:
            return 0, -1

        scroll_bottom = self.scroll_top + self.viewport_height

        if self.get_item_height is None:
            start_node = math.floor(self.scroll_top / self.item_height)
            end_node = math.ceil(scroll_bottom / self.item_height)
        else:
            # First item whose bottom edge lies below scroll_top
            start_node = min(bisect_right(self._ends, self.scroll_top), count - 1)
            # First item starting at or after the viewport bottom
            end_node = min(bisect_left(self._offsets, scroll_bottom), count - 1)

        start = max(0, start_node - self.buffer_size)
        end = min(count - 1, end_node + self.buffer_size)
        return start, end

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _require_alive(self) -> None:
        if self.state is ScrollerState.DESTROYED:
            raise RuntimeError("VirtualScroller has been destroyed.")

    def update_viewport(self) -> None:
        """Read scroll position and viewport height from the host."""
        self._require_alive()
        scroll_top, viewport_height = self.host.get_viewport()
        self.scroll_top = max(0.0, float(scroll_top))
        self.viewport_height = max(0.0, float(viewport_height))

    def render(self) -> Tuple[int, int]:
        """Materialize the current window and release everything outside it.

        Returns:
            The rendered (start, end) window
        """
        self._require_alive()
        start, end = self.compute_range()

        # Removal first, so an index never has two live elements
        stale = [index for index in self._rendered if index < start or index > end]
        for index in stale:
            self.host.destroy_element(self._rendered.pop(index))

        fixed_height = self.item_height if self.get_item_height is None else None
        for index in range(start, end + 1):
            if index in self._rendered:
                continue
            handle = self._create(index)
            if not handle:
                continue
            self.host.position_element(handle, self.offset_for(index), fixed_height)
            self._rendered[index] = handle

        self.host.set_content_height(self.total_height)
        self.visible_range = (start, end)
        self.state = ScrollerState.RENDERED
        return start, end

    def _create(self, index: int) -> Any:
        try:
            return self.render_item(self.items[index], index)
        except Exception as e:
            print(f"[VirtualScroller] Failed to render item {index}: {e}", file=sys.stderr)
            return None

    def _release_all(self) -> None:
        for handle in self._rendered.values():
            self.host.destroy_element(handle)
        self._rendered = {}

    @property
    def rendered_indices(self) -> List[int]:
        return sorted(self._rendered)

    def element_at(self, index: int) -> Any:
        return self._rendered.get(index)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on_scroll(self) -> None:
        """Scroll or resize handler: schedule one render for the next frame."""
        self._require_alive()
        self.update_viewport()
        if self._pending_frame is None:
            self._pending_frame = self.scheduler.request_frame(self._on_frame)

    on_resize = on_scroll

    def _on_frame(self) -> None:
        self._pending_frame = None
        if self.state is ScrollerState.DESTROYED:
            return
        self.render()

    @property
    def has_pending_frame(self) -> bool:
        return self._pending_frame is not None

    def update_items(self, items: Sequence[Any]) -> None:
        """Replace the collection and re-render the current window."""
        self._require_alive()
        self.items = list(items)
        self._calculate_layout()
        self._release_all()
        self.host.set_content_height(self.total_height)
        self.render()

    def destroy(self) -> None:
        """Detach from the host and release every owned element."""
        if self.state is ScrollerState.DESTROYED:
            return

        self.host.remove_scroll_listener(self.on_scroll)
        if self._pending_frame is not None:
            self.scheduler.cancel_frame(self._pending_frame)
            self._pending_frame = None

        self._release_all()
        self.host.remove_content_sizer()

        self.items = []
        self._offsets = []
        self._ends = []
        self.visible_range = (0, -1)
        self.state = ScrollerState.DESTROYED


class MemoryHost:
    """Headless ElementHost that keeps elements as plain dicts.

    Used for server-side windowing and in tests. ``scroll_to`` and
    ``resize`` notify listeners like a real scroll container would.
    """

    def __init__(self, viewport_height: float = 600.0,
                 render: Optional[Callable[[Any, int], Any]] = None):
        self.scroll_top = 0.0
        self.viewport_height = viewport_height
        self.content_height: Optional[float] = None
        self.elements: Dict[int, Dict[str, Any]] = {}
        self.listeners: List[Callable[[], None]] = []
        self._render = render
        self._next_id = 0

    def create_element(self, item: Any, index: int) -> Optional[Dict[str, Any]]:
        body = self._render(item, index) if self._render else item
        if not body:
            return None
        self._next_id += 1
        element = {"id": self._next_id, "index": index, "body": body, "offset": None, "height": None}
        self.elements[element["id"]] = element
        return element

    def position_element(self, handle: Dict[str, Any], offset: float, height: Optional[float]) -> None:
        handle["offset"] = offset
        handle["height"] = height

    def destroy_element(self, handle: Dict[str, Any]) -> None:
        self.elements.pop(handle["id"], None)

    def set_content_height(self, height: float) -> None:
        self.content_height = height

    def remove_content_sizer(self) -> None:
        self.content_height = None

    def get_viewport(self) -> Tuple[float, float]:
        return self.scroll_top, self.viewport_height

    def add_scroll_listener(self, callback: Callable[[], None]) -> None:
        self.listeners.append(callback)

    def remove_scroll_listener(self, callback: Callable[[], None]) -> None:
        if callback in self.listeners:
            self.listeners.remove(callback)

    def scroll_to(self, scroll_top: float) -> None:
        self.scroll_top = scroll_top
        for listener in list(self.listeners):
            listener()

    def resize(self, viewport_height: float) -> None:
        self.viewport_height = viewport_height
        for listener in list(self.listeners):
            listener()

    def visible_elements(self) -> List[Dict[str, Any]]:
        """Live elements ordered by list index."""
        return sorted(self.elements.values(), key=lambda element: element["index"])
