"""
Content Pipeline Module

Orchestrates the fitting steps on every content or theme change and
reports size and lifecycle events to the host.
"""

import json
import base64
import binascii
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Tuple, Union
from urllib.parse import unquote

from bs4 import Tag

from .config import FitConfig
from .constants import (
    DARK_BACKGROUND_DETAIL,
    DARK_BACKGROUND_PREVIEW,
    LIMIT_WIDTH_CLASS,
    EventName,
)
from .document import RenderDocument
from .image_limit import limit_all_images, limit_loaded_image
from .image_proxy import ORIGINAL_SRC_ATTR, handle_image_load_error, prepare_html
from .layout import EstimatedLayout, LayoutEngine
from .smart_resize import AdaptiveScaler, ScaleOutcome, ScaleState, revert_mutations
from .text_wrap import fix_long_url_and_text
from .transforms import Collaborators, rgb_color
from .utils.css import add_class, set_style
from .utils.debounce import Debouncer

logger = logging.getLogger(__name__)

MESSAGE_HISTORY = 200


@dataclass
class StepResult:
    """Outcome of one pipeline step"""
    name: str
    ok: bool
    value: Any = None
    error: Optional[str] = None


def run_step(name: str, fn: Callable, *args, **kwargs) -> StepResult:
    """
    Run one best-effort step.

    A failing step is logged and reported; it never aborts the pass.
    """
    try:
        value = fn(*args, **kwargs)
    except Exception as e:
        logger.warning(f"Step '{name}' failed: {e}")
        return StepResult(name=name, ok=False, error=str(e))
    return StepResult(name=name, ok=True, value=value)


@dataclass
class ContentState:
    """What is currently shown"""
    html: str = ""
    show_html: str = ""
    has_img_or_video: bool = False
    is_dark_mode: bool = False
    is_preview_mode: bool = False
    platform: Optional[str] = None
    disable_hide_quoted_text: bool = False
    show_quoted_text: bool = False


@dataclass
class PassReport:
    """Result of one content pass"""
    steps: List[StepResult] = field(default_factory=list)
    outcome: Optional[ScaleOutcome] = None
    height: Optional[float] = None

    @property
    def failed_steps(self) -> List[str]:
        return [step.name for step in self.steps if not step.ok]


def decode_html(html: str, encoding: str = "uri") -> str:
    """
    Decode the html field of a host payload.

    Args:
        html: Encoded markup
        encoding: "uri" (percent-encoded), "base64" or "raw"

    Raises:
        ValueError: for undecodable input or an unknown encoding
    """
    if encoding == "uri":
        return unquote(html, errors='strict')
    if encoding == "base64":
        return base64.b64decode(html).decode('utf-8')
    if encoding == "raw":
        return html
    raise ValueError(f"Unknown html encoding: {encoding}")


def _locked(method):
    """Serialize a ContentPipeline method with debounced passes and other host events."""
    @wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)
    return wrapper


def _image_src(img: Union[Tag, str]) -> str:
    if isinstance(img, Tag):
        return img.get('src') or ''
    return img or ''


class ContentPipeline:
    """
    Runs the fitting pipeline for one render document.

    Pass order:
    1. Rebuild the content root from the shown HTML
    2. Dark mode (when enabled)
    3. Autolink
    4. Register images
    5. Soft-wrap long text
    6. Limit image widths
    7. Smart resize
    8. Special handling

    Passes are triggered through a trailing debounce. Hosts feed image,
    resize and click events in and receive messages through
    message_callback as JSON strings {"type": ..., "data": ...}.
    """

    def __init__(
        self,
        config: Optional[FitConfig] = None,
        collaborators: Optional[Collaborators] = None,
        layout: Optional[LayoutEngine] = None,
        message_callback: Optional[Callable[[str], None]] = None
    ):
        """
        Initialize the content pipeline.

        Args:
            config: Pipeline configuration
            collaborators: Content transforms (defaults built in)
            layout: Layout engine (defaults to EstimatedLayout)
            message_callback: Optional callback receiving host messages
        """
        self.config = config or FitConfig()
        self.collaborators = collaborators or Collaborators()
        self.layout = layout or EstimatedLayout(self.config.viewport_width)
        self.message_callback = message_callback

        self.scaler = AdaptiveScaler(
            self.layout,
            max_elements=self.config.zoom_max_elements,
            font_ceiling=self.config.zoom_font_ceiling,
            noop_scale=self.config.zoom_noop_scale,
            overflow_growth=self.config.zoom_overflow_growth,
            box_tolerance=self.config.fixed_box_tolerance
        )
        self.document = RenderDocument()
        self.state = ContentState(platform=self.config.platform)
        self.scale = ScaleState()
        self.messages: Deque[Tuple[str, Any]] = deque(maxlen=MESSAGE_HISTORY)
        self.last_outcome: Optional[ScaleOutcome] = None
        self.last_report: Optional[PassReport] = None

        # Image tracking
        self._has_image_in_body = True
        self._all_images_loaded = False
        self._image_status: Dict[str, str] = {}
        self._fallback_sources: Dict[str, str] = {}
        self._oversized_sources: Set[str] = set()

        self._screen_width = self.config.screen_width
        self._viewport_scaled = False
        # Timer threads run passes; host events arrive on the caller's thread
        self._lock = threading.RLock()

        self._content_debouncer = Debouncer(self.on_content_change, self.config.debounce_seconds)
        self._onload_debouncer = Debouncer(self._on_load, self.config.debounce_seconds)

    # -----------------------------------------------------------------
    # Messaging
    # -----------------------------------------------------------------

    def _post_message(self, event_type: str, data: Any):
        self.messages.append((event_type, data))
        logger.debug(f"Event {event_type}: {data}")
        if self.message_callback:
            self.message_callback(json.dumps({'type': event_type, 'data': data}))

    @_locked
    def mount(self):
        """Announce readiness to the host."""
        self._post_message(EventName.IS_MOUNTED, True)

    # -----------------------------------------------------------------
    # State
    # -----------------------------------------------------------------

    def _set_state(self, **changes):
        previous = (self.state.show_html, self.state.is_dark_mode, self.state.is_preview_mode)
        if 'html' in changes and changes['html'] != self.state.html:
            self._reset_images()
        for name, value in changes.items():
            setattr(self.state, name, value)
        current = (self.state.show_html, self.state.is_dark_mode, self.state.is_preview_mode)
        if current != previous:
            self._content_debouncer.schedule()

    def _reset_images(self):
        self._all_images_loaded = False
        self._image_status.clear()
        self._fallback_sources.clear()
        self._oversized_sources.clear()

    def _visible_html(self, html: str, show_quoted_text: bool, disable_hide: bool) -> str:
        if show_quoted_text or disable_hide:
            return html
        return self.collaborators.remove_quoted_html(html)

    @_locked
    def set_html(self, params: Union[str, Dict[str, Any]], encoding: str = "uri") -> bool:
        """
        Load new content from a host payload.

        Args:
            params: JSON string or dict with html, imageProxyTemplate,
                isDarkMode, isPreviewMode, disabeHideQuotedText, platform
            encoding: How the html field is encoded ("uri", "base64", "raw")

        Returns:
            True if the payload was applied; malformed payloads are logged
            and ignored
        """
        try:
            payload = json.loads(params) if isinstance(params, str) else dict(params)
            html = payload.get('html')
            if not html:
                return False
            html = decode_html(html, encoding)
        except (ValueError, TypeError, AttributeError, binascii.Error) as e:
            logger.warning(f"Ignoring malformed payload: {e}")
            return False

        template = payload.get('imageProxyTemplate', self.config.image_proxy_template)
        disable_hide = bool(payload.get('disabeHideQuotedText', payload.get('disableHideQuotedText', False)))
        proxied = prepare_html(html, template)

        self._set_state(
            html=proxied.html,
            show_html=self._visible_html(proxied.html, self.state.show_quoted_text, disable_hide),
            has_img_or_video=proxied.has_img_or_video,
            is_dark_mode=bool(payload.get('isDarkMode', False)),
            is_preview_mode=bool(payload.get('isPreviewMode', False)),
            platform=payload.get('platform') or self.config.platform,
            disable_hide_quoted_text=disable_hide
        )
        logger.info(f"Loaded content ({len(html)} chars, media={proxied.has_img_or_video})")
        return True

    @_locked
    def toggle_quoted_text(self):
        """Show or hide quoted replies."""
        show_quoted_text = not self.state.show_quoted_text
        self._set_state(
            show_quoted_text=show_quoted_text,
            show_html=self._visible_html(self.state.html, show_quoted_text, self.state.disable_hide_quoted_text)
        )

    def flush(self) -> bool:
        """Run a pending content pass (and a pending onLoad) now."""
        ran = self._content_debouncer.flush()
        self._onload_debouncer.flush()
        return ran

    def close(self):
        self._content_debouncer.cancel()
        self._onload_debouncer.cancel()

    # -----------------------------------------------------------------
    # Content pass
    # -----------------------------------------------------------------

    def _render(self) -> Tag:
        show_quoted_control = (
            not self.state.disable_hide_quoted_text
            and self.collaborators.has_quoted_html(self.state.html)
        )
        return self.document.render(
            self.state.show_html,
            is_dark_mode=self.state.is_dark_mode,
            is_preview_mode=self.state.is_preview_mode,
            has_img_or_video=self.state.has_img_or_video,
            show_quoted_control=show_quoted_control
        )

    def _apply_dark_mode(self, container: Tag) -> int:
        base = rgb_color(DARK_BACKGROUND_PREVIEW if self.state.is_preview_mode else DARK_BACKGROUND_DETAIL)
        changed = 0
        # Children first so nested backgrounds are judged before their parents
        for node in reversed(container.find_all(True)):
            if self.collaborators.apply_dark_mode_for_node(node, base):
                changed += 1
        return changed

    def _register_images(self, container: Tag) -> int:
        images = container.find_all('img')
        self._has_image_in_body = bool(images)
        for img in images:
            src = img.get('src')
            if src in self._fallback_sources:
                img['src'] = self._fallback_sources[src]
            if img.get('src') in self._oversized_sources:
                add_class(img, LIMIT_WIDTH_CLASS)
        return len(images)

    def _special_handle(self, container: Tag) -> int:
        handled = 0
        for node in container.find_all(True):
            if self.collaborators.remove_facebook_hidden_text(node):
                handled += 1
        for node in container.select('[contenteditable]'):
            if self.collaborators.disable_content_editable_elements(node):
                handled += 1
        return handled

    @_locked
    def smart_resize(self) -> Optional[ScaleOutcome]:
        """Fit the content root to the viewport and report the new height."""
        container = self.document.container
        if container is None:
            return None
        body = self.document.soup.body
        set_style(body, 'min-width', 'initial')
        set_style(body, 'width', 'initial')
        self.layout.invalidate()

        outcome = self.scaler.smart_resize(container, self.layout.viewport_width)
        self.scale.ratio = outcome.ratio
        self.last_outcome = outcome
        logger.info(
            f"Smart resize: {outcome.strategy.value}, ratio {outcome.ratio:.2f} "
            f"(content {outcome.natural_width:.0f}px, viewport {outcome.target_width:.0f}px)"
        )
        self.update_size("html-reload")
        return outcome

    @_locked
    def on_content_change(self) -> PassReport:
        """
        Run one full content pass.

        Every step is best-effort; failures are logged and the pass goes on.

        Returns:
            PassReport with step results and the scaling outcome
        """
        report = PassReport()
        self.last_outcome = None

        def step(name: str, fn: Callable, *args):
            result = run_step(name, fn, *args)
            report.steps.append(result)
            self.layout.invalidate()
            return result

        rendered = step('render', self._render)
        self.scale.ratio = 1.0
        if not rendered.ok:
            self.last_report = report
            return report
        container = rendered.value

        if self.state.is_dark_mode:
            step('dark-mode', self._apply_dark_mode, container)
        step('autolink', self.collaborators.autolink, container)
        step('register-images', self._register_images, container)
        step('text-wrap', fix_long_url_and_text, container, self.config.max_unbroken_chars)
        step('image-limit', limit_all_images, container, self.layout)
        resized = step('smart-resize', self.smart_resize)
        step('special-handle', self._special_handle, container)

        report.outcome = resized.value
        report.height = self._current_height()

        if report.failed_steps:
            logger.warning(f"Content pass finished with failed steps: {', '.join(report.failed_steps)}")

        if self.state.is_dark_mode:
            self._onload_debouncer.schedule()
        else:
            self._on_load()

        if not self._has_image_in_body:
            self._on_all_images_load()

        self.last_report = report
        return report

    @_locked
    def _on_load(self):
        self._post_message(EventName.ON_LOAD, True)

    def _on_all_images_load(self):
        if not self._all_images_loaded:
            self._all_images_loaded = True
            self._post_message(EventName.ON_LOAD_FINISH, True)
            self._content_debouncer.schedule()

    # -----------------------------------------------------------------
    # Size reporting
    # -----------------------------------------------------------------

    def _current_height(self) -> Optional[float]:
        container = self.document.container
        if container is None:
            return None
        return self.layout.scroll_height(container) * self.scale.ratio

    @_locked
    def update_size(self, info: str = "") -> Optional[float]:
        """
        Report the content height to the host.

        Args:
            info: Reason, forwarded as a debugger message

        Returns:
            The reported height, or None without a content root
        """
        if info:
            self._post_message(EventName.DEBUGGER, info)
        height = self._current_height()
        if height is None:
            return None
        self._post_message(EventName.HEIGHT_CHANGE, height)
        return height

    # -----------------------------------------------------------------
    # Host events
    # -----------------------------------------------------------------

    def _images_complete(self) -> bool:
        container = self.document.container
        if container is None:
            return True
        return all(
            not img.get('src') or img.get('src') in self._image_status
            for img in container.find_all('img')
        )

    @_locked
    def on_image_load(self, img: Union[Tag, str], width: Optional[float] = None, height: Optional[float] = None):
        """
        Handle an image finishing loading.

        Args:
            img: Image element or its src
            width: Natural width, when the host knows it
            height: Natural height, when the host knows it
        """
        src = _image_src(img)
        if not src:
            return
        if width and height:
            self.layout.register_image_size(src, width, height)
        self._image_status[src] = 'loaded'
        self.update_size("image-load")

        container = self.document.container
        if container is not None:
            container_width = self.layout.offset_width(container)
            for tag in container.find_all('img', src=src):
                if limit_loaded_image(tag, container_width, self.layout):
                    self._oversized_sources.add(src)
            self.layout.invalidate()

        if self._images_complete():
            self._on_all_images_load()

    @_locked
    def on_image_error(self, img: Union[Tag, str]):
        """Handle an image failing to load: retry proxied images from their original URL."""
        src = _image_src(img)
        if not src:
            return
        self._image_status[src] = 'error'

        container = self.document.container
        if container is not None:
            for tag in container.find_all('img', src=src):
                original = tag.get(ORIGINAL_SRC_ATTR)
                if original and original != src and handle_image_load_error(tag):
                    self._fallback_sources[src] = original
                    logger.debug(f"Proxy failed, falling back to {original[:100]}")

        if self._images_complete():
            self._on_all_images_load()

    @_locked
    def on_window_resize(self, screen_width: float, viewport_width: Optional[float] = None):
        """
        Handle a window resize.

        A changed screen width (rotation) undoes the last scaling and fits
        again; otherwise only the height is reported.
        """
        if screen_width == self._screen_width:
            self.update_size("window-resize")
            return
        self._screen_width = screen_width
        self.layout.viewport_width = viewport_width or screen_width
        if self.last_outcome is not None:
            revert_mutations(self.last_outcome.mutations)
            self.last_outcome = None
        self.layout.invalidate()
        run_step('smart-resize', self.smart_resize)

    @_locked
    def on_viewport_resize(self, scale: float):
        """Tell the host when the user zooms in past 1x or back."""
        zoomed = scale > 1
        if zoomed != self._viewport_scaled:
            self._viewport_scaled = zoomed
            self._post_message(EventName.RESIZE_VIEWPORT, zoomed)

    @_locked
    def on_link_click(self, link: Union[Tag, str]):
        href = link.get('href') if isinstance(link, Tag) else link
        self._post_message(EventName.CLICK_LINK, href)

    @_locked
    def on_image_long_press(self, img: Union[Tag, str]):
        """Offer an image for download (not on iOS, which has its own menu)."""
        if self.state.platform == 'ios':
            return
        src = _image_src(img)
        if src:
            self._post_message(EventName.ON_IMAGE_DOWNLOAD, src)

    @_locked
    def to_html(self) -> str:
        return self.document.to_html()
