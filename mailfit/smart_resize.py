"""
Smart Resize Module

Fits content that is wider than the viewport.

Strategy selection by ratio (viewport width / natural content width):
- ratio < 0.15: content is far too wide to shrink legibly; hand zooming to
  the user through the viewport directive (pinch-zoom fallback)
- 0.15 <= ratio < 1: grow font sizes in place (font zoom); if the zoom
  cannot be trusted, undo it completely and shrink the whole container
  with a single scale() transform instead
- ratio >= 1: content fits, nothing to do

Every change is recorded as a StyleChange so a caller can reverse a
whole pass with revert_mutations().
"""

import math
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Set, Union

from bs4 import BeautifulSoup, Tag

from .constants import (
    CEILING_UNIT_FACTORS,
    FIXED_BOX_OVERFLOW_PX,
    GIVE_UP_RATIO,
    PINCH_ZOOM_MIN_SCALE,
    QUOTED_CONTROL_SELECTOR,
    TRANSFORM_CLASS,
    ZOOM_FONT_CEILING_PX,
    ZOOM_MAX_ELEMENTS,
    ZOOM_NOOP_SCALE,
    ZOOM_OVERFLOW_GROWTH,
)
from .layout import LayoutEngine
from .utils.css import (
    CssRule,
    StyleSheet,
    document_of,
    format_number,
    get_style,
    get_style_priority,
    iter_stylesheets,
    leading_int,
    parse_length,
    set_style,
)

logger = logging.getLogger(__name__)


class Strategy(Enum):
    """How content was fitted to the viewport"""
    NONE = "none"
    FONT_ZOOM = "font_zoom"
    TRANSFORM_SCALE = "transform_scale"
    PINCH_ZOOM = "pinch_zoom"


@dataclass
class ScaleState:
    """Currently applied content-to-viewport ratio"""
    ratio: float = 1.0


@dataclass
class StyleChange:
    """One property write: inline style, stylesheet rule or attribute"""
    owner: Union[Tag, CssRule]
    property: str
    before: str
    after: str
    priority: str = ''
    sheet: Optional[StyleSheet] = None  # set for rule owners
    sheet_text: Optional[str] = None  # sheet text before its first recorded write
    attribute: bool = False

    def apply(self, value: str):
        if self.attribute:
            if value:
                # bs4 keeps class as a list
                self.owner[self.property] = value.split() if self.property == 'class' else value
            elif self.owner.has_attr(self.property):
                del self.owner[self.property]
        elif isinstance(self.owner, CssRule):
            self.owner.set(self.property, value, self.priority)
            self.sheet.commit()
        else:
            set_style(self.owner, self.property, value, self.priority)

    def undo(self):
        self.apply(self.before)
        if self.sheet_text is not None:
            self.sheet.element.string = self.sheet_text


class StyleRollback:
    """
    Ordered record of original values captured right before each write.

    restore() puts every recorded property back, last write first, so a
    rejected font zoom leaves no partial state behind.
    """

    def __init__(self):
        self.changes: List[StyleChange] = []
        self._captured_sheets: Set[int] = set()

    def __len__(self):
        return len(self.changes)

    def set_style(self, element: Tag, prop: str, value: str) -> StyleChange:
        change = StyleChange(
            owner=element,
            property=prop,
            before=get_style(element, prop),
            after=value,
            priority=get_style_priority(element, prop)
        )
        self.changes.append(change)
        change.apply(value)
        return change

    def set_rule(self, sheet: StyleSheet, rule: CssRule, prop: str, value: str) -> StyleChange:
        change = StyleChange(
            owner=rule,
            property=prop,
            before=rule.get(prop),
            after=value,
            priority=rule.priority(prop),
            sheet=sheet
        )
        if id(sheet.element) not in self._captured_sheets:
            self._captured_sheets.add(id(sheet.element))
            change.sheet_text = sheet.text
        self.changes.append(change)
        # Sheets are committed once per batch by the caller
        rule.set(prop, value, change.priority)
        return change

    def set_attribute(self, element: Tag, name: str, value: str) -> StyleChange:
        before = element.get(name, '')
        if isinstance(before, list):
            before = ' '.join(before)
        change = StyleChange(owner=element, property=name, before=before, after=value, attribute=True)
        self.changes.append(change)
        change.apply(value)
        return change

    def restore(self):
        revert_mutations(self.changes)
        self.changes = []
        self._captured_sheets = set()


def revert_mutations(mutations: List[StyleChange]):
    """
    Undo the mutations reported by a ScaleOutcome.

    Stylesheets get their original text back, not a re-serialization.
    """
    for change in reversed(mutations):
        change.undo()


@dataclass
class ZoomDecision:
    """Whether a font zoom can be trusted"""
    accepted: bool
    reason: str
    adjusted_elements: int = 0


@dataclass
class ScaleOutcome:
    """Result of one smart_resize call"""
    ratio: float
    strategy: Strategy
    natural_width: float
    target_width: float
    mutations: List[StyleChange] = field(default_factory=list)
    zoom: Optional[ZoomDecision] = None

    @property
    def reason(self) -> str:
        return self.zoom.reason if self.zoom else ''

    @property
    def naive_ratio(self) -> float:
        if not self.natural_width:
            return 1.0
        return self.target_width / self.natural_width


@dataclass
class _PendingWrite:
    element: Tag
    prop: str
    value: str


def select_strategy(ratio: float) -> Strategy:
    """
    Pick the strategy for a viewport/content ratio.

    FONT_ZOOM here means a font zoom is attempted; it may still end as
    TRANSFORM_SCALE when the zoom is rejected.
    """
    if ratio < GIVE_UP_RATIO:
        return Strategy.PINCH_ZOOM
    if ratio < 1:
        return Strategy.FONT_ZOOM
    return Strategy.NONE


def zoomed_size(value: str, scale: float, ceiling: float = 0) -> str:
    """
    Scale an absolute CSS length, optionally capped by a px ceiling.

    The ceiling is converted into the value's unit before capping.
    Relative or unknown units give ''.
    """
    try:
        number, unit = parse_length(value)
    except ValueError:
        return ''
    if unit not in CEILING_UNIT_FACTORS:
        return ''
    if ceiling:
        number = min(number, CEILING_UNIT_FACTORS[unit](ceiling))
    return f"{format_number(number * scale)}{unit}"


def _post_order(root: Tag) -> Iterator[Tag]:
    for child in root.find_all(True, recursive=False):
        yield from _post_order(child)
        yield child


class AdaptiveScaler:
    """
    Chooses and applies a fitting strategy for one content root.

    The rollback record lives only inside a single smart_resize call.
    """

    def __init__(
        self,
        layout: LayoutEngine,
        max_elements: int = ZOOM_MAX_ELEMENTS,
        font_ceiling: float = ZOOM_FONT_CEILING_PX,
        noop_scale: float = ZOOM_NOOP_SCALE,
        overflow_growth: float = ZOOM_OVERFLOW_GROWTH,
        box_tolerance: float = FIXED_BOX_OVERFLOW_PX
    ):
        """
        Initialize the scaler.

        Args:
            layout: Layout engine used for every measurement
            max_elements: Font zoom is not trusted past this many elements
            font_ceiling: Font sizes above this (px) are zoomed from the ceiling
            noop_scale: Zoom factors up to this are not worth applying
            overflow_growth: Reject a zoom that widens content by this share
                of what uniform scaling would have added
            box_tolerance: Allowed overflow (px) of fixed-size boxes
        """
        self.layout = layout
        self.max_elements = max_elements
        self.font_ceiling = font_ceiling
        self.noop_scale = noop_scale
        self.overflow_growth = overflow_growth
        self.box_tolerance = box_tolerance

    # -----------------------------------------------------------------
    # Font zoom
    # -----------------------------------------------------------------

    def _computed_px(self, element: Tag, prop: str) -> Optional[float]:
        try:
            number, _ = parse_length(self.layout.computed_style(element, prop))
        except ValueError:
            return None
        return number

    def filter_elements_that_need_adjust(self, container: Tag, scale: float) -> List[_PendingWrite]:
        """
        Project font-size/line-height of explicitly sized elements.

        Elements count when they carry an inline font-size, a legacy
        <font size> or an inline line-height. The container itself is
        not included.
        """
        writes: List[_PendingWrite] = []
        for element in container.find_all(True):
            has_font_size = get_style(element, 'font-size') or (element.name == 'font' and element.get('size'))
            has_line_height = get_style(element, 'line-height')
            if has_font_size:
                font_px = self._computed_px(element, 'font-size')
                if font_px is not None:
                    value = min(font_px, self.font_ceiling) * scale
                    writes.append(_PendingWrite(element, 'font-size', f"{format_number(value)}px"))
            if has_line_height:
                line_px = self._computed_px(element, 'line-height')
                if line_px is not None:
                    writes.append(_PendingWrite(element, 'line-height', f"{format_number(line_px * scale)}px"))
        return writes

    def zoom_font_size_in_css(self, document: BeautifulSoup, scale: float, rollback: StyleRollback) -> int:
        """
        Zoom font-size and line-height declared in document stylesheets.

        Font sizes already at or above ceiling x scale are left alone.

        Returns:
            Number of declarations rewritten
        """
        rewritten = 0
        for sheet in iter_stylesheets(document):
            if not sheet.lossless:
                logger.debug("Skipping stylesheet with unparsable CSS")
                continue
            touched = False
            for rule in sheet.rules:
                font_size = rule.get('font-size')
                if font_size:
                    current = leading_int(font_size)
                    if current is not None and current < self.font_ceiling * scale:
                        size = zoomed_size(font_size, scale, self.font_ceiling)
                        if size:
                            rollback.set_rule(sheet, rule, 'font-size', size)
                            rewritten += 1
                            touched = True
                line_height = rule.get('line-height')
                if line_height:
                    size = zoomed_size(line_height, scale)
                    if size:
                        rollback.set_rule(sheet, rule, 'line-height', size)
                        rewritten += 1
                        touched = True
            if touched:
                sheet.commit()
        return rewritten

    def is_over_size_text_box(self, element: Tag) -> bool:
        """A fixed-size, non-clipping box whose content spills out of it."""
        overflow = get_style(element, 'overflow')
        fixed_size = (not overflow or 'visible' in overflow) and (
            get_style(element, 'height') or get_style(element, 'width')
        )
        if not fixed_size:
            return False
        tolerance = self.box_tolerance
        return (
            self.layout.offset_width(element) + tolerance < self.layout.scroll_width(element)
            or self.layout.offset_height(element) + tolerance < self.layout.scroll_height(element)
        )

    def zoom_text(self, container: Tag, scale: float, rollback: StyleRollback) -> ZoomDecision:
        """
        Grow text by scale and decide whether the result can be trusted.

        On rejection after writes, every recorded property is restored
        before returning.
        """
        if scale <= self.noop_scale:
            return ZoomDecision(accepted=True, reason="negligible")

        original_width = self.layout.scroll_width(container)
        pending = self.filter_elements_that_need_adjust(container, scale)
        element_count = len({id(write.element) for write in pending})

        if element_count > self.max_elements:
            return ZoomDecision(accepted=False, reason="too-many-elements", adjusted_elements=element_count)

        for write in pending:
            rollback.set_style(write.element, write.prop, write.value)
        document = document_of(container)
        if document is not None:
            self.zoom_font_size_in_css(document, scale, rollback)
        self.layout.invalidate()

        def reject(reason: str) -> ZoomDecision:
            rollback.restore()
            self.layout.invalidate()
            logger.info(f"Font zoom x{scale:.2f} rejected ({reason}), restored {element_count} element(s)")
            return ZoomDecision(accepted=False, reason=reason, adjusted_elements=element_count)

        new_width = self.layout.scroll_width(container)
        projected = original_width * scale - original_width
        growth = (new_width - original_width) / projected if projected else 0.0
        if growth >= self.overflow_growth:
            return reject("overflow-growth")

        for element in _post_order(container):
            if self.is_over_size_text_box(element):
                return reject("fixed-box-overflow")

        return ZoomDecision(accepted=True, reason="zoomed", adjusted_elements=element_count)

    # -----------------------------------------------------------------
    # Transform scale
    # -----------------------------------------------------------------

    def reset_scaling(self, container: Tag):
        """Drop the width/transform a previous pass left on the container."""
        classes = container.get('class') or []
        if TRANSFORM_CLASS not in classes:
            return
        set_style(container, 'transform', '')
        set_style(container, 'width', '')
        container['class'] = [c for c in classes if c != TRANSFORM_CLASS]
        if not container['class']:
            del container['class']
        self.layout.invalidate()

    def _add_class(self, element: Tag, name: str, log: StyleRollback):
        classes = list(element.get('class') or [])
        if name not in classes:
            log.set_attribute(element, 'class', ' '.join(classes + [name]))

    def scale_content(self, container: Tag, from_width: float, scale: float, log: StyleRollback) -> float:
        """
        Shrink the container with one scale() transform.

        The factor is floored to two decimals so the scaled box is never
        wider than the viewport.

        Returns:
            The applied factor
        """
        scale_with_buffer = math.floor(scale * 100) / 100
        log.set_style(container, 'width', f"{format_number(from_width)}px")
        log.set_style(container, 'transform', f"scale({format_number(scale_with_buffer)})")
        self._add_class(container, TRANSFORM_CLASS, log)
        return scale_with_buffer

    def scale_quoted_control(self, document: BeautifulSoup, scale: float, log: StyleRollback) -> bool:
        control = document.select_one(QUOTED_CONTROL_SELECTOR)
        if control is None:
            return False
        log.set_style(control, 'transform', f"scale({format_number(1 / scale)})")
        self._add_class(control, TRANSFORM_CLASS, log)
        return True

    # -----------------------------------------------------------------
    # Pinch zoom
    # -----------------------------------------------------------------

    def adjust_viewport(self, container: Tag, scale: float, log: StyleRollback):
        """Let the user pinch-zoom down to scale; clears container scaling first."""
        log.set_style(container, 'transform', '')
        log.set_style(container, 'overflow', 'auto')

        document = document_of(container)
        if document is None:
            return
        content = (
            f"width=device-width, initial-scale={format_number(scale)}, "
            f"minimum-scale={format_number(scale)}, user-scalable=yes"
        )
        viewport = document.find('meta', attrs={'name': 'viewport'})
        if viewport is None:
            viewport = document.new_tag('meta', attrs={'name': 'viewport'})
            (document.head or document).insert(0, viewport)
        log.set_attribute(viewport, 'content', content)

    # -----------------------------------------------------------------
    # Entry point
    # -----------------------------------------------------------------

    def measure_natural_width(self, container: Tag) -> float:
        self.reset_scaling(container)
        return self.layout.scroll_width(container)

    def smart_resize(
        self,
        container: Tag,
        target_width: Optional[float] = None,
        natural_width: Optional[float] = None
    ) -> ScaleOutcome:
        """
        Fit the container to the target width.

        Args:
            container: Content root
            target_width: Viewport width (defaults to the layout's)
            natural_width: Unscaled content width (measured when omitted)

        Returns:
            ScaleOutcome with the applied ratio, strategy and mutations
        """
        if target_width is None:
            target_width = self.layout.viewport_width
        if natural_width is None:
            natural_width = self.measure_natural_width(container)

        if natural_width <= 0:
            return ScaleOutcome(ratio=1.0, strategy=Strategy.NONE, natural_width=natural_width, target_width=target_width)

        ratio = target_width / natural_width
        strategy = select_strategy(ratio)
        log = StyleRollback()
        logger.debug(f"Content {natural_width:.0f}px in {target_width:.0f}px viewport, ratio {ratio:.3f}")

        if strategy == Strategy.NONE:
            return ScaleOutcome(ratio=1.0, strategy=strategy, natural_width=natural_width, target_width=target_width)

        if strategy == Strategy.PINCH_ZOOM:
            self.adjust_viewport(container, PINCH_ZOOM_MIN_SCALE, log)
            self.layout.invalidate()
            return ScaleOutcome(
                ratio=PINCH_ZOOM_MIN_SCALE,
                strategy=strategy,
                natural_width=natural_width,
                target_width=target_width,
                mutations=log.changes
            )

        rollback = StyleRollback()
        try:
            decision = self.zoom_text(container, 1 / ratio, rollback)
        except (ValueError, LookupError) as e:
            logger.warning(f"Font zoom failed, falling back to transform: {e}")
            rollback.restore()
            self.layout.invalidate()
            decision = ZoomDecision(accepted=False, reason="error")

        if decision.accepted:
            # The container itself is left unscaled
            return ScaleOutcome(
                ratio=1.0,
                strategy=Strategy.FONT_ZOOM,
                natural_width=natural_width,
                target_width=target_width,
                mutations=rollback.changes,
                zoom=decision
            )

        try:
            applied = self.scale_content(container, natural_width, max(ratio, PINCH_ZOOM_MIN_SCALE), log)
            document = document_of(container)
            self.layout.invalidate()
            if document is not None:
                self.scale_quoted_control(document, applied, log)
                if document.body is not None:
                    height = self.layout.bounding_height(container)
                    log.set_style(document.body, 'height', f"{format_number(height)}px")
        except (ValueError, LookupError) as e:
            logger.warning(f"Transform scale failed, leaving content unscaled: {e}")
            log.restore()
            self.layout.invalidate()
            return ScaleOutcome(
                ratio=1.0,
                strategy=Strategy.NONE,
                natural_width=natural_width,
                target_width=target_width,
                zoom=decision
            )

        self.layout.invalidate()
        logger.info(f"Scaled content by {applied} ({decision.reason})")
        return ScaleOutcome(
            ratio=applied,
            strategy=Strategy.TRANSFORM_SCALE,
            natural_width=natural_width,
            target_width=target_width,
            mutations=log.changes,
            zoom=decision
        )
