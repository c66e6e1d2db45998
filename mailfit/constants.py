"""
Constants Module

Thresholds and event names shared by the fitting pipeline.
"""

# Soft-wrap
MAX_UNBROKEN_CHARS = 30

# Font zoom
ZOOM_FONT_CEILING_PX = 17
ZOOM_NOOP_SCALE = 1.1
ZOOM_MAX_ELEMENTS = 150            # past this many elements font zoom is not trusted
ZOOM_OVERFLOW_GROWTH = 0.2         # fraction of the unscaled projection
FIXED_BOX_OVERFLOW_PX = 20

# Viewport
PINCH_ZOOM_MIN_SCALE = 0.5
GIVE_UP_RATIO = 0.15
VIEWPORT_IMAGE_SLACK_PX = 100

# Orchestrator
DEBOUNCE_SECONDS = 0.3
DEFAULT_VIEWPORT_WIDTH = 375

# Unit conversion for the font-size ceiling (ceiling is expressed in px)
CEILING_UNIT_FACTORS = {
    'px': lambda v: v,
    'pt': lambda v: v * 0.75,
    'cm': lambda v: v / 37.8,
    'mm': lambda v: v / 3.78,
    'in': lambda v: v / 96,
    'pc': lambda v: v / 16,
}

# DOM markers
CONTAINER_ID = "edo-container"
BODY_ID = "edo-body"
TRANSFORM_CLASS = "edo-transform"
LIMIT_WIDTH_CLASS = "edo-limit-width"
QUOTED_CONTROL_SELECTOR = ".quoted-btn svg"

# Dark mode base colours
DARK_BACKGROUND_PREVIEW = "rgb(37,37,37)"
DARK_BACKGROUND_DETAIL = "rgb(18,18,18)"


class EventName:
    """Messages emitted to the host"""
    IS_MOUNTED = "isMounted"
    ON_LOAD = "onLoad"
    ON_LOAD_FINISH = "onLoadFinish"
    HEIGHT_CHANGE = "heightChange"
    CLICK_LINK = "clickLink"
    DEBUGGER = "debugger"
    RESIZE_VIEWPORT = "resizeViewport"
    ON_IMAGE_DOWNLOAD = "onImageDownload"
