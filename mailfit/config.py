"""
Configuration Module

Settings for the fitting pipeline, with environment overrides.
"""

import os
import logging
from dataclasses import dataclass, fields
from typing import Optional

from .constants import (
    DEBOUNCE_SECONDS,
    DEFAULT_VIEWPORT_WIDTH,
    FIXED_BOX_OVERFLOW_PX,
    MAX_UNBROKEN_CHARS,
    ZOOM_FONT_CEILING_PX,
    ZOOM_MAX_ELEMENTS,
    ZOOM_NOOP_SCALE,
    ZOOM_OVERFLOW_GROWTH,
)

logger = logging.getLogger(__name__)

ENV_PREFIX = "MAILFIT_"


@dataclass
class FitConfig:
    """Configuration for the content pipeline"""
    # Viewport
    viewport_width: float = DEFAULT_VIEWPORT_WIDTH
    screen_width: Optional[float] = None  # defaults to viewport_width

    # Orchestration
    debounce_seconds: float = DEBOUNCE_SECONDS
    image_proxy_template: Optional[str] = None
    platform: Optional[str] = None  # "ios", "android", "windows", "macos" or "web"

    # Thresholds
    max_unbroken_chars: int = MAX_UNBROKEN_CHARS
    zoom_max_elements: int = ZOOM_MAX_ELEMENTS
    zoom_font_ceiling: float = ZOOM_FONT_CEILING_PX
    zoom_noop_scale: float = ZOOM_NOOP_SCALE
    zoom_overflow_growth: float = ZOOM_OVERFLOW_GROWTH
    fixed_box_tolerance: float = FIXED_BOX_OVERFLOW_PX

    def __post_init__(self):
        if self.viewport_width <= 0:
            raise ValueError(f"viewport_width must be positive, got {self.viewport_width}")
        if self.screen_width is None:
            self.screen_width = self.viewport_width

    @classmethod
    def from_env(cls, environ: Optional[dict] = None, **overrides) -> "FitConfig":
        """
        Build a config from MAILFIT_* environment variables.

        MAILFIT_VIEWPORT_WIDTH sets viewport_width and so on. Values that
        do not parse are logged and ignored. Keyword overrides win over
        the environment.

        Args:
            environ: Mapping to read instead of os.environ
            **overrides: Explicit field values

        Returns:
            FitConfig
        """
        environ = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == '':
                continue
            if f.name in ('image_proxy_template', 'platform'):
                values[f.name] = raw
                continue
            try:
                number = float(raw)
            except ValueError:
                logger.warning(f"Ignoring {ENV_PREFIX}{f.name.upper()}={raw!r}: not a number")
                continue
            values[f.name] = int(number) if f.type is int else number

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
