"""
Mailfit Package

Fits email HTML to a narrow viewport.
"""

from .config import FitConfig
from .document import RenderDocument
from .layout import LayoutEngine, EstimatedLayout
from .image_proxy import add_proxy_for_image, handle_image_load_error, ProxyResult
from .text_wrap import fix_long_url_and_text
from .image_limit import limit_image_width, limit_all_images
from .smart_resize import (
    AdaptiveScaler,
    ScaleOutcome,
    ScaleState,
    Strategy,
    StyleChange,
    select_strategy,
    revert_mutations,
)
from .transforms import Collaborators
from .pipeline import ContentPipeline, PassReport, StepResult, run_step

# Export
from .snapshot import export_pdf, SnapshotUnavailable

__all__ = [
    'FitConfig',
    'RenderDocument',
    'LayoutEngine',
    'EstimatedLayout',
    'add_proxy_for_image',
    'handle_image_load_error',
    'ProxyResult',
    'fix_long_url_and_text',
    'limit_image_width',
    'limit_all_images',
    'AdaptiveScaler',
    'ScaleOutcome',
    'ScaleState',
    'Strategy',
    'StyleChange',
    'select_strategy',
    'revert_mutations',
    'Collaborators',
    'ContentPipeline',
    'PassReport',
    'StepResult',
    'run_step',
    # Export
    'export_pdf',
    'SnapshotUnavailable',
]

__version__ = "0.1.0"
