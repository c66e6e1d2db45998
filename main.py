#!/usr/bin/env python3
"""
Mailfit - Email HTML Viewport Fitter

Command line entry point: fits an email HTML file to a mobile viewport
and writes the rendered page.
"""

import os
import sys
import logging
import argparse
import tempfile
from pathlib import Path
from typing import List, Optional


def get_log_directory() -> Path:
    """Get the log directory (MAILFIT_LOG_DIR overrides the per-user default)."""
    override = os.environ.get('MAILFIT_LOG_DIR')
    if override:
        log_dir = Path(override)
    elif sys.platform == 'darwin':
        log_dir = Path.home() / 'Library' / 'Logs' / 'mailfit'
    elif sys.platform == 'win32':
        log_dir = Path(os.environ.get('LOCALAPPDATA', Path.home())) / 'mailfit' / 'logs'
    else:
        log_dir = Path.home() / '.local' / 'share' / 'mailfit' / 'logs'

    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError:
        # Fall back to the temp directory if the preferred location is not writable
        log_dir = Path(tempfile.gettempdir()) / 'mailfit' / 'logs'
        log_dir.mkdir(parents=True, exist_ok=True)

    return log_dir


def setup_logging(verbose: bool = False):
    """Configure application logging."""
    log_file = get_log_directory() / "mailfit.log"

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(sys.stderr)
        ]
    )

    logging.getLogger(__name__).debug(f"Log file location: {log_file}")

    # Reduce noise from some libraries
    logging.getLogger('PIL').setLevel(logging.WARNING)
    logging.getLogger('fontTools').setLevel(logging.WARNING)
    logging.getLogger('weasyprint').setLevel(logging.WARNING)


def parse_image_size(value: str):
    """SRC=WIDTHxHEIGHT"""
    src, sep, size = value.rpartition('=')
    width, x, height = size.lower().partition('x')
    if not sep or not x:
        raise argparse.ArgumentTypeError(f"expected SRC=WIDTHxHEIGHT, got {value!r}")
    try:
        return src, float(width), float(height)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected SRC=WIDTHxHEIGHT, got {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='mailfit',
        description='Fit email HTML to a mobile viewport.'
    )
    parser.add_argument('input', help="Email HTML file ('-' for stdin)")
    parser.add_argument('--width', type=float, default=None, help='Viewport width in CSS px (default: 375)')
    parser.add_argument('--proxy', metavar='TEMPLATE', default=None, help='Image proxy URL template containing $1')
    parser.add_argument('--dark', action='store_true', help='Render in dark mode')
    parser.add_argument('--preview', action='store_true', help='Render in preview mode')
    parser.add_argument('--show-quoted', action='store_true', help='Keep quoted replies visible')
    parser.add_argument(
        '--image-size', metavar='SRC=WxH', type=parse_image_size, action='append', default=[],
        help='Natural size of a remote image (repeatable)'
    )
    parser.add_argument('-o', '--output', help='Write the fitted page to this file')
    parser.add_argument('--pdf', help='Also export a PDF snapshot')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    from mailfit import ContentPipeline, FitConfig, SnapshotUnavailable, export_pdf

    try:
        if args.input == '-':
            html = sys.stdin.read()
        else:
            html = Path(args.input).read_text(encoding='utf-8', errors='replace')
    except OSError as e:
        logger.error(f"Cannot read {args.input}: {e}")
        return 1

    try:
        config = FitConfig.from_env(viewport_width=args.width, image_proxy_template=args.proxy)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    pipeline = ContentPipeline(config)
    for src, width, height in args.image_size:
        pipeline.layout.register_image_size(src, width, height)
    pipeline.mount()

    payload = {
        'html': html,
        'isDarkMode': args.dark,
        'isPreviewMode': args.preview,
        'disabeHideQuotedText': args.show_quoted,
    }
    if not pipeline.set_html(payload, encoding="raw"):
        logger.error("No content to render")
        return 1

    pipeline.flush()
    pipeline.close()
    report = pipeline.last_report

    if args.output:
        Path(args.output).write_text(pipeline.to_html(), encoding='utf-8')
        logger.info(f"Wrote {args.output}")

    outcome = report.outcome if report else None
    if outcome is not None:
        print(f"Strategy: {outcome.strategy.value}")
        print(f"Ratio: {outcome.ratio:.2f}")
    if report and report.height is not None:
        print(f"Height: {report.height:.0f}")
    if report and report.failed_steps:
        print(f"Failed steps: {', '.join(report.failed_steps)}")

    if args.pdf:
        try:
            export_pdf(pipeline.document, args.pdf, width_px=config.viewport_width, height_px=report.height if report else None)
        except SnapshotUnavailable as e:
            logger.error(str(e))
            return 2

    return 0


if __name__ == "__main__":
    sys.exit(main())
