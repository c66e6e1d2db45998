"""
Tests for the content pipeline, render document and command line.
"""

import json
import base64
from urllib.parse import quote

import pytest


WIDE_TABLE = '<table width="800"><tr><td><p style="font-size:12px">hello</p></td></tr></table>'
LONG_LINK = '<p><a href="https://example.com/">' + 'a' * 45 + '</a></p>'


def _pipeline(**config):
    from mailfit.config import FitConfig
    from mailfit.pipeline import ContentPipeline

    settings = {'viewport_width': 400, 'debounce_seconds': 60}
    settings.update(config)
    return ContentPipeline(FitConfig(**settings))


def _load(pipeline, html, **payload):
    payload['html'] = html
    assert pipeline.set_html(payload, encoding="raw")
    pipeline.flush()
    return pipeline.last_report


def _events(pipeline, name):
    return [data for event, data in pipeline.messages if event == name]


# Test Pipeline Pass
class TestContentPass:
    """Tests for a full content pass."""

    def test_end_to_end_transform(self):
        """Test wrapping and transform scaling in one pass."""
        from bs4 import Tag
        from mailfit.smart_resize import Strategy
        from mailfit.utils.css import get_style

        pipeline = _pipeline(zoom_max_elements=0)
        try:
            report = _load(pipeline, LONG_LINK + WIDE_TABLE)
            container = pipeline.document.container

            link = container.find('a')
            pieces = [str(c) for c in link.contents if not isinstance(c, Tag)]
            assert pieces == ['a' * 30, 'a' * 15]
            assert len(link.find_all('wbr')) == 2

            assert report.outcome.strategy == Strategy.TRANSFORM_SCALE
            assert report.outcome.ratio == 0.5
            assert report.outcome.reason == "too-many-elements"
            assert report.outcome.naive_ratio == 0.5
            assert pipeline.layout.bounding_width(container) == pytest.approx(400)
            assert pipeline.document.content_body.parent is container
            assert get_style(container, 'transform') == "scale(0.5)"
            assert report.height == pytest.approx(pipeline.layout.bounding_height(container))
            assert report.failed_steps == []
        finally:
            pipeline.close()

    def test_step_order(self):
        """Test steps run in pipeline order."""
        pipeline = _pipeline()
        try:
            report = _load(pipeline, '<p>hi</p>', isDarkMode=True)
            assert [s.name for s in report.steps] == [
                'render', 'dark-mode', 'autolink', 'register-images',
                'text-wrap', 'image-limit', 'smart-resize', 'special-handle',
            ]
        finally:
            pipeline.close()

    def test_font_zoom_accepted(self):
        """Test the default config grows fonts instead of scaling."""
        from mailfit.smart_resize import Strategy
        from mailfit.utils.css import get_style

        pipeline = _pipeline()
        try:
            report = _load(pipeline, WIDE_TABLE)
            container = pipeline.document.container

            assert report.outcome.strategy == Strategy.FONT_ZOOM
            assert report.outcome.ratio == 1.0
            assert get_style(container.find('p'), 'font-size') == "24px"
            assert get_style(container, 'transform') == ""
            assert report.height == pytest.approx(pipeline.layout.scroll_height(container))
        finally:
            pipeline.close()

    def test_content_that_fits(self):
        """Test narrow content is left alone."""
        from mailfit.smart_resize import Strategy

        pipeline = _pipeline()
        try:
            report = _load(pipeline, '<p>short</p>')
            assert report.outcome.strategy == Strategy.NONE
            assert pipeline.scale.ratio == 1.0
        finally:
            pipeline.close()

    def test_failing_collaborator_does_not_abort(self):
        """Test a failing step is reported and the pass continues."""
        from mailfit.config import FitConfig
        from mailfit.pipeline import ContentPipeline
        from mailfit.transforms import Collaborators

        def broken_autolink(root):
            raise RuntimeError("autolink exploded")

        pipeline = ContentPipeline(
            FitConfig(viewport_width=400, debounce_seconds=60),
            collaborators=Collaborators(autolink=broken_autolink)
        )
        try:
            report = _load(pipeline, LONG_LINK)
            assert report.failed_steps == ['autolink']
            failed = next(s for s in report.steps if not s.ok)
            assert failed.error == "autolink exploded"
            assert report.outcome is not None
            assert len(pipeline.document.container.find_all('wbr')) == 2
        finally:
            pipeline.close()

    def test_rerun_does_not_compound(self):
        """Test a second pass rebuilds content instead of scaling again."""
        from mailfit.utils.css import get_style

        pipeline = _pipeline(zoom_max_elements=0)
        try:
            _load(pipeline, WIDE_TABLE)
            report = pipeline.on_content_change()
            container = pipeline.document.container
            assert report.outcome.ratio == 0.5
            assert get_style(container, 'transform') == "scale(0.5)"
            assert get_style(container, 'width') == "800px"
        finally:
            pipeline.close()

    def test_autolink_and_special_handling(self):
        """Test bare URLs, hidden preheaders and editable regions."""
        from mailfit.utils.css import get_style

        pipeline = _pipeline()
        try:
            _load(
                pipeline,
                '<p>Visit www.example.com today</p>'
                '<span style="font-size:1px">preheader</span>'
                '<div contenteditable="true">edit me</div>'
            )
            container = pipeline.document.container
            assert container.find('a')['href'] == "http://www.example.com"
            assert get_style(container.find('span'), 'display') == "none"
            assert container.find('div', contenteditable=True)['contenteditable'] == "false"
        finally:
            pipeline.close()


# Test Host Payloads
class TestSetHtml:
    """Tests for loading host payloads."""

    def test_uri_payload(self):
        """Test a percent-encoded payload given as JSON."""
        pipeline = _pipeline()
        try:
            payload = json.dumps({'html': quote('<p>café &amp; co</p>')})
            assert pipeline.set_html(payload) is True
            pipeline.flush()
            assert pipeline.document.container.get_text() == "café & co"
        finally:
            pipeline.close()

    def test_base64_payload(self):
        """Test a base64 payload."""
        pipeline = _pipeline()
        try:
            html = base64.b64encode('<p>hello</p>'.encode('utf-8')).decode('ascii')
            assert pipeline.set_html({'html': html}, encoding="base64") is True
            pipeline.flush()
            assert pipeline.document.container.find('p').get_text() == "hello"
        finally:
            pipeline.close()

    @pytest.mark.parametrize("params,encoding", [
        ('{not json', "uri"),
        ({'html': '%E0%A4%A'}, "uri"),
        ({'html': 'not base64!'}, "base64"),
        ({'html': ''}, "uri"),
        ({'isDarkMode': True}, "uri"),
        ({'html': '<p>x</p>'}, "rot13"),
    ])
    def test_malformed_payload_ignored(self, params, encoding):
        """Test malformed payloads are rejected without a pass."""
        pipeline = _pipeline()
        try:
            assert pipeline.set_html(params, encoding=encoding) is False
            assert pipeline.flush() is False
            assert pipeline.last_report is None
        finally:
            pipeline.close()

    def test_proxy_template_from_payload(self):
        """Test remote images are proxied with the payload template."""
        pipeline = _pipeline()
        try:
            _load(
                pipeline,
                '<img src="https://img.example/a.png">',
                imageProxyTemplate="https://proxy.example/?u=$1"
            )
            img = pipeline.document.container.find('img')
            assert img['src'] == "https://proxy.example/?u=https%3A%2F%2Fimg.example%2Fa.png"
            assert img['data-src'] == "https://img.example/a.png"
        finally:
            pipeline.close()

    def test_unchanged_state_does_not_schedule(self):
        """Test loading the same content twice schedules no new pass."""
        pipeline = _pipeline()
        try:
            _load(pipeline, '<p>same</p>')
            pipeline.close()
            assert pipeline.set_html({'html': '<p>same</p>'}, encoding="raw") is True
            assert pipeline.flush() is False
        finally:
            pipeline.close()


# Test Quoted Text
class TestQuotedText:
    """Tests for quoted reply hiding."""

    HTML = '<p>Reply</p><div class="gmail_quote"><p>Old message</p></div>'

    def test_quoted_text_hidden_by_default(self):
        """Test quoted replies are removed and the control is shown."""
        pipeline = _pipeline()
        try:
            _load(pipeline, self.HTML)
            assert pipeline.document.container.select_one('.gmail_quote') is None
            assert 'hidden' not in pipeline.document.quoted_control['class']
        finally:
            pipeline.close()

    def test_toggle_shows_quoted_text(self):
        """Test toggling brings the quoted reply back."""
        pipeline = _pipeline()
        try:
            _load(pipeline, self.HTML)
            pipeline.toggle_quoted_text()
            pipeline.flush()
            assert pipeline.document.container.select_one('.gmail_quote') is not None

            pipeline.toggle_quoted_text()
            pipeline.flush()
            assert pipeline.document.container.select_one('.gmail_quote') is None
        finally:
            pipeline.close()

    def test_hiding_disabled(self):
        """Test the payload flag keeps quoted text and hides the control."""
        pipeline = _pipeline()
        try:
            _load(pipeline, self.HTML, disabeHideQuotedText=True)
            assert pipeline.document.container.select_one('.gmail_quote') is not None
            assert 'hidden' in pipeline.document.quoted_control['class']
        finally:
            pipeline.close()

    def test_no_quoted_text_hides_control(self):
        """Test the control stays hidden without quoted text."""
        pipeline = _pipeline()
        try:
            _load(pipeline, '<p>Just a message</p>')
            assert 'hidden' in pipeline.document.quoted_control['class']
        finally:
            pipeline.close()

    def test_outlook_reply_removed(self):
        """Test the Outlook reply header and what follows it are removed."""
        from mailfit.transforms import has_quoted_html, remove_quoted_html

        html = '<p>Reply</p><div id="divRplyFwdMsg">From: a</div><p>quoted</p>'
        assert has_quoted_html(html) is True
        result = remove_quoted_html(html)
        assert 'divRplyFwdMsg' not in result
        assert 'quoted' not in result
        assert 'Reply' in result


# Test Themes
class TestThemes:
    """Tests for dark and preview modes."""

    def test_dark_mode_colours(self):
        """Test light backgrounds and dark text are recoloured."""
        from mailfit.utils.css import get_style

        pipeline = _pipeline()
        try:
            _load(
                pipeline,
                '<div style="background-color:#ffffff;color:#000000">Hi</div>'
                '<table bgcolor="white"><tr><td><font color="black">x</font></td></tr></table>',
                isDarkMode=True
            )
            container = pipeline.document.container
            div = container.find('div')
            assert get_style(div, 'background-color') == "rgb(18,18,18)"
            assert get_style(div, 'color') == "rgb(255,255,255)"
            assert container.find('table')['bgcolor'] == "rgb(18,18,18)"
            assert container.find('font')['color'] == "rgb(255,255,255)"

            global_style = pipeline.document.soup.select_one('style.global-style').string
            assert "rgb(18,18,18)" in global_style
        finally:
            pipeline.close()

    def test_dark_preview_uses_preview_background(self):
        """Test preview mode uses its own dark base colour."""
        from mailfit.utils.css import get_style

        pipeline = _pipeline()
        try:
            _load(pipeline, '<div style="background:#fff">Hi</div>', isDarkMode=True, isPreviewMode=True)
            assert get_style(pipeline.document.container.find('div'), 'background') == "rgb(37,37,37)"
        finally:
            pipeline.close()

    def test_dark_mode_onload_emitted_after_flush(self):
        """Test the debounced onLoad of dark mode."""
        pipeline = _pipeline()
        try:
            _load(pipeline, '<p>hi</p>', isDarkMode=True)
            assert _events(pipeline, "onLoad") == [True]
        finally:
            pipeline.close()

    def test_light_mode_style(self):
        """Test light mode resets the global style."""
        pipeline = _pipeline()
        try:
            _load(pipeline, '<p>hi</p>')
            global_style = pipeline.document.soup.select_one('style.global-style').string
            assert "#fffffe" in global_style
        finally:
            pipeline.close()

    def test_preview_padding(self):
        """Test preview mode pads text-only content."""
        pipeline = _pipeline()
        try:
            _load(pipeline, '<p>text only</p>', isPreviewMode=True)
            assert 'padding' in pipeline.document.wrapper['class']
        finally:
            pipeline.close()

        pipeline = _pipeline()
        try:
            _load(pipeline, '<p><img src="data:image/gif;base64,R0lGODlhAQABAAAAACw="></p>', isPreviewMode=True)
            assert 'padding' not in (pipeline.document.wrapper.get('class') or [])
        finally:
            pipeline.close()


# Test Images
class TestImageLifecycle:
    """Tests for image load and error handling."""

    TEMPLATE = "https://proxy.example/?u=$1"
    ORIGINAL = "https://img.example/a.png"

    def test_content_without_images_finishes_at_once(self):
        """Test onLoadFinish is emitted once for image-free content."""
        pipeline = _pipeline()
        try:
            _load(pipeline, '<p>no images</p>')
            assert _events(pipeline, "onLoad") == [True]
            assert _events(pipeline, "onLoadFinish") == [True]

            # The follow-up pass must not announce again
            pipeline.flush()
            assert _events(pipeline, "onLoadFinish") == [True]
        finally:
            pipeline.close()

    def test_error_falls_back_then_load_finishes(self):
        """Test a failed proxy load falls back to the original URL."""
        pipeline = _pipeline()
        try:
            _load(pipeline, f'<p><img src="{self.ORIGINAL}"></p>', imageProxyTemplate=self.TEMPLATE)
            img = pipeline.document.container.find('img')
            proxied = img['src']
            assert proxied != self.ORIGINAL
            assert _events(pipeline, "onLoadFinish") == []

            pipeline.on_image_error(img)
            assert img['src'] == self.ORIGINAL
            assert _events(pipeline, "onLoadFinish") == []

            pipeline.on_image_load(self.ORIGINAL, width=200, height=100)
            assert _events(pipeline, "onLoadFinish") == [True]
            assert "image-load" in _events(pipeline, "debugger")

            # The next pass rebuilds the content and keeps the fallback
            pipeline.flush()
            assert pipeline.document.container.find('img')['src'] == self.ORIGINAL
            assert _events(pipeline, "onLoadFinish") == [True]
        finally:
            pipeline.close()

    def test_new_content_resets_image_tracking(self):
        """Test image state does not leak into the next message."""
        pipeline = _pipeline()
        try:
            _load(pipeline, '<p>first</p>')
            assert _events(pipeline, "onLoadFinish") == [True]
            _load(pipeline, '<p>second</p>')
            assert _events(pipeline, "onLoadFinish") == [True, True]
        finally:
            pipeline.close()

    def test_load_reports_height(self):
        """Test an image load reports the new height."""
        pipeline = _pipeline()
        try:
            _load(pipeline, '<p><img src="https://img.example/b.png"></p>')
            before = len(_events(pipeline, "heightChange"))
            pipeline.on_image_load("https://img.example/b.png", width=100, height=300)
            heights = _events(pipeline, "heightChange")
            assert len(heights) == before + 1
            assert heights[-1] >= 300
        finally:
            pipeline.close()


# Test Host Events
class TestHostEvents:
    """Tests for resize, click and press events."""

    def test_viewport_resize_reports_transitions(self):
        """Test only crossings of 1x are reported."""
        pipeline = _pipeline()
        try:
            pipeline.on_viewport_resize(1.5)
            pipeline.on_viewport_resize(2.0)
            pipeline.on_viewport_resize(1.0)
            assert _events(pipeline, "resizeViewport") == [True, False]
        finally:
            pipeline.close()

    def test_link_click(self):
        """Test link clicks are forwarded."""
        pipeline = _pipeline()
        try:
            _load(pipeline, '<a href="https://example.com/x">x</a>')
            pipeline.on_link_click(pipeline.document.container.find('a'))
            assert _events(pipeline, "clickLink") == ["https://example.com/x"]
        finally:
            pipeline.close()

    @pytest.mark.parametrize("platform,expected", [
        ("ios", []),
        ("android", ["https://img.example/c.png"]),
    ])
    def test_image_long_press(self, platform, expected):
        """Test long press offers a download except on iOS."""
        pipeline = _pipeline()
        try:
            _load(pipeline, '<img src="https://img.example/c.png">', platform=platform)
            pipeline.on_image_long_press(pipeline.document.container.find('img'))
            assert _events(pipeline, "onImageDownload") == expected
        finally:
            pipeline.close()

    def test_window_resize_same_width(self):
        """Test an unchanged width only reports the height."""
        pipeline = _pipeline(zoom_max_elements=0)
        try:
            _load(pipeline, WIDE_TABLE)
            outcome = pipeline.last_outcome
            pipeline.on_window_resize(400)
            assert pipeline.last_outcome is outcome
            assert _events(pipeline, "debugger")[-1] == "window-resize"
        finally:
            pipeline.close()

    def test_window_resize_new_width_refits(self):
        """Test a rotation undoes the last scaling and fits again."""
        from mailfit.smart_resize import Strategy
        from mailfit.utils.css import get_style

        pipeline = _pipeline(zoom_max_elements=0)
        try:
            _load(pipeline, WIDE_TABLE)
            container = pipeline.document.container
            assert get_style(container, 'transform') == "scale(0.5)"

            pipeline.on_window_resize(800)
            assert pipeline.last_outcome.strategy == Strategy.NONE
            assert get_style(container, 'transform') == ""
            assert get_style(container, 'width') == ""
            assert not container.has_attr('class')
            assert get_style(pipeline.document.soup.body, 'height') == ""
            assert pipeline.scale.ratio == 1.0
        finally:
            pipeline.close()

    def test_window_resize_waits_for_running_pass(self):
        """Test a resize from another thread runs after the pass in progress."""
        import threading
        from mailfit.config import FitConfig
        from mailfit.pipeline import ContentPipeline
        from mailfit.smart_resize import Strategy
        from mailfit.transforms import Collaborators, autolink
        from mailfit.utils.css import get_style

        order = []
        started = threading.Event()
        release = threading.Event()

        def slow_autolink(root):
            if not started.is_set():
                started.set()
                release.wait(5)
            order.append("pass")
            return autolink(root)

        pipeline = ContentPipeline(
            FitConfig(viewport_width=400, debounce_seconds=60, zoom_max_elements=0),
            collaborators=Collaborators(autolink=slow_autolink)
        )

        def resize():
            pipeline.on_window_resize(800)
            order.append("resize")

        try:
            assert pipeline.set_html({'html': WIDE_TABLE}, encoding="raw")
            content_pass = threading.Thread(target=pipeline.flush)
            content_pass.start()
            assert started.wait(5)

            resizer = threading.Thread(target=resize)
            resizer.start()
            resizer.join(0.2)
            assert resizer.is_alive()
            assert order == []

            release.set()
            content_pass.join(5)
            resizer.join(5)

            assert order == ["pass", "resize"]
            assert pipeline.last_outcome.strategy == Strategy.NONE
            assert get_style(pipeline.document.container, 'transform') == ""
            assert pipeline.scale.ratio == 1.0
        finally:
            release.set()
            pipeline.close()

    def test_message_callback_receives_json(self):
        """Test host messages are delivered as JSON strings."""
        from mailfit.config import FitConfig
        from mailfit.pipeline import ContentPipeline

        received = []
        pipeline = ContentPipeline(FitConfig(debounce_seconds=60), message_callback=received.append)
        try:
            pipeline.mount()
            pipeline.on_link_click("mailto:a@example.com")
            assert json.loads(received[0]) == {'type': "isMounted", 'data': True}
            assert json.loads(received[1]) == {'type': "clickLink", 'data': "mailto:a@example.com"}
        finally:
            pipeline.close()

    def test_update_size_without_content(self):
        """Test height reporting before any pass."""
        from mailfit.pipeline import ContentPipeline

        pipeline = ContentPipeline()
        try:
            assert pipeline.update_size() == pytest.approx(0.0)
        finally:
            pipeline.close()


# Test Render Document
class TestRenderDocument:
    """Tests for the page shell."""

    def test_full_document_is_flattened(self):
        """Test head metadata is dropped and body content kept."""
        from mailfit.document import RenderDocument

        document = RenderDocument()
        container = document.render(
            '<html><head><title>T</title><meta name="viewport" content="width=600">'
            '<style>p{color:red}</style></head><body><p>body</p></body></html>'
        )
        assert container.find('title') is None
        assert container.find('meta') is None
        assert container.find('style') is not None
        assert container.find('p').get_text() == "body"
        assert len(document.soup.find_all('meta', attrs={'name': 'viewport'})) == 1

    def test_render_resets_previous_pass(self):
        """Test the viewport directive and body style are reset."""
        from mailfit.document import RenderDocument, VIEWPORT_CONTENT

        document = RenderDocument()
        document.render('<p>one</p>')
        document.viewport['content'] = "initial-scale=0.5"
        document.soup.body['style'] = "height: 10px"

        container = document.render('<p>two</p>')
        assert document.container is container
        assert document.viewport['content'] == VIEWPORT_CONTENT
        assert not document.soup.body.has_attr('style')
        assert container.get_text() == "two"


# Test Config
class TestFitConfig:
    """Tests for configuration."""

    def test_defaults(self):
        """Test default settings."""
        from mailfit.config import FitConfig

        config = FitConfig()
        assert config.viewport_width == 375
        assert config.screen_width == 375
        assert config.max_unbroken_chars == 30
        assert config.zoom_max_elements == 150

    def test_from_env(self):
        """Test MAILFIT_* variables and bad values."""
        from mailfit.config import FitConfig

        config = FitConfig.from_env({
            'MAILFIT_VIEWPORT_WIDTH': '320',
            'MAILFIT_ZOOM_MAX_ELEMENTS': '10',
            'MAILFIT_PLATFORM': 'ios',
            'MAILFIT_DEBOUNCE_SECONDS': 'soon',
        })
        assert config.viewport_width == 320
        assert config.screen_width == 320
        assert config.zoom_max_elements == 10
        assert isinstance(config.zoom_max_elements, int)
        assert config.platform == "ios"
        assert config.debounce_seconds == 0.3

    def test_overrides_win(self):
        """Test keyword overrides beat the environment; None is ignored."""
        from mailfit.config import FitConfig

        config = FitConfig.from_env(
            {'MAILFIT_VIEWPORT_WIDTH': '320'},
            viewport_width=500,
            image_proxy_template=None
        )
        assert config.viewport_width == 500
        assert config.image_proxy_template is None

    def test_invalid_viewport(self):
        """Test a non-positive viewport is rejected."""
        from mailfit.config import FitConfig

        with pytest.raises(ValueError):
            FitConfig(viewport_width=0)


# Test Snapshot
class TestSnapshot:
    """Tests for the PDF snapshot helpers."""

    def test_page_css(self):
        """Test the page matches the viewport."""
        from mailfit.snapshot import page_css

        assert page_css(375) == "@page { size: 375px 667px; margin: 0; }"
        assert page_css(400, 1234.4) == "@page { size: 400px 1234px; margin: 0; }"

    def test_remote_urls_blocked(self):
        """Test http(s) resources are never fetched."""
        from mailfit.snapshot import _url_fetcher

        assert _url_fetcher("https://tracker.example/pixel.gif")['string'] == b''

    def test_unavailable_raises(self, monkeypatch, tmp_path):
        """Test a clear error without WeasyPrint."""
        from mailfit import snapshot
        from mailfit.document import RenderDocument

        monkeypatch.setattr(snapshot, 'WEASYPRINT_AVAILABLE', False)
        with pytest.raises(snapshot.SnapshotUnavailable):
            snapshot.export_pdf(RenderDocument(), tmp_path / "out.pdf")


# Test Command Line
class TestCommandLine:
    """Tests for the mailfit command."""

    def test_parse_image_size(self):
        """Test SRC=WxH parsing."""
        import argparse
        from main import parse_image_size

        assert parse_image_size("https://a/b.png=640x480") == ("https://a/b.png", 640.0, 480.0)
        with pytest.raises(argparse.ArgumentTypeError):
            parse_image_size("https://a/b.png")

    def test_fit_file(self, monkeypatch, tmp_path, capsys):
        """Test fitting a file and writing the page."""
        from main import main

        monkeypatch.setenv('MAILFIT_LOG_DIR', str(tmp_path / "logs"))
        source = tmp_path / "mail.html"
        source.write_text(WIDE_TABLE, encoding='utf-8')
        output = tmp_path / "fitted.html"

        assert main([str(source), '--width', '400', '-o', str(output)]) == 0

        out = capsys.readouterr().out
        assert "Strategy: font_zoom" in out
        assert "Ratio: 1.00" in out
        assert 'id="edo-container"' in output.read_text(encoding='utf-8')

    def test_missing_file(self, monkeypatch, tmp_path):
        """Test an unreadable input fails cleanly."""
        from main import main

        monkeypatch.setenv('MAILFIT_LOG_DIR', str(tmp_path / "logs"))
        assert main([str(tmp_path / "missing.html")]) == 1
