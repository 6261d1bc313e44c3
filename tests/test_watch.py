# tests/test_watch.py
"""
Tests for watching a saved page
"""
import time
from pathlib import Path

from watchdog.events import DirCreatedEvent, FileDeletedEvent, FileModifiedEvent

from allyfilter.bootstrap import PageInit, PagePayload
from allyfilter.config_utils import ClientSettings
from allyfilter.mapper import EntityMaps
from allyfilter.watch import PageChangeHandler, process_page_file

from conftest import FILE_BASE

FAST = ClientSettings(poll_interval=0.01, poll_max_iterations=1)

PAGE = (
    '<html><body><div class="forumpost"><div class="body-content-container">'
    f'<a href="{FILE_BASE}/8/mod_forum/attachment/70/post.pdf">post.pdf</a>'
    '</div></div></body></html>'
)


def payload():
    maps = EntityMaps(module_maps={"forum_files": {"8/mod_forum/attachment/70/post.pdf": "hp"}})
    return PagePayload(maps, PageInit(can_view_feedback=True, course_id=2))


class TestProcessPageFile:
    """Tests for one pass from file to file"""

    def test_writes_output(self, tmp_path):
        source = tmp_path / "forum.html"
        source.write_text(PAGE)
        output = tmp_path / "out" / "forum.html"
        output.parent.mkdir()

        report = process_page_file(source, output, payload, FAST)
        assert report.wrapped == 1
        result = output.read_text()
        assert 'data-file-id="hp"' in result
        assert "ally-download" not in result

    def test_relative_source_path(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        Path("forum.html").write_text(PAGE)
        report = process_page_file(Path("forum.html"), Path("result.html"), payload, FAST)
        assert report.wrapped == 1
        assert 'data-file-id="hp"' in Path("result.html").read_text()

    def test_without_maps_copies_page(self, tmp_path):
        source = tmp_path / "forum.html"
        source.write_text(PAGE)
        output = tmp_path / "result.html"
        report = process_page_file(source, output, settings=FAST)
        assert report.wrapped == 0
        assert "filter-ally-wrapper" not in output.read_text()


class TestPageChangeHandler:
    """Tests for debounced reprocessing"""

    def handler(self, tmp_path, **kwargs):
        source = tmp_path / "forum.html"
        source.write_text(PAGE)
        return PageChangeHandler(source, tmp_path / "result.html", payload_loader=payload,
                                 settings=FAST, debounce=0.05, **kwargs)

    def test_burst_is_processed_once(self, tmp_path, mocker):
        run = mocker.patch("allyfilter.watch.process_page_file")
        handler = self.handler(tmp_path)
        for _ in range(3):
            handler.schedule(str(handler.source))
        time.sleep(0.3)
        assert run.call_count == 1
        assert handler.runs == 1

    def test_events(self, tmp_path, mocker):
        schedule = mocker.patch.object(PageChangeHandler, "schedule")
        handler = self.handler(tmp_path)
        handler.on_any_event(FileModifiedEvent(str(handler.source)))
        handler.on_any_event(FileDeletedEvent(str(handler.source)))
        handler.on_any_event(DirCreatedEvent(str(tmp_path / "new")))
        schedule.assert_called_once_with(str(handler.source))

    def test_failure_is_logged(self, tmp_path, mocker, caplog):
        handler = self.handler(tmp_path)
        handler.source.unlink()
        handler.schedule(str(handler.source))
        time.sleep(0.3)
        assert handler.runs == 1
        assert "Processing" in caplog.text

    def test_cancel(self, tmp_path, mocker):
        run = mocker.patch("allyfilter.watch.process_page_file")
        handler = self.handler(tmp_path)
        handler.schedule(str(handler.source))
        handler.cancel()
        time.sleep(0.15)
        run.assert_not_called()
