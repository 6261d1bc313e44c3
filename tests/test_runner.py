# tests/test_runner.py
"""
Tests for the client-side pass: waiting, debouncing and running strategies
"""
import asyncio
import pytest

from allyfilter.bootstrap import PageInit, PagePayload, render_script
from allyfilter.config_utils import ClientSettings
from allyfilter.mapper import EntityMaps
from allyfilter.page.dom import LivePage
from allyfilter.page.runner import PlaceholderRunner, process_page
from allyfilter.page.scheduling import MUTATION, DebounceGate, when_true
from allyfilter.page.strategies import ModuleKind, StrategyStatus

from conftest import FILE_BASE

FAST = ClientSettings(debounce=0.01, startup_grace=0, poll_interval=0.01,
                      poll_max_iterations=2, folder_poll_interval=0.01)

A_PDF = "6/mod_folder/content/0/a.pdf"
B_PDF = "6/mod_folder/content/0/sub/b.pdf"

FOLDER_PAGE = (
    '<html><body><div class="foldertree"><div class="filemanager"><div class="ygtvitem">'
    f'<span class="fp-filename-icon"><a href="{FILE_BASE}/{A_PDF}">a.pdf</a></span>'
    '</div></div></div></body></html>'
)


def folder_payload(**init):
    maps = EntityMaps(module_maps={"folder_files": {A_PDF: "ha", B_PDF: "hb"}})
    init = {"can_view_feedback": True, "can_download": True, "course_id": 2, **init}
    return PagePayload(maps, PageInit(**init))


def expand_subfolder(page):
    """What the folder tree does when a subfolder is opened"""
    item = page.select_one(".foldertree .ygtvitem")
    node = page.fragment(f'<span class="fp-filename-icon"><a href="{FILE_BASE}/{B_PDF}">b.pdf</a></span>')[0]
    item.append(node)
    return node


class TestWhenTrue:
    """Tests for polling a predicate"""

    @pytest.mark.asyncio
    async def test_true_immediately(self):
        assert await when_true(lambda: True, max_iterations=0, interval=10)

    @pytest.mark.asyncio
    async def test_becomes_true(self):
        state = {"calls": 0}

        def predicate():
            state["calls"] += 1
            return state["calls"] >= 3

        assert await when_true(predicate, max_iterations=5, interval=0.001)
        assert state["calls"] == 3

    @pytest.mark.asyncio
    async def test_gives_up(self):
        calls = []
        assert not await when_true(lambda: calls.append(1), max_iterations=2, interval=0.001)
        assert len(calls) == 3


class TestDebounceGate:
    """Tests for coalescing triggers"""

    @pytest.mark.asyncio
    async def test_burst_runs_once(self):
        calls = []

        async def func():
            calls.append(1)
            return "done"

        gate = DebounceGate(func, wait=0.02, startup_grace=0)
        futures = [gate.trigger("ajax") for _ in range(3)]
        assert futures[0] is futures[1] is futures[2]
        assert gate.pending
        assert await futures[0] == "done"
        assert calls == [1]
        assert gate.runs == 1
        assert not gate.pending

    @pytest.mark.asyncio
    async def test_later_trigger_gets_new_run(self):
        async def func():
            return gate.runs

        gate = DebounceGate(func, wait=0.01, startup_grace=0)
        assert await gate.trigger() == 1
        assert await gate.trigger() == 2

    @pytest.mark.asyncio
    async def test_mutations_ignored_during_grace(self):
        async def func():
            return None

        gate = DebounceGate(func, wait=0.01, startup_grace=60)
        gate.start()
        assert gate.in_grace()
        assert gate.trigger(MUTATION) is None
        assert gate.trigger("ajax") is not None
        gate.cancel()

    @pytest.mark.asyncio
    async def test_grace_needs_start(self):
        gate = DebounceGate(lambda: None, startup_grace=60)
        assert not gate.in_grace()

    @pytest.mark.asyncio
    async def test_failure_reaches_future(self):
        async def func():
            raise RuntimeError("boom")

        gate = DebounceGate(func, wait=0.01, startup_grace=0)
        with pytest.raises(RuntimeError, match="boom"):
            await gate.trigger()

    @pytest.mark.asyncio
    async def test_cancel(self):
        async def func():
            return None

        gate = DebounceGate(func, wait=60, startup_grace=0)
        future = gate.trigger()
        gate.cancel()
        assert future.cancelled()
        assert not gate.pending


class TestApplyPlaceholders:
    """Tests for a single pass"""

    @pytest.mark.asyncio
    async def test_every_task_completes(self):
        page = LivePage(FOLDER_PAGE)
        report = await PlaceholderRunner(page, folder_payload(), FAST).apply_placeholders()
        assert report.completed == len(ModuleKind) + 4
        assert report.wrapped == 1
        assert report.status_of(ModuleKind.FOLDER_FILES) is StrategyStatus.DONE
        assert report.status_of(ModuleKind.BOOK_FILES) is StrategyStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_empty_maps_still_complete(self):
        payload = PagePayload(EntityMaps(), PageInit(can_view_feedback=True))
        report = await PlaceholderRunner(LivePage(FOLDER_PAGE), payload, FAST).apply_placeholders()
        assert report.completed == len(ModuleKind) + 4
        assert report.wrapped == 0

    @pytest.mark.asyncio
    async def test_no_payload(self):
        report = await PlaceholderRunner(LivePage(FOLDER_PAGE), None, FAST).apply_placeholders()
        assert report.completed == 0

    @pytest.mark.asyncio
    async def test_sections_are_annotated(self):
        page = LivePage(
            '<html><body><li id="section-1"><div class="content"><div class="summarytext">'
            '<div class="no-overflow">Week</div></div></div></li></body></html>'
        )
        payload = PagePayload(EntityMaps(section_maps={"section-1": 31}), PageInit(can_download=True))
        report = await PlaceholderRunner(page, payload, FAST).apply_placeholders()
        assert report.annotated == 1
        assert page.select_one(".no-overflow")["data-ally-richcontent"] == "course:course_sections:summary:31"


class TestStart:
    """Tests for wiring the pass to page events"""

    @pytest.mark.asyncio
    async def test_nothing_to_do_without_permissions(self):
        runner = PlaceholderRunner(LivePage(FOLDER_PAGE), folder_payload(can_view_feedback=False,
                                                                          can_download=False), FAST)
        assert runner.start() is None

    @pytest.mark.asyncio
    async def test_first_pass_then_ajax(self):
        page = LivePage(FOLDER_PAGE)
        runner = PlaceholderRunner(page, folder_payload(), FAST)
        first = runner.start()

        # Ajax before the first pass has finished is ignored
        page.ajax_complete("/lib/ajax/service.php")
        report = await first
        await asyncio.sleep(0)
        assert report.wrapped == 1
        assert runner.initialised
        assert runner.gate.runs == 1

        page.ajax_complete("/lib/ajax/service.php")
        assert runner.gate.pending
        await asyncio.sleep(0.05)
        assert runner.gate.runs == 2
        runner.stop()

    @pytest.mark.asyncio
    async def test_folder_tree_is_watched_again(self):
        page = LivePage(FOLDER_PAGE)
        runner = PlaceholderRunner(page, folder_payload(), FAST)
        runner.watch_folder_tree()
        tree = page.select_one(".foldertree > .filemanager")
        assert page.is_observed(tree)

        page.notify_mutation(expand_subfolder(page))
        assert not page.is_observed(tree)
        await asyncio.sleep(0.05)

        assert len(page.select(".filter-ally-wrapper")) == 2
        assert page.is_observed(tree)
        runner.stop()

    @pytest.mark.asyncio
    async def test_folder_rerun_failure_is_logged(self, caplog):
        page = LivePage(FOLDER_PAGE)
        runner = PlaceholderRunner(page, folder_payload(), FAST)

        async def broken():
            raise RuntimeError("tree vanished")

        runner.rerun_folder = broken
        runner.watch_folder_tree()
        page.notify_mutation(expand_subfolder(page))
        await asyncio.sleep(0.05)
        runner.stop()

        assert "Folder rerun failed: tree vanished" in caplog.text

    @pytest.mark.asyncio
    async def test_folder_tree_polled_without_observers(self):
        page = LivePage(FOLDER_PAGE, supports_observers=False)
        runner = PlaceholderRunner(page, folder_payload(), FAST)
        runner.watch_folder_tree()

        expand_subfolder(page)
        await asyncio.sleep(0.05)
        runner.stop()
        assert len(page.select(".filter-ally-wrapper")) == 2


class TestProcessPage:
    """Tests for one pass over a saved page"""

    @pytest.mark.asyncio
    async def test_uses_embedded_payload(self):
        payload = folder_payload()
        script = render_script(payload.maps, payload.init)
        html = FOLDER_PAGE.replace("</body>", f"{script}</body>")

        result, report = await process_page(html, settings=FAST)
        assert report.wrapped == 1
        assert 'data-file-id="ha"' in result

    @pytest.mark.asyncio
    async def test_page_without_maps(self):
        result, report = await process_page(FOLDER_PAGE, settings=FAST)
        assert report.completed == 0
        assert "filter-ally-wrapper" not in result
