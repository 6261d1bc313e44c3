# tests/test_strategies.py
"""
Tests for per-module placement strategies
"""
import pytest

from allyfilter.config_utils import ClientSettings
from allyfilter.mapper import module_map_kinds
from allyfilter.page.dom import LivePage
from allyfilter.page.strategies import (
    STRATEGIES,
    AssignmentTreeStrategy,
    BookChapterStrategy,
    FolderTreeStrategy,
    ForumAttachmentStrategy,
    GlossaryAttachmentStrategy,
    LessonContentStrategy,
    ModuleKind,
    ResourceLinkStrategy,
    StrategyStatus,
    item_of,
    restructure_glossary_attachments,
    strategy_for,
)

from conftest import FILE_BASE

FAST = ClientSettings(poll_interval=0.01, poll_max_iterations=2)


def page_with(body, body_attrs="", url=""):
    return LivePage(f"<html><body {body_attrs}>{body}</body></html>", url=url)


def file_url(path):
    return f"{FILE_BASE}/{path}"


class TestRegistry:
    """Tests for strategy lookup"""

    def test_every_map_kind_has_a_strategy(self):
        assert {kind.value for kind in ModuleKind} == set(module_map_kinds())
        assert set(STRATEGIES) == set(ModuleKind)

    def test_strategy_for(self):
        assert strategy_for(ModuleKind.FOLDER_FILES) is FolderTreeStrategy

    def test_item_of(self):
        assert item_of("10/mod_book/chapter/50/c50.png") == "50"
        assert item_of("10/mod_book/chapter/c50.png") is None


class TestResourceLinks:
    """Tests for resource links on the course page"""

    MAPPING = {"12": {"content": "res-hash"}}
    VIEW_URL = "https://lms.example.edu/mod/resource/view.php?id=12"

    @pytest.mark.asyncio
    async def test_default_theme(self, full_access):
        page = page_with(
            f'<li id="module-12" class="activity"><div class="activity-instance">'
            f'<a href="{self.VIEW_URL}">Slides</a><a href="#">second</a></div></li>'
        )
        result = await ResourceLinkStrategy(page, self.MAPPING, full_access, settings=FAST).run()
        assert (result.status, result.wrapped) == (StrategyStatus.DONE, 1)
        feedback = page.select_one(".ally-feedback")
        assert feedback["data-file-id"] == "res-hash"
        assert feedback["data-file-url"] == self.VIEW_URL

    @pytest.mark.asyncio
    async def test_snap_theme(self, full_access):
        page = page_with(
            '<li id="module-12" class="snap-activity"><div class="activityinstance">'
            f'<div class="snap-asset-link"><a href="{self.VIEW_URL}">Slides</a></div></div></li>',
            body_attrs='class="theme-snap"',
        )
        result = await ResourceLinkStrategy(page, self.MAPPING, full_access, settings=FAST).run()
        assert result.wrapped == 1

    @pytest.mark.asyncio
    async def test_configured_theme_overrides_body_class(self, full_access):
        markup = ('<li id="module-12" class="snap-activity"><div class="activityinstance">'
                  f'<div class="snap-asset-link"><a href="{self.VIEW_URL}">Slides</a></div></div></li>')
        snap = ClientSettings(poll_interval=0.01, poll_max_iterations=2, theme="snap")
        result = await ResourceLinkStrategy(page_with(markup), self.MAPPING, full_access, settings=snap).run()
        assert result.wrapped == 1

        boost = ClientSettings(poll_interval=0.01, poll_max_iterations=2, theme="boost")
        page = page_with(markup, body_attrs='class="theme-snap"')
        result = await ResourceLinkStrategy(page, self.MAPPING, full_access, settings=boost).run()
        assert result.wrapped == 0

    @pytest.mark.asyncio
    async def test_module_without_content_hash(self, full_access):
        page = page_with(
            f'<li id="module-12"><div class="activity-instance"><a href="{self.VIEW_URL}">x</a></div></li>'
        )
        result = await ResourceLinkStrategy(page, {"12": {}}, full_access, settings=FAST).run()
        assert result.wrapped == 0


class TestTrees:
    """Tests for JavaScript-built file trees"""

    ASSIGN_PATH = "7/mod_assign/introattachment/0/brief.docx"

    @pytest.mark.asyncio
    async def test_assignment_tree(self, full_access):
        page = page_with(
            '<div id="assign_files_tree5e1"><div class="ygtvitem">'
            f'<a href="{file_url(self.ASSIGN_PATH)}">brief.docx</a></div></div>'
        )
        result = await AssignmentTreeStrategy(page, {self.ASSIGN_PATH: "h"}, full_access, settings=FAST).run()
        assert (result.status, result.wrapped) == (StrategyStatus.DONE, 1)

    @pytest.mark.asyncio
    async def test_tree_never_rendered(self, full_access):
        page = page_with('<div id="assign_files_tree5e1"></div>')
        result = await AssignmentTreeStrategy(page, {self.ASSIGN_PATH: "h"}, full_access, settings=FAST).run()
        assert result.status is StrategyStatus.NOT_READY
        assert page.select(".filter-ally-wrapper") == []

    @pytest.mark.asyncio
    async def test_empty_map_is_skipped(self, full_access):
        result = await AssignmentTreeStrategy(page_with(""), {}, full_access, settings=FAST).run()
        assert result.status is StrategyStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_folder_tree_with_subfolder(self, full_access):
        mapping = {
            "6/mod_folder/content/0/a.pdf": "ha",
            "6/mod_folder/content/0/sub/b.pdf": "hb",
        }
        page = page_with(
            '<div class="foldertree"><div class="filemanager"><div class="ygtvitem">'
            f'<span class="fp-filename-icon"><a href="{file_url("6/mod_folder/content/0/a.pdf")}">a</a></span>'
            '<div class="ygtvchildren"><div class="ygtvitem">'
            f'<span class="fp-filename-icon"><a href="{file_url("6/mod_folder/content/0/sub/b.pdf")}">b</a></span>'
            '</div></div></div></div></div>'
        )
        strategy = FolderTreeStrategy(page, mapping, full_access, settings=FAST)
        assert (await strategy.run()).wrapped == 2
        assert (await strategy.run()).wrapped == 0


class TestAttachments:
    """Tests for forum and glossary attachments"""

    @pytest.mark.asyncio
    async def test_forum_post(self, full_access):
        img_path = "8/mod_forum/attachment/70/photo.png"
        doc_path = "8/mod_forum/attachment/70/post.pdf"
        page = page_with(
            '<div class="forumpost">'
            f'<div class="attachedimages"><img src="{file_url(img_path)}"></div>'
            f'<div class="body-content-container"><a href="{file_url(doc_path)}">post.pdf</a></div>'
            '</div>'
        )
        strategy = ForumAttachmentStrategy(page, {img_path: "hi", doc_path: "hd"}, full_access, settings=FAST)
        assert (await strategy.run()).wrapped == 2
        assert page.select_one(".ally-image-wrapper .ally-image-cover")["data-file-id"] == "hi"

    GLOSSARY_PATH = "11/mod_glossary/attachment/3/term.pdf"

    def glossary_page(self):
        url = file_url(self.GLOSSARY_PATH)
        return page_with(
            '<div class="entry"><div class="attachments">'
            f'<a href="{url}"><img src="/theme/image.php/f/pdf" alt=""></a>'
            f'<a href="{url}">term.pdf</a><br>'
            '</div></div>'
        )

    def test_glossary_restructure(self):
        page = self.glossary_page()
        assert restructure_glossary_attachments(page) == 1
        row = page.select_one(".attachments > div.ally-glossary-attachment-row")
        anchors = row.find_all("a", recursive=False)
        assert len(anchors) == 2
        assert anchors[1]["class"] == ["ally-glossary-attachment"]
        assert page.select(".attachments br") == []

    def test_glossary_restructure_twice_changes_nothing(self):
        page = self.glossary_page()
        restructure_glossary_attachments(page)
        once = page.serialize()
        assert restructure_glossary_attachments(page) == 0
        assert page.serialize() == once

    @pytest.mark.asyncio
    async def test_glossary_wraps_main_link_only(self, full_access):
        page = self.glossary_page()
        strategy = GlossaryAttachmentStrategy(page, {self.GLOSSARY_PATH: "hg"}, full_access, settings=FAST)
        assert (await strategy.run()).wrapped == 1
        assert page.select_one(".filter-ally-wrapper > a.ally-glossary-attachment") is not None


class TestPathScoped:
    """Tests for lesson and book files"""

    LESSON_MAP = {
        "page_contents": {
            "9/mod_lesson/page_contents/40/p40.png": "h40",
            "9/mod_lesson/page_contents/41/p41.png": "h41",
        },
        "page_answers": {"9/mod_lesson/page_answers/5/ans.png": "ha"},
        "page_responses": {},
    }

    def lesson_page(self, url=""):
        return page_with(
            '<div class="box contents">'
            f'<img src="{file_url("9/mod_lesson/page_contents/40/p40.png")}">'
            f'<img src="{file_url("9/mod_lesson/page_contents/41/p41.png")}">'
            '</div>'
            '<div class="studentanswer"><table>'
            f'<tr><td><img src="{file_url("9/mod_lesson/page_answers/5/ans.png")}"></td></tr>'
            '<tr class="lastrow"><td>Well done</td></tr>'
            '</table></div>',
            url=url,
        )

    @pytest.mark.asyncio
    async def test_lesson_current_page_only(self, full_access):
        page = self.lesson_page()
        strategy = LessonContentStrategy(page, self.LESSON_MAP, full_access, params={"pageid": 40}, settings=FAST)
        assert (await strategy.run()).wrapped == 2
        ids = sorted(span["data-file-id"] for span in page.select(".ally-image-cover"))
        assert ids == ["h40", "ha"]

    @pytest.mark.asyncio
    async def test_lesson_page_from_query(self, full_access):
        page = self.lesson_page(url="https://lms.example.edu/mod/lesson/view.php?id=16&pageid=41")
        strategy = LessonContentStrategy(page, self.LESSON_MAP, full_access, settings=FAST)
        await strategy.run()
        ids = sorted(span["data-file-id"] for span in page.select(".ally-image-cover"))
        assert ids == ["h41", "ha"]

    BOOK_MAP = {
        "10/mod_book/chapter/50/c50.png": "h50",
        "10/mod_book/chapter/51/c51.png": "h51",
    }

    def book_page(self, url=""):
        return page_with(
            '<div class="book_content">'
            f'<img src="{file_url("10/mod_book/chapter/50/c50.png")}">'
            f'<img src="{file_url("10/mod_book/chapter/51/c51.png")}">'
            '</div>',
            url=url,
        )

    @pytest.mark.asyncio
    async def test_book_current_chapter(self, full_access):
        page = self.book_page()
        strategy = BookChapterStrategy(page, self.BOOK_MAP, full_access, params={"chapterid": "51"}, settings=FAST)
        assert (await strategy.run()).wrapped == 1
        assert page.select_one(".ally-image-cover")["data-file-id"] == "h51"

    @pytest.mark.asyncio
    async def test_book_without_chapter(self, full_access):
        strategy = BookChapterStrategy(self.book_page(), self.BOOK_MAP, full_access, settings=FAST)
        result = await strategy.run()
        assert (result.status, result.wrapped) == (StrategyStatus.DONE, 0)

    def test_encoded_paths_in_selectors(self, full_access):
        strategy = BookChapterStrategy(page_with(""), {"10/mod_book/chapter/50/my pic.png": "h"}, full_access,
                                       params={"chapterid": 50})
        assert strategy.locate() == [
            '.book_content img[src*="10/mod_book/chapter/50/my%20pic.png"], '
            '.book_content a[href*="10/mod_book/chapter/50/my%20pic.png"]'
        ]
