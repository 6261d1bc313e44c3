# tests/test_annotator.py
"""
Tests for rich content annotation on the page
"""
from allyfilter.page.annotator import ANNOTATION_ATTR, Annotator, split_answer_key
from allyfilter.page.dom import LivePage


def page_with(body, body_attrs="", url=""):
    return LivePage(f"<html><body {body_attrs}>{body}</body></html>", url=url)


def annotated(page):
    return {el.get_text(strip=True): el[ANNOTATION_ATTR] for el in page.select(f"[{ANNOTATION_ATTR}]")}


class TestCourseAnnotations:
    """Tests for sections, course summary and HTML blocks"""

    def test_section_summary(self):
        page = page_with(
            '<li id="section-1"><div class="content"><div class="summary"><div class="summarytext">'
            '<div class="no-overflow">Week one</div></div></div></div></li>'
            '<li id="section-2"><div class="content"><div class="summarytext">'
            '<div class="no-overflow">Week two</div></div></div></li>'
        )
        count = Annotator(page).annotate_sections({"section-1": 31, "section-2": 32})
        assert count == 2
        assert annotated(page) == {
            "Week one": "course:course_sections:summary:31",
            "Week two": "course:course_sections:summary:32",
        }

    def test_snap_section_summary(self):
        page = page_with(
            '<li id="section-1"><div class="content"><div class="summary"><div>'
            '<div class="no-overflow">Snap week</div></div></div></div></li>',
            body_attrs='class="theme-snap"',
        )
        assert Annotator(page).annotate_sections({"section-1": 31}) == 1

    def test_snap_course_summary(self):
        page = page_with('<div id="snap-course-footer-summary"><div class="no-overflow">About</div></div>')
        assert Annotator(page, course_id=2).annotate_snap_course_summary() == 1
        assert annotated(page) == {"About": "course:course:summary:2"}

    def test_no_snap_summary(self):
        assert Annotator(page_with("<p>x</p>")).annotate_snap_course_summary() == 0

    def test_html_blocks(self):
        page = page_with(
            '<section id="inst4" class="block_html"><div class="card-body"><div class="card-text">'
            '<div class="no-overflow">Block text</div></div></div></section>'
        )
        maps = {"block_html": {"4": "block_html:block_instances:configdata:4"}}
        assert Annotator(page).annotate_html_blocks(maps) == 1
        assert annotated(page) == {"Block text": "block_html:block_instances:configdata:4"}


class TestModuleAnnotations:
    """Tests for module intros and module content"""

    def test_intro_on_course_page(self):
        page = page_with(
            '<li class="activity modtype_forum" id="module-15"><div class="description">'
            '<div class="no-overflow"><div class="no-overflow">Forum intro</div></div></div></li>'
        )
        count = Annotator(page).annotate_modules({"mod_forum": {"intros": {"15": "mod_forum:forum:intro:6"}}})
        assert count == 1
        assert annotated(page) == {"Forum intro": "mod_forum:forum:intro:6"}

    def test_intro_on_module_page(self):
        page = page_with(
            '<div id="intro"><div class="no-overflow">Glossary intro</div></div>',
            body_attrs='class="path-mod-glossary cmid-18"',
        )
        Annotator(page).annotate_glossary({"intros": {"18": "mod_glossary:glossary:intro:9"}})
        assert annotated(page) == {"Glossary intro": "mod_glossary:glossary:intro:9"}

    def test_forum_posts(self):
        page = page_with(
            '<div id="p77"><div class="forumpost"><div class="no-overflow">Post body</div></div></div>',
            body_attrs='id="page-mod-forum-discuss"',
        )
        Annotator(page).annotate_forums({"posts": {"77": "mod_forum:forum_posts:message:77"}})
        assert annotated(page) == {"Post body": "mod_forum:forum_posts:message:77"}

    def test_open_forum_posts(self):
        page = page_with('<article id="p9"><div class="posting">Open post</div></article>')
        Annotator(page).annotate_open_forums({"posts": {"9": "mod_hsuforum:hsuforum_posts:message:9"}})
        assert annotated(page) == {"Open post": "mod_hsuforum:hsuforum_posts:message:9"}

    def test_glossary_entries_by_command_link(self):
        page = page_with(
            '<div class="glossarypost"><div class="entry"><div class="no-overflow">Definition</div></div>'
            '<div class="entrylowersection"><div class="commands">'
            '<a href="edit.php?cmid=18&amp;id=5">Edit</a></div></div></div>'
            '<div class="glossarypost"><div class="entry"><div class="no-overflow">Other</div></div>'
            '<div class="entrylowersection"><div class="commands">'
            '<a href="edit.php?cmid=18&amp;id=6">Edit</a></div></div></div>'
        )
        Annotator(page).annotate_glossary({"entries": {"5": "mod_glossary:glossary_entries:definition:5"}})
        assert annotated(page) == {"Definition": "mod_glossary:glossary_entries:definition:5"}

    def test_page_content(self):
        page = page_with(
            '<div id="region-main"><div class="box generalbox"><div class="no-overflow">Page text</div></div></div>',
            body_attrs='id="page-mod-page-view"',
        )
        Annotator(page).annotate_page({"content": {"20": "mod_page:page:content:3"}})
        assert annotated(page) == {"Page text": "mod_page:page:content:3"}

    def test_book_current_chapter_only(self):
        page = page_with(
            '<div id="region-main"><div class="box generalbox book_content">'
            '<div class="no-overflow">Chapter text</div></div></div>',
            body_attrs='id="page-mod-book-view"',
            url="https://lms.example.edu/mod/book/view.php?id=17&chapterid=50",
        )
        chapters = {"chapters": {"50": "mod_book:book_chapters:content:50", "51": "mod_book:book_chapters:content:51"}}
        assert Annotator(page).annotate_book(chapters) == 1
        assert annotated(page) == {"Chapter text": "mod_book:book_chapters:content:50"}


LESSON_EDIT = (
    '<table class="generaltable"><tbody>'
    '<tr><th><a id="lesson-40"></a>Page one</th></tr>'
    '<tr><td><div class="no-overflow">Page one text</div></td></tr>'
    '<tr><td><label>Answer 1</label></td><td><div>Yes</div></td></tr>'
    '<tr><td><label>Response 1</label></td><td><div>Correct</div></td></tr>'
    '<tr><td><label>Answer 2</label></td><td><div>No</div></td></tr>'
    '</tbody></table>'
)

LESSON_VIEW = (
    '<div id="region-main"><div class="box contents"><div class="no-overflow">Page one text</div></div>'
    '<form action="https://lms.example.edu/mod/lesson/continue.php">'
    '<input type="hidden" name="pageid" value="40">'
    '<label for="id_answerid_5"><input type="radio" id="id_answerid_5"><span>Yes</span><span>indeed</span></label>'
    '</form></div>'
)

LESSON_RESPONSE = (
    '<div class="studentanswer"><table>'
    '<tr><td><div>Your answer: Yes</div></td></tr>'
    '<tr class="lastrow"><td>Response:<br><p>Correct</p><p>Well done</p></td></tr>'
    '</table></div>'
)


class TestLessonAnnotations:
    """Tests for lesson pages, answers and responses"""

    def test_split_answer_key(self):
        assert split_answer_key("40_5_1") == ["40", "5", "1"]
        assert split_answer_key("40_5") is None

    def test_view_page_annotates_current_page_only(self):
        page = page_with(LESSON_VIEW, body_attrs='id="page-mod-lesson-view"')
        count = Annotator(page).annotate_lesson_pages({"40": "mod_lesson:lesson_pages:contents:40",
                                                       "41": "mod_lesson:lesson_pages:contents:41"})
        assert count == 1
        assert annotated(page) == {"Page one text": "mod_lesson:lesson_pages:contents:40"}

    def test_edit_page(self):
        page = page_with(LESSON_EDIT, body_attrs='id="page-mod-lesson-edit"')
        annotator = Annotator(page)
        annotator.annotate_lesson({
            "lesson_pages": {"40": "mod_lesson:lesson_pages:contents:40"},
            "lesson_answers": {"40_5_1": "mod_lesson:lesson_answers:answer:5"},
            "lesson_answers_response": {"40_5_1": "mod_lesson:lesson_answers:response:5"},
        })
        assert annotated(page) == {
            "Page one text": "mod_lesson:lesson_pages:contents:40",
            "Yes": "mod_lesson:lesson_answers:answer:5",
            "Correct": "mod_lesson:lesson_answers:response:5",
        }

    def test_answer_content_is_wrapped_once(self):
        page = page_with(LESSON_VIEW, body_attrs='id="page-mod-lesson-view"')
        annotator = Annotator(page)
        answers = {"40_5_1": "mod_lesson:lesson_answers:answer:5"}
        assert annotator.annotate_lesson_answers(answers) == 2
        annotator.annotate_lesson_answers(answers)

        wrappers = page.select("#answer_wrapper_5")
        assert len(wrappers) == 1
        assert [p.get_text() for p in wrappers[0].find_all("span")] == ["Yes", "indeed"]
        assert wrappers[0].parent.name == "label"
        assert wrappers[0][ANNOTATION_ATTR] == "mod_lesson:lesson_answers:answer:5"

    def test_answered_page_annotates_student_answer(self):
        page = page_with(LESSON_RESPONSE, body_attrs='id="page-mod-lesson-view"')
        Annotator(page, params={"answerid": 5}).annotate_lesson_answers({"40_5_1": "mod_lesson:lesson_answers:answer:5"})
        assert annotated(page) == {"Your answer: Yes": "mod_lesson:lesson_answers:answer:5"}

    def test_response_is_wrapped_after_break(self):
        page = page_with(LESSON_RESPONSE, body_attrs='id="page-mod-lesson-view"')
        annotator = Annotator(page, params={"answerid": "5"})
        responses = {"40_5_1": "mod_lesson:lesson_answers:response:5"}
        assert annotator.annotate_lesson_responses(responses) == 1
        assert annotator.annotate_lesson_responses(responses) == 1

        wrapper = page.select_one(".studentanswer tr.lastrow #response_wrapper_5")
        assert wrapper.get_text() == "CorrectWell done"
        assert wrapper[ANNOTATION_ATTR] == "mod_lesson:lesson_answers:response:5"
        assert len(page.select("#response_wrapper_5")) == 1

    def test_response_for_other_answer_is_ignored(self):
        page = page_with(LESSON_RESPONSE, body_attrs='id="page-mod-lesson-view"')
        annotator = Annotator(page, params={"answerid": "6"})
        assert annotator.annotate_lesson_responses({"40_5_1": "x:y:z:5"}) == 0
        assert page.select("#response_wrapper_5") == []
