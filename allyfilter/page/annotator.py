"""
annotator.py - Attach rich content identifiers to rendered text blocks

Text that reaches the page without going through the filter (section
summaries, module intros, forum posts, lesson pages...) gets its
data-ally-richcontent attribute here. Each kind of block can sit in
several page skeletons depending on theme and course format, so every
annotation tries a small list of selectors and sets the attribute on
whatever matches. Setting an attribute twice is harmless.

Annotation map layout, per component:

    mod_forum / mod_hsuforum: {"intros": {cmid: ident}, "posts": {postid: ident}}
    mod_glossary:             {"intros": ..., "entries": {entryid: ident}}
    mod_page:                 {"intros": ..., "content": {cmid: ident}}
    mod_book:                 {"intros": ..., "chapters": {chapterid: ident}}
    mod_lesson:               {"intros": ..., "lesson_pages": {pageid: ident},
                               "lesson_answers": {"page_answer_num": ident},
                               "lesson_answers_response": {"page_answer_num": ident}}
    block_html:               {blockinstanceid: ident}
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from bs4 import Tag

from allyfilter.identifiers import build_content_ident
from allyfilter.page.dom import LivePage


logger = logging.getLogger(__name__)

ANNOTATION_ATTR = "data-ally-richcontent"
LESSON_EDIT_PAGE = "page-mod-lesson-edit"

# Labels the lesson edit page puts in front of numbered answers/responses
ANSWER_LABEL = "Answer"
RESPONSE_LABEL = "Response"


def set_annotation(elements: Iterable[Tag], ident: str) -> int:
    count = 0
    for element in elements:
        element[ANNOTATION_ATTR] = ident
        count += 1
    return count


def split_answer_key(key: str) -> Optional[List[str]]:
    """"{pageid}_{answerid}_{number}" -> [pageid, answerid, number]"""
    parts = str(key).split("_")
    if len(parts) < 3:
        logger.debug("Ignoring malformed lesson answer key %r", key)
        return None
    return parts[:3]


class Annotator:
    def __init__(self, page: LivePage, params: Optional[Dict[str, Any]] = None, course_id: int = 0):
        self.page = page
        self.params = params or {}
        self.course_id = course_id

    def annotate(self, selectors: Iterable[str], ident: str) -> int:
        return set_annotation(self.page.select(", ".join(selectors)), ident)

    def _param(self, name: str) -> Optional[str]:
        value = self.params.get(name) or self.page.query.get(name)
        return str(value) if value else None

    # =========================================================================
    # Course
    # =========================================================================

    def annotate_sections(self, section_maps: Mapping[str, int]) -> int:
        count = 0
        for section_key, section_id in section_maps.items():
            ident = build_content_ident("course", "course_sections", "summary", section_id)
            count += self.annotate([
                f'#{section_key} > .content div[class*="summarytext"] .no-overflow',
                f"body.theme-snap #{section_key} > .content > .summary > div > .no-overflow",
            ], ident)
        return count

    def annotate_snap_course_summary(self) -> int:
        summary = self.page.select("#snap-course-footer-summary > div.no-overflow")
        if not summary:
            return 0
        return set_annotation(summary, build_content_ident("course", "course", "summary", self.course_id))

    def annotate_html_blocks(self, annotation_maps: Mapping[str, Any]) -> int:
        count = 0
        for instance_id, ident in (annotation_maps.get("block_html") or {}).items():
            count += self.annotate([
                f"#inst{instance_id}.block_html > .card-body > .card-text > .no-overflow",
                f"#inst{instance_id}.block_html > .content > .no-overflow",
            ], ident)
        return count

    # =========================================================================
    # Modules
    # =========================================================================

    def annotate_module_intros(self, intros: Optional[Mapping[str, str]], module: str,
                               additional_selectors: Iterable[str] = ()) -> int:
        """
        Module descriptions, on the module's own page or on the course page.

        additional_selectors may contain "{{i}}", replaced by the module id.
        """
        count = 0
        for cmid, ident in (intros or {}).items():
            selectors = [
                f"body.path-mod-{module}.cmid-{cmid} #intro > .no-overflow",
                f"li.activity.modtype_{module}#module-{cmid} .description .no-overflow > .no-overflow",
                f"li.snap-activity.modtype_{module}#module-{cmid} .contentafterlink > .no-overflow",
            ]
            selectors.extend(s.replace("{{i}}", str(cmid)) for s in additional_selectors)
            count += self.annotate(selectors, ident)
        return count

    def annotate_forums(self, mapping: Mapping[str, Any]) -> int:
        count = self.annotate_module_intros(mapping.get("intros"), "forum")
        for post_id, ident in (mapping.get("posts") or {}).items():
            count += self.annotate([f"#page-mod-forum-discuss #p{post_id} div.forumpost div.no-overflow"], ident)
        return count

    def annotate_open_forums(self, mapping: Mapping[str, Any]) -> int:
        count = self.annotate_module_intros(
            mapping.get("intros"), "hsuforum",
            ["#hsuforum-header .hsuforum_introduction > .no-overflow"],
        )
        for post_id, ident in (mapping.get("posts") or {}).items():
            count += self.annotate([f'article[id="p{post_id}"] div.posting'], ident)
        return count

    def annotate_glossary(self, mapping: Mapping[str, Any]) -> int:
        count = self.annotate_module_intros(mapping.get("intros"), "glossary")
        for entry_id, ident in (mapping.get("entries") or {}).items():
            # Entries are identified by the id in their command links
            for link in self.page.select(f'.entrylowersection .commands a[href*="id={entry_id}"]'):
                for post in link.find_parents(class_="glossarypost"):
                    count += set_annotation(post.select(".entry .no-overflow"), ident)
        return count

    def annotate_page(self, mapping: Mapping[str, Any]) -> int:
        count = self.annotate_module_intros(
            mapping.get("intros"), "page",
            ["li.snap-native.modtype_page#module-{{i}} .contentafterlink > .summary-text"],
        )
        for cmid, ident in (mapping.get("content") or {}).items():
            count += self.annotate([
                "#page-mod-page-view #region-main .box.generalbox > .no-overflow",
                f"li.snap-native.modtype_page#module-{cmid} .pagemod-content",
            ], ident)
        return count

    def annotate_book(self, mapping: Mapping[str, Any]) -> int:
        # The intro only shows on the course page
        count = self.annotate_module_intros(
            mapping.get("intros"), "book",
            ["li.snap-native.modtype_book#module-{{i}} .contentafterlink > .summary-text .no-overflow"],
        )
        chapter_id = self._param("chapterid")
        for chapter, ident in (mapping.get("chapters") or {}).items():
            if str(chapter) != chapter_id:
                continue
            count += self.annotate([
                "#page-mod-book-view #region-main .box.generalbox.book_content > .no-overflow",
                f"li.snap-native.modtype_page#module-{chapter} .pagemod-content",
            ], ident)
        return count

    # =========================================================================
    # Lesson
    # =========================================================================

    def _lesson_table(self, page_id: str) -> Optional[Tag]:
        anchor = self.page.select_one(f'a[id="lesson-{page_id}"]')
        if anchor is None:
            return None
        tables = anchor.find_parents("table")
        return tables[-1] if tables else None

    def _annotate_numbered(self, page_id: str, number: str, label: str, ident: str) -> int:
        """Edit page: second cell of the row whose label reads "{label} {number}"."""
        table = self._lesson_table(page_id)
        if table is None:
            return 0
        wanted = f"{label} {number}"
        count = 0
        for label_el in table.select("td > label"):
            if wanted not in label_el.get_text():
                continue
            for row in label_el.find_parents("tr"):
                cells = row.find_all("td", recursive=False)
                if len(cells) > 1:
                    count += set_annotation([cells[1]], ident)
        return count

    def current_lesson_page(self) -> Optional[str]:
        field = self.page.select_one('form[action*="continue.php"] input[name="pageid"]')
        if field is not None:
            return field.get("value")
        return self.page.query.get("pageid")

    def annotate_lesson_pages(self, pages: Mapping[str, str]) -> int:
        count = 0
        editing = self.page.body_id == LESSON_EDIT_PAGE
        for page_id, ident in pages.items():
            if editing:
                table = self._lesson_table(page_id)
                if table is None:
                    continue
                node = table.select_one('tbody > tr > td > div[class*="no-overflow"]')
                if node is not None:
                    count += set_annotation([node], ident)
                continue

            if self.current_lesson_page() != str(page_id):
                continue
            count += self.annotate([
                "#page-mod-lesson-view #region-main .box.contents > .no-overflow",
                "#page-mod-lesson-view #region-main form > fieldset > .fcontainer > .contents .no-overflow",
                f"li.snap-native.modtype_page#module-{page_id} .pagemod-content",
            ], ident)
        return count

    def _wrap_answer(self, answer_id: str) -> None:
        """Move what follows the answer's radio button into span#answer_wrapper_{id}, once per page."""
        answer = self.page.select_one(f"#id_answerid_{answer_id}")
        if answer is None:
            return
        data = self.page.node_data(answer)
        if data.get("annotated") != 1:
            label = answer.parent
            if label is not None and label.name == "label":
                content = answer.find_next_siblings()
                wrapper = self.page.new_tag("span", {"id": f"answer_wrapper_{answer_id}"})
                label.append(wrapper)
                for element in content:
                    wrapper.append(element.extract())
        data["annotated"] = 1

    def annotate_lesson_answers(self, answers: Mapping[str, str]) -> int:
        count = 0
        editing = self.page.body_id == LESSON_EDIT_PAGE
        answer_param = self._param("answerid")
        for key, ident in answers.items():
            parts = split_answer_key(key)
            if parts is None:
                continue
            page_id, answer_id, number = parts

            if editing:
                count += self._annotate_numbered(page_id, number, ANSWER_LABEL, ident)
                continue

            count += self.annotate([f'#page-mod-lesson-view label[for="id_answerid_{answer_id}"]'], ident)
            if answer_param == answer_id:
                count += self.annotate([".studentanswer tr:nth-of-type(1) > td div"], ident)
            else:
                self._wrap_answer(answer_id)
            count += self.annotate([f"#answer_wrapper_{answer_id}"], ident)
        return count

    def annotate_lesson_responses(self, responses: Mapping[str, str]) -> int:
        count = 0
        editing = self.page.body_id == LESSON_EDIT_PAGE
        answer_param = self._param("answerid")
        for key, ident in responses.items():
            parts = split_answer_key(key)
            if parts is None:
                continue
            page_id, response_id, number = parts

            if editing:
                count += self._annotate_numbered(page_id, number, RESPONSE_LABEL, ident)
                continue

            # Response ids are answer ids
            if answer_param != response_id:
                continue
            wrapper_id = f"response_wrapper_{response_id}"
            if not self.page.select(f".studentanswer tr.lastrow > td #{wrapper_id}"):
                br = self.page.select_one(".studentanswer tr.lastrow > td > br")
                if br is not None:
                    content = br.find_next_siblings()
                    wrapper = self.page.new_tag("span", {"id": wrapper_id})
                    br.insert_after(wrapper)
                    for element in content:
                        wrapper.append(element.extract())
            count += self.annotate([f"#{wrapper_id}"], ident)
        return count

    def annotate_lesson(self, mapping: Mapping[str, Any]) -> int:
        # The intro only shows on the course page
        count = self.annotate_module_intros(
            mapping.get("intros"), "lesson",
            ["li.snap-native.modtype_lesson#module-{{i}} .contentafterlink > .summary-text .no-overflow"],
        )
        count += self.annotate_lesson_pages(mapping.get("lesson_pages") or {})
        count += self.annotate_lesson_answers(mapping.get("lesson_answers") or {})
        count += self.annotate_lesson_responses(mapping.get("lesson_answers_response") or {})
        return count

    # =========================================================================
    # Dispatch
    # =========================================================================

    def annotate_modules(self, annotation_maps: Mapping[str, Any]) -> int:
        handlers = (
            ("mod_forum", self.annotate_forums),
            ("mod_hsuforum", self.annotate_open_forums),
            ("mod_glossary", self.annotate_glossary),
            ("mod_page", self.annotate_page),
            ("mod_book", self.annotate_book),
            ("mod_lesson", self.annotate_lesson),
        )
        count = 0
        for component, handler in handlers:
            mapping = annotation_maps.get(component)
            if mapping is not None:
                count += handler(mapping)
        return count
