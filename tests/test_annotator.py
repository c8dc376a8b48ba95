"""Tests for annotation scoring, selection and screenshot capture."""

from unittest.mock import MagicMock

import pytest

from conftest import FakePage, make_decl, make_font, make_usage, run

from app.annotator import (
    CANDIDATES_JS,
    PAGE_DIMENSIONS_JS,
    PALETTE,
    RENDER_JS,
    AnnotationCandidate,
    _render_annotations,
    annotatable_groups,
    annotate_page,
    assign_colors,
    build_annotations,
    capture_annotated_screenshots,
    deduplicate_candidates,
    fingerprint,
    score_candidate,
    select_annotations,
)
from app.errors import AnnotationFailure
from app.models import AnnotationRecord, BoundingBox, CanonicalFontGroup, InspectOptions


def candidate(tag="p", text="A reasonably long paragraph of body copy", y=100.0, x=50.0,
              font="Inter, sans-serif", size=16, section="main", id="0", parent="div", w=300.0, h=40.0):
    return AnnotationCandidate.from_payload({
        "id": id, "tag": tag, "fontFamily": font, "text": text, "textLength": len(text),
        "fontSize": size, "parentTag": parent,
        "rect": {"x": x, "y": y, "width": w, "height": h},
        "viewport": {"width": 1920, "height": 1080},
        "section": section,
    })


def record(priority, section="main", id="0", family="Inter"):
    return AnnotationRecord(canonical_family_name=family, color="#000", bounding_box=BoundingBox(0, 0, 10, 10),
                            priority=priority, section=section, annotation_id=id)


def group(name, count=10, fonts=None, raw=None):
    return CanonicalFontGroup(
        canonical_family_name=name,
        usages=[make_usage(r, count) for r in (raw or [name])],
        downloaded_fonts=fonts or [],
        total_element_count=count,
    )


class TestScoring:
    def test_headings_outrank_paragraphs(self):
        h1 = score_candidate(candidate(tag="h1"))
        h3 = score_candidate(candidate(tag="h3"))
        p = score_candidate(candidate(tag="p"))
        assert h1 > h3 > p

    def test_above_fold_beats_below(self):
        assert score_candidate(candidate(y=100)) > score_candidate(candidate(y=800)) > score_candidate(candidate(y=3000))

    def test_generic_and_short_text_penalized(self):
        assert score_candidate(candidate(text="Read more")) < score_candidate(candidate(text="Annual report"))
        assert score_candidate(candidate(text="Hey")) < score_candidate(candidate(text="Hello there"))

    def test_unknown_section_becomes_other(self):
        assert candidate(section="hero").section == "other"


class TestFingerprintAndDedup:
    def test_fingerprint_buckets(self):
        fp = fingerprint(candidate(tag="a", text="Short", size=12, parent="li"), "Inter")
        assert fp == "a-Inter-short-small-li"

    def test_same_fingerprint_keeps_best(self):
        kept = deduplicate_candidates([("fp", record(3, id="1")), ("fp", record(9, id="2")), ("other", record(1, id="3"))])
        assert [r.annotation_id for r in kept] == ["2", "3"]

    def test_ties_keep_earliest_element(self):
        kept = deduplicate_candidates([("fp", record(5, id="7")), ("fp", record(5, id="2"))])
        assert kept[0].annotation_id == "2"


class TestSelection:
    def test_every_section_represented(self):
        records = [record(20 - i, "main", id=str(i)) for i in range(10)]
        records += [record(1, "footer", id="50"), record(2, "header", id="51")]
        chosen = select_annotations(records, 4)

        assert len(chosen) == 4
        assert {"main", "footer", "header"} <= {r.section for r in chosen}

    def test_cap_is_respected(self):
        records = [record(i, s, id=str(i)) for i, s in enumerate(["header", "main", "sidebar", "footer", "other"])]
        chosen = select_annotations(records, 2)
        assert [r.section for r in chosen] == ["other", "footer"]

    def test_zero_cap(self):
        assert select_annotations([record(1)], 0) == []


class TestColors:
    def test_palette_wraps(self):
        families = [f"Family {i}" for i in range(12)]
        colors = assign_colors(families)
        assert colors["Family 0"] == PALETTE[0]
        assert colors["Family 10"] == PALETTE[0]
        assert colors["Family 11"] == PALETTE[1]

    def test_existing_assignments_kept(self):
        colors = assign_colors(["B", "A"], {"A": PALETTE[3]})
        assert colors == {"A": PALETTE[3], "B": PALETTE[1]}


class TestBuildAnnotations:
    def test_annotatable_groups(self):
        groups = [group("Inter"), group("Arial"), group("Unused", count=0),
                  group("Helvetica", fonts=[make_font("Helvetica.woff2")])]
        assert [g.canonical_family_name for g in annotatable_groups(groups)] == ["Inter", "Helvetica"]

    def test_declared_web_font_is_annotatable(self):
        roboto = group("Roboto")
        roboto.declarations = [make_decl("Roboto", 'url("/fonts/Roboto.woff2")')]
        assert annotatable_groups([roboto]) == [roboto]

    def test_matches_raw_names_and_skips_unknown(self, matcher):
        groups = [group("Inter", raw=["Inter", "InterVariable"])]
        candidates = [
            candidate(font='"InterVariable", sans-serif', id="0"),
            candidate(font="Comic Sans MS", id="1", tag="h2"),
        ]
        built = build_annotations(candidates, groups, matcher, {"Inter": PALETTE[0]})
        assert [(r.canonical_family_name, r.annotation_id) for r in built] == [("Inter", "0")]
        assert built[0].color == PALETTE[0]


class TestAnnotatePage:
    def test_renders_selected(self, context):
        page = FakePage({
            CANDIDATES_JS: [{"id": "0", "tag": "h1", "fontFamily": "Inter", "text": "Welcome home",
                             "textLength": 12, "fontSize": 40, "parentTag": "header",
                             "rect": {"x": 0, "y": 10, "width": 400, "height": 60},
                             "viewport": {"width": 1920, "height": 1080}, "section": "header"}],
            RENDER_JS: lambda arg: len(arg["annotations"]),
        })
        assert run(annotate_page(page, [group("Inter")], context)) == 1
        assert context.color_assignments == {"Inter": PALETTE[0]}

    def test_failure_counts_as_zero(self, context, caplog):
        page = FakePage({CANDIDATES_JS: RuntimeError("Execution context was destroyed")})
        with caplog.at_level("ERROR", logger="app.annotator"):
            assert run(annotate_page(page, [group("Inter")], context)) == 0
        assert "Could not add font annotations: Execution context was destroyed" in caplog.text

    def test_render_failure_raises_annotation_failure(self, context):
        page = FakePage({
            CANDIDATES_JS: [{"id": "0", "tag": "h1", "fontFamily": "Inter", "text": "Welcome home",
                             "textLength": 12, "fontSize": 40, "parentTag": "header",
                             "rect": {"x": 0, "y": 10, "width": 400, "height": 60},
                             "viewport": {"width": 1920, "height": 1080}, "section": "header"}],
            RENDER_JS: RuntimeError("Target closed"),
        })
        with pytest.raises(AnnotationFailure) as exc_info:
            run(_render_annotations(page, [group("Inter")], context))
        assert exc_info.value.details == "Target closed"
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert run(annotate_page(page, [group("Inter")], context)) == 0

    def test_malformed_candidates_count_as_zero(self, context):
        page = FakePage({CANDIDATES_JS: ["not a candidate"]})
        assert run(annotate_page(page, [group("Inter")], context)) == 0

    def test_nothing_to_annotate(self, context):
        page = FakePage()
        assert run(annotate_page(page, [group("Arial")], context)) == 0
        assert page.evaluate_calls == []


class TestCaptureAnnotatedScreenshots:
    @pytest.fixture
    def enabled(self, context):
        context.settings = context.settings.model_copy(update={"enable_screenshots": True})
        context.options = InspectOptions(capture_screenshots=True, user_id="u1", inspection_id="abc")
        return context

    def test_not_requested(self, context):
        page = FakePage()
        assert run(capture_annotated_screenshots(page, [], context)) is None
        assert page.screenshots == 0

    def test_disabled_in_environment(self, context):
        context.options = InspectOptions(capture_screenshots=True)
        page = FakePage()
        assert run(capture_annotated_screenshots(page, [], context)) is None
        assert page.screenshots == 0

    def test_captures_and_stores(self, enabled):
        page = FakePage({PAGE_DIMENSIONS_JS: {"width": 1920, "height": 4000}, CANDIDATES_JS: []})
        data = run(capture_annotated_screenshots(page, [group("Inter")], enabled))

        assert page.screenshots == 2
        assert data.annotation_count == 0
        assert (data.dimensions.width, data.dimensions.height) == (64, 48)
        assert data.original == "user-u1/inspections/abc/screenshot.png"
        assert data.annotated == "user-u1/inspections/abc/annotated.png"

    def test_stored_under_run_inspection_id(self, enabled):
        enabled.options = InspectOptions(capture_screenshots=True)
        page = FakePage({PAGE_DIMENSIONS_JS: None, CANDIDATES_JS: []})
        data = run(capture_annotated_screenshots(page, [], enabled))

        assert enabled.inspection_id == enabled.run_id
        assert data.original == f"user-anonymous/inspections/{enabled.run_id}/screenshot.png"

    def test_store_failure_returns_none(self, enabled):
        store = MagicMock()
        store.save_inspection_screenshots.side_effect = OSError("disk full")
        page = FakePage({PAGE_DIMENSIONS_JS: {"width": 10, "height": 10}})
        assert run(capture_annotated_screenshots(page, [], enabled, store)) is None

    def test_screenshot_failure_returns_none(self, enabled):
        page = FakePage({PAGE_DIMENSIONS_JS: {"width": 10, "height": 10}})

        async def broken(full_page=False, type="png"):
            raise RuntimeError("Target closed")

        page.screenshot = broken
        assert run(capture_annotated_screenshots(page, [], enabled)) is None
