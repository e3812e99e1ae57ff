"""Tests for the Foundry notation normalizer and HTML renderer."""

from __future__ import annotations

import pytest

from grimoire.ingest.notation import (
    RULES,
    NotationStats,
    html_to_text,
    is_localize_only,
    normalize,
    replace_damage_refs,
)


# ------------------------------------------------------------------
# Action glyphs
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "glyph, expected",
    [
        ("1", "[one-action]"),
        ("A", "[one-action]"),
        ("2", "[two-actions]"),
        ("D", "[two-actions]"),
        ("3", "[three-actions]"),
        ("T", "[three-actions]"),
        ("r", "[reaction]"),
        ("R", "[reaction]"),
        ("f", "[free-action]"),
        ("F", "[free-action]"),
        ("x", "[x-action]"),
    ],
)
def test_action_glyphs(glyph, expected):
    html = f'<p><span class="action-glyph">{glyph}</span> Strike</p>'
    assert normalize(html) == f"{expected} Strike"


def test_action_glyph_tag_match_is_case_insensitive():
    assert normalize('<SPAN class="action-glyph">2</SPAN>') == "[two-actions]"


# ------------------------------------------------------------------
# @UUID
# ------------------------------------------------------------------


def test_uuid_with_label_uses_label():
    assert normalize("@UUID[Compendium.pf2e.conditionitems.Item.Doomed]{Doomed 1}") == "Doomed 1"


def test_uuid_label_wins_even_for_broken_path():
    assert normalize("@UUID[not a real path at all]{Frightened 2}") == "Frightened 2"


def test_uuid_without_label_title_cases_last_segment():
    assert normalize("@UUID[Compendium.pf2e.spells-srd.Item.magic-missile]") == "Magic Missile"


def test_uuid_without_label_keeps_text_after_colon():
    ref = "@UUID[Compendium.pf2e.spell-effects.Item.Spell Effect: Heroism]"
    assert normalize(ref) == "Heroism"


# ------------------------------------------------------------------
# @Damage
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "markup, expected",
    [
        ("@Damage[6d12[cold]|options:area-damage]", "6d12 cold damage"),
        ("@Damage[(1d8+6)[void]]", "1d8+6 void damage"),
        ("@Damage[(ceil(@item.level/2))[persistent,acid]]", "persistent acid damage"),
        ("@Damage[floor(@actor.level/2)d6[fire]]", "fire damage"),
        ("@Damage[2d6]", "2d6 damage"),
        ("@Damage[@item.level]", "damage"),
        ("@Damage[[bleed]]", "bleed damage"),
    ],
)
def test_damage_refs(markup, expected):
    assert normalize(markup) == expected


def test_damage_rule_leaves_no_stray_brackets():
    text = replace_damage_refs("Deal @Damage[(ceil(@item.level/2))[persistent,acid]] now.")
    assert text == "Deal persistent acid damage now."


# ------------------------------------------------------------------
# @Check
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "markup, expected",
    [
        ("@Check[reflex|dc:29|basic]", "Reflex save (DC 29, basic)"),
        ("@Check[type:athletics|dc:25]", "Athletics check (DC 25)"),
        ("@Check[fortitude|dc:20|traits:damaging-effect]", "Fortitude save (DC 20)"),
        ("@Check[Will]", "Will save"),
        ("@Check[perception]", "Perception check"),
        ("@Check[options:area-effect|type:acrobatics]", "Acrobatics check"),
    ],
)
def test_check_refs(markup, expected):
    assert normalize(markup) == expected


# ------------------------------------------------------------------
# @Template, @Embed, @Localize, roll macros
# ------------------------------------------------------------------


def test_template_with_distance():
    assert normalize("@Template[cone|distance:30]") == "30-foot cone"


def test_template_label_wins():
    assert normalize("@Template[emanation|distance:20]{20-foot area}") == "20-foot area"


def test_template_without_distance_is_shape():
    assert normalize("@Template[burst]") == "burst"


def test_embed_with_label():
    assert normalize("@Embed[Compendium.pf2e.tables.Table]{Random Table}") == "[See: Random Table]"


def test_embed_without_label_removed():
    assert normalize("<p>Before @Embed[Compendium.pf2e.tables.Table] after</p>") == "Before after"


def test_localize_removed():
    assert normalize("<p>Before @Localize[PF2E.Something] after</p>") == "Before after"


def test_roll_macro_label():
    assert normalize("[[/gmr 1d4 #Recharge Devastating Blast]]{1d4 rounds}") == "1d4 rounds"


def test_roll_macro_gmr_formula():
    assert normalize("<p>Lasts [[/gmr 1d10 #days]] days</p>") == "Lasts 1d10 days"


def test_other_roll_macros_removed():
    assert normalize("<p>Roll [[/r 1d20]] now</p>") == "Roll now"


# ------------------------------------------------------------------
# HTML rendering
# ------------------------------------------------------------------


def test_headings_render_upper_case_paragraph():
    assert html_to_text("<h2>Heightened (+1)</h2><p>More damage.</p>") == "HEIGHTENED (+1)\n\nMore damage."


def test_table_rows():
    html = "<table><tr><th>Level</th><th>Bonus</th></tr><tr><td>1</td><td>+2</td></tr></table>"
    rows = [line.replace(" ", "") for line in html_to_text(html).splitlines()]
    assert "Level|Bonus" in rows
    assert "1|+2" in rows


def test_hr_is_separator():
    assert html_to_text("<p>a</p><hr><p>b</p>") == "a\n\n---\n\nb"


def test_links_keep_text_only():
    assert html_to_text('<p>See <a href="https://example.com">the rules</a>.</p>') == "See the rules."


def test_images_skipped():
    assert html_to_text('<p>x<img src="a.png" alt="alt text"> y</p>') == "x y"


def test_emphasis_markers_dropped():
    assert html_to_text("<p><strong>Trigger</strong> An <em>ally</em> is hit.</p>") == "Trigger An ally is hit."


def test_heading_with_inline_markup_is_upper_case():
    text = html_to_text("<h3><strong>Critical Success</strong></h3><p>Full damage.</p>")
    assert text.splitlines()[0] == "CRITICAL SUCCESS"


def test_br_is_line_break():
    assert html_to_text("<p>one<br>two</p>") == "one\ntwo"


def test_list_items():
    lines = html_to_text("<ul><li>One</li><li>Two</li></ul>").splitlines()
    assert [line.strip() for line in lines] == ["* One", "* Two"]


def test_nested_list_items_indent():
    html = "<ul><li>Outer<ul><li>Inner</li></ul></li></ul>"
    outer, inner = [line for line in html_to_text(html).splitlines() if line.strip()]
    assert outer.strip() == "* Outer"
    assert inner.strip() == "* Inner"
    assert len(inner) - len(inner.lstrip()) > len(outer) - len(outer.lstrip())


def test_entities_decoded():
    assert html_to_text("<p>Fish &amp; Chips</p>") == "Fish & Chips"


def test_blank_lines_collapsed_and_trimmed():
    text = html_to_text("<p>a</p><p> </p><div></div><p>b   </p>")
    assert text == "a\n\nb"
    assert "\n\n\n" not in text


def test_source_whitespace_collapsed():
    assert html_to_text("<p>one\n   two\tthree</p>") == "one two three"


def test_script_and_style_dropped():
    assert html_to_text("<style>p{}</style><p>Text</p><script>x()</script>") == "Text"


@pytest.mark.parametrize("blank", ["", "   ", "\n\t "])
def test_empty_input_gives_empty_string(blank):
    assert normalize(blank) == ""


# ------------------------------------------------------------------
# Ordering, stats, localize-only predicate
# ------------------------------------------------------------------


def test_rules_are_ordered_glyphs_first_macros_last():
    names = [r.__name__ for r in RULES]
    assert names == [
        "replace_action_glyphs",
        "replace_uuid_refs",
        "replace_damage_refs",
        "replace_check_refs",
        "replace_template_refs",
        "replace_embed_refs",
        "replace_localize_refs",
        "replace_roll_macros",
    ]


def test_stats_count_each_occurrence():
    stats = NotationStats()
    normalize(
        "<p>@UUID[a.B]{x} @UUID[a.c] @Damage[1d6[fire]] @Check[will] "
        "@Embed[e] @Localize[l] @Template[cone]</p>",
        stats,
    )
    assert stats.as_dict() == {
        "uuid_refs": 2,
        "damage_refs": 1,
        "check_refs": 1,
        "embed_refs": 1,
        "localize_refs": 1,
    }
    assert stats.total == 6


def test_stats_merge_with_iadd():
    a = NotationStats(uuid_refs=1, check_refs=2)
    b = NotationStats(uuid_refs=3, localize_refs=1)
    a += b
    assert a.uuid_refs == 4
    assert a.check_refs == 2
    assert a.localize_refs == 1


def test_is_localize_only():
    assert is_localize_only("<p>@Localize[PF2E.Foo]</p>")
    assert is_localize_only("<p> </p>")
    assert not is_localize_only("<p>@Localize[PF2E.Foo] Real text</p>")
