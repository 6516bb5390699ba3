import pytest

from epub_build.foundation.slugs import archive_filename, kebab_case
from epub_build.framework.config import BuildConfig
from epub_build.framework.globs import GlobSet, compile_glob


@pytest.mark.parametrize(
    "title,expected",
    [
        ("My Book", "my-book"),
        ("Textbook", "textbook"),
        ("  The   Great_Gatsby!! ", "the-great-gatsby"),
        ("fooBar", "foo-bar"),
        ("XMLHttpRequest", "xml-http-request"),
        ("Chapter 12b", "chapter-12-b"),
        ("Café Stories", "café-stories"),
        ("Über Buch", "über-buch"),
        ("日本語", "日本語"),
        ("Straße 2nd Édition", "straße-2-nd-édition"),
    ],
)
def test_kebab_case(title, expected):
    assert kebab_case(title) == expected


def test_archive_filename_rejects_empty_slug():
    assert archive_filename("My Book") == "my-book.epub"
    with pytest.raises(ValueError):
        archive_filename("---")


def test_archive_filename_keeps_non_latin_titles(tmp_path):
    assert archive_filename("日本語") == "日本語.epub"
    config, _ = BuildConfig.from_dict({"book": {"title": "Über Buch"}}, project_root=tmp_path)
    assert config.archive_name == "über-buch.epub"


def test_double_star_spans_directories_but_single_star_does_not():
    assert compile_glob("html/**/*.html").match("html/ch1.html")
    assert compile_glob("html/**/*.html").match("html/part/one/ch1.html")
    assert not compile_glob("html/*.html").match("html/part/ch1.html")
    assert not compile_glob("html/**/*.html").match("xhtml/ch1.html")
    assert compile_glob("images/?.png").match("images/a.png")
    assert not compile_glob("images/?.png").match("images/ab.png")


def test_literal_characters_are_escaped():
    assert compile_glob("META-INF/**").match("META-INF/container.xml")
    assert not compile_glob("a+b.txt").match("aab.txt")


def test_exclusions_apply_in_order():
    globs = GlobSet(("**/*", "!html/**", "!scss/**"))

    assert globs.matches("fonts/serif.otf")
    assert globs.matches("package.opf")
    assert not globs.matches("html/ch1.html")
    assert not globs.matches("scss/_vars.scss")


def test_later_inclusion_overrides_earlier_exclusion():
    globs = GlobSet(("**/*", "!js/**", "js/keep.js"))

    assert globs.matches("js/keep.js")
    assert not globs.matches("js/drop.js")


def test_glob_set_requires_an_inclusion():
    with pytest.raises(ValueError):
        GlobSet(("!html/**",))
