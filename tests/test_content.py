from __future__ import annotations

from unittest import TestCase

from research_portal.utils.content import (
    generate_excerpt,
    is_google_drive_link,
    parse_gpa,
    read_time,
    render_markdown,
    split_list,
)


class ReadTimeTests(TestCase):
    def test_empty_content_reads_in_zero_minutes(self) -> None:
        self.assertEqual(0, read_time(""))
        self.assertEqual(0, read_time(None))
        self.assertEqual(0, read_time("   \n  "))

    def test_short_content_rounds_up_to_one_minute(self) -> None:
        self.assertEqual(1, read_time("just a few words"))

    def test_minutes_round_up_per_two_hundred_words(self) -> None:
        self.assertEqual(1, read_time(" ".join(["word"] * 200)))
        self.assertEqual(2, read_time(" ".join(["word"] * 201)))
        self.assertEqual(3, read_time(" ".join(["word"] * 600)))


class ExcerptTests(TestCase):
    def test_markdown_is_stripped(self) -> None:
        content = "# Title\n\nSome **bold** and *italic* text with `code` and [a link](https://example.com)."
        self.assertEqual(
            "Title Some bold and italic text with code and a link.",
            generate_excerpt(content),
        )

    def test_long_content_is_truncated_with_ellipsis(self) -> None:
        excerpt = generate_excerpt("a" * 250)
        self.assertEqual("a" * 200 + "...", excerpt)

    def test_content_at_limit_is_kept_whole(self) -> None:
        self.assertEqual("b" * 200, generate_excerpt("b" * 200))


class FormHelperTests(TestCase):
    def test_split_list_trims_and_drops_blanks(self) -> None:
        self.assertEqual(["python", "ml"], split_list(" python, ,ml ,"))
        self.assertEqual([], split_list(""))
        self.assertEqual([], split_list(None))

    def test_drive_links(self) -> None:
        self.assertTrue(is_google_drive_link(""))
        self.assertTrue(is_google_drive_link("https://drive.google.com/file/d/abc/view"))
        self.assertTrue(is_google_drive_link("https://docs.google.com/document/d/abc"))
        self.assertFalse(is_google_drive_link("https://dropbox.com/s/abc"))


class MarkdownTests(TestCase):
    def test_headings_emphasis_and_links_render(self) -> None:
        html = render_markdown("# Results\n\nSee **this** [paper](https://arxiv.org/abs/1234).")

        self.assertIn("<h1>Results</h1>", html)
        self.assertIn("<strong>this</strong>", html)
        self.assertIn('href="https://arxiv.org/abs/1234"', html)

    def test_scripts_and_handlers_are_stripped(self) -> None:
        html = render_markdown(
            '<script>alert("x")</script>\n\n<p onclick="steal()">Hi</p>\n\n[bad](javascript:alert(1))'
        )

        self.assertNotIn("<script", html)
        self.assertNotIn("alert", html)
        self.assertNotIn("onclick", html)
        self.assertIn("Hi", html)

    def test_result_is_markup_safe(self) -> None:
        self.assertEqual("", str(render_markdown(None)))
        self.assertTrue(hasattr(render_markdown("x"), "__html__"))

    def test_lists_and_tables(self) -> None:
        html = render_markdown("- one\n- two\n\n| a | b |\n|---|---|\n| 1 | 2 |")

        self.assertIn("<li>one</li>", html)
        self.assertIn("<td>1</td>", html)


class ParseGpaTests(TestCase):
    def test_accepts_ten_point_scale(self) -> None:
        self.assertEqual(0.0, parse_gpa("0"))
        self.assertEqual(8.75, parse_gpa("8.75"))
        self.assertEqual(10.0, parse_gpa(10))

    def test_rejects_non_finite_and_out_of_range(self) -> None:
        for value in ("nan", "NaN", "inf", "-inf", -0.01, 10.01):
            with self.subTest(value=value):
                with self.assertRaises(ValueError) as ctx:
                    parse_gpa(value)
                self.assertEqual("GPA must be between 0 and 10", str(ctx.exception))

    def test_rejects_text(self) -> None:
        for value in ("eight", "", None):
            with self.subTest(value=value):
                with self.assertRaisesRegex(ValueError, "GPA must be a number"):
                    parse_gpa(value)
