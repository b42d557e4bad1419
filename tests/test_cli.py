"""Tests for the render_markdown_pdf command line tool."""
from cli.render_markdown_pdf import main


def test_renders_file_to_pdf(tmp_path):
    src = tmp_path / "plan.md"
    src.write_text("# Plan\n\n- ship it\n", encoding="utf-8")
    out = tmp_path / "out.pdf"
    assert main([str(src), "-o", str(out), "--header-left", "Acme", "--watermark", "DRAFT"]) == 0
    assert out.read_bytes().startswith(b"%PDF")


def test_default_output_name_uses_title(tmp_path):
    src = tmp_path / "plan.md"
    src.write_text("# Plan\n", encoding="utf-8")
    assert main([str(src), "--title", "Launch Plan", "--no-page-numbers"]) == 0
    assert (tmp_path / "launch_plan.pdf").exists()


def test_missing_input(tmp_path):
    assert main([str(tmp_path / "nope.md")]) == 2


def test_empty_input_is_refused(tmp_path):
    src = tmp_path / "empty.md"
    src.write_text("\n\n", encoding="utf-8")
    assert main([str(src)]) == 1
