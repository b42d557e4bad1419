from __future__ import annotations

import argparse
import sys
from pathlib import Path

from docgen.pdf_export import Branding, ExportError, render_markdown_to_pdf, safe_filename


def log(msg: str) -> None:
    print(msg, file=sys.stderr)


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Render a Markdown file to PDF with the DocGen layout engine.")
    ap.add_argument("input", type=Path, help="Markdown file to render")
    ap.add_argument("-o", "--output", type=Path, default=None, help="Output PDF path (defaults to <title>.pdf next to input)")
    ap.add_argument("--title", type=str, default="", help="Document title (defaults to the input file name)")
    ap.add_argument("--header-left", type=str, default="", help="Header text, left side")
    ap.add_argument("--header-right", type=str, default="", help="Header text, right side")
    ap.add_argument("--footer", type=str, default="", help="Footer text")
    ap.add_argument("--logo", type=str, default="", help="Logo image path for the header")
    ap.add_argument("--watermark", type=str, default="", help="Diagonal watermark text")
    ap.add_argument("--no-page-numbers", action="store_true", help="Omit 'Page X of Y' in the footer")
    ap.add_argument("--assets", type=Path, default=None, help="Directory that relative image paths resolve against")
    args = ap.parse_args(argv)

    if not args.input.is_file():
        log(f"Input not found: {args.input}")
        return 2

    title = args.title or args.input.stem
    branding = Branding(
        header_left=args.header_left,
        header_right=args.header_right,
        footer=args.footer,
        page_numbers=not args.no_page_numbers,
        logo_path=args.logo,
        watermark=args.watermark,
    )
    markdown = args.input.read_text(encoding="utf-8")
    try:
        pdf = render_markdown_to_pdf(
            markdown, title=title, branding=branding, asset_root=args.assets or args.input.parent
        )
    except ExportError as e:
        log(f"Export refused: {e}")
        return 1

    out = args.output or args.input.with_name(safe_filename(title, "pdf"))
    out.write_bytes(pdf)
    log(f"Wrote {out} ({len(pdf)} bytes)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
