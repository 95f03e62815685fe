from __future__ import annotations

import argparse
import html
import logging
import re
from pathlib import Path
from typing import List, Sequence

import sprite


logger = logging.getLogger(__name__)

_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)
_RULE_RE = re.compile(r"([^{}]+)\{[^{}]*\}")
_CLASS_RE = re.compile(r"^\.(-?[_A-Za-z][_A-Za-z0-9-]*)$")


def css_class_names(css_text: str) -> List[str]:
    """Class names of the single-class rules in *css_text*, in file order.

    Rules whose selector is a list (the shared background-image rule) are
    skipped.
    """
    text = _COMMENT_RE.sub("", css_text)
    names: List[str] = []
    for m in _RULE_RE.finditer(text):
        selector = m.group(1).strip()
        if "," in selector:
            continue
        cm = _CLASS_RE.match(selector)
        if cm is None:
            logger.debug("Skipped selector: %r", selector)
            continue
        if cm.group(1) not in names:
            names.append(cm.group(1))
    return names


def render_preview_html(css_href: str, names: Sequence[str], background: str = "#000000") -> str:
    out: List[str] = []
    out.append('<!DOCTYPE html><html><head><meta charset="utf-8"><title>Preview</title>')
    out.append(f'<link rel="stylesheet" href="{html.escape(css_href, quote=True)}">')
    out.append("<style>")
    out.append(
        f"""
        body {{
            background-color: {background};
            margin: 0;
            padding: 1rem;
        }}
        .container {{
            display: flex;
            flex-wrap: wrap;
            gap: 1rem;
            align-items: flex-start;
        }}
    """
    )
    out.append("</style></head><body>")
    out.append('<div class="container">')
    for name in names:
        out.append(f'<div class="{html.escape(name, quote=True)}" title="{html.escape(name, quote=True)}"></div>')
    out.append("</div></body></html>")
    return "".join(out)


def generate_html_preview(
    css_path: Path,
    output_path: Path,
    css_href: str | None = None,
    background: str = "#000000",
) -> Path:
    css_text = css_path.read_text(encoding="utf-8")
    names = css_class_names(css_text)
    if not names:
        logger.warning("No class rules found in %s", css_path)

    href = css_href if css_href is not None else css_path.as_posix()
    page = render_preview_html(href, names, background=background)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(page, encoding="utf-8")
    logger.info("Generated HTML preview: %s (%d classes)", output_path, len(names))
    return output_path


def main(argv: Sequence[str] | None = None) -> int:
    ap = argparse.ArgumentParser("Headless HTML preview for a generated sprite stylesheet")
    ap.add_argument("--css", type=str, default="sprite.css")
    ap.add_argument("--output", type=str, default="preview.html")
    ap.add_argument("--href", type=str, default=None, help="Stylesheet link used in the page. Default: the --css path.")
    ap.add_argument("--background", type=str, default="#000000", help="Page background color")
    ap.add_argument("-v", "--verbose", action="count", default=0)
    args = ap.parse_args(argv)

    sprite.setup_logging(args.verbose)

    css_path = Path(args.css)
    if not css_path.exists():
        raise FileNotFoundError(f"CSS file not found: {css_path}")

    out = generate_html_preview(css_path, Path(args.output), css_href=args.href, background=args.background)
    print(f"Saved: {out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
