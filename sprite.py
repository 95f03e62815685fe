from __future__ import annotations

import argparse
from concurrent.futures import ThreadPoolExecutor, as_completed
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, List, Sequence, Tuple

from PIL import Image


logger = logging.getLogger(__name__)

SUPPORTED_EXTS = {".png", ".webp", ".jpg", ".jpeg", ".gif", ".bmp", ".tif", ".tiff"}
OUTPUT_EXTS = (".png", ".webp")

LAYOUTS = ("vertical", "horizontal", "packed")
ORDERS = ("input", "area", "height", "max-side")

# starting edge of the square packing area; doubled until everything fits by area
MIN_BIN_EDGE = 256

Image.MAX_IMAGE_PIXELS = max(int(getattr(Image, "MAX_IMAGE_PIXELS", 0) or 0), 250_000_000)


class SpriteError(Exception):
    pass


class EmptyInputError(SpriteError):
    def __init__(self, msg: str = "no images to lay out") -> None:
        super().__init__(msg)


class DegenerateCanvasError(SpriteError):
    def __init__(self, width: int, height: int) -> None:
        super().__init__(f"invalid sprite dimensions: {width}x{height}")
        self.width = width
        self.height = height


class PackingFailedError(SpriteError):
    def __init__(self, name: str) -> None:
        super().__init__(f"failed to pack image '{name}'")
        self.name = name


class DuplicateNameError(SpriteError):
    def __init__(self, name: str) -> None:
        super().__init__(f"duplicate image name '{name}'")
        self.name = name


class CopyOutOfBoundsError(SpriteError):
    pass


class LayoutError(SpriteError):
    pass


class ImageLoadError(SpriteError):
    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"failed to load image {path}: {reason}")
        self.path = path


def _effective_workers(workers: int) -> int:
    if workers <= 0:
        cpu = os.cpu_count() or 4
        return min(32, max(1, cpu * 2))
    return max(1, int(workers))


@dataclass(frozen=True)
class CanvasSpec:
    width: int
    height: int


@dataclass(frozen=True)
class Rect:
    x: int
    y: int
    w: int
    h: int

    @property
    def area(self) -> int:
        return self.w * self.h

    @property
    def right(self) -> int:
        return self.x + self.w

    @property
    def bottom(self) -> int:
        return self.y + self.h


def rect_intersects(a: Rect, b: Rect) -> bool:
    if a.area == 0 or b.area == 0:
        return False
    return not (
        a.x + a.w <= b.x
        or b.x + b.w <= a.x
        or a.y + a.h <= b.y
        or b.y + b.h <= a.y
    )


@dataclass(frozen=True)
class SourceImage:
    name: str
    w: int
    h: int
    image: Image.Image | None = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.w < 0 or self.h < 0:
            raise ValueError(f"image size must not be negative: {self.name} {self.w}x{self.h}")

    @classmethod
    def from_image(cls, name: str, img: Image.Image) -> "SourceImage":
        w, h = img.size
        return cls(name=name, w=w, h=h, image=img)


@dataclass(frozen=True)
class Placement:
    name: str
    x: int
    y: int
    w: int
    h: int

    @property
    def rect(self) -> Rect:
        return Rect(self.x, self.y, self.w, self.h)


@dataclass
class LayoutResult:
    layout: str
    canvas: CanvasSpec
    placed: List[Placement]
    # packing area handed to the packer; only set for the packed layout
    bin: CanvasSpec | None = None


def _check_names(imgs: Sequence[SourceImage]) -> None:
    seen: set[str] = set()
    for info in imgs:
        if info.name in seen:
            raise DuplicateNameError(info.name)
        seen.add(info.name)


def compute_layout_vertical(imgs: Sequence[SourceImage]) -> LayoutResult:
    if not imgs:
        raise EmptyInputError()
    _check_names(imgs)

    canvas_w = max(i.w for i in imgs)
    canvas_h = sum(i.h for i in imgs)
    if canvas_w <= 0 or canvas_h <= 0:
        raise DegenerateCanvasError(canvas_w, canvas_h)

    logger.debug("Sprite dimension %d:%d", canvas_w, canvas_h)

    y = 0
    placed: List[Placement] = []
    for info in imgs:
        placed.append(Placement(name=info.name, x=0, y=y, w=info.w, h=info.h))
        y += info.h

    return LayoutResult("vertical", CanvasSpec(canvas_w, canvas_h), placed)


def compute_layout_horizontal(imgs: Sequence[SourceImage]) -> LayoutResult:
    if not imgs:
        raise EmptyInputError()
    _check_names(imgs)

    canvas_w = sum(i.w for i in imgs)
    canvas_h = max(i.h for i in imgs)
    if canvas_w <= 0 or canvas_h <= 0:
        raise DegenerateCanvasError(canvas_w, canvas_h)

    logger.debug("Sprite dimension %d:%d", canvas_w, canvas_h)

    x = 0
    placed: List[Placement] = []
    for info in imgs:
        placed.append(Placement(name=info.name, x=x, y=0, w=info.w, h=info.h))
        x += info.w

    return LayoutResult("horizontal", CanvasSpec(canvas_w, canvas_h), placed)


def estimate_bin_size(sizes: Iterable[Tuple[int, int]], min_edge: int = MIN_BIN_EDGE) -> Tuple[int, int]:
    """Square packing area that is at least as wide as the widest image and
    holds the total pixel area. This is an upper-bound guess; the packed
    layout crops the height afterwards.
    """
    sizes = list(sizes)
    if not sizes:
        raise EmptyInputError()

    total_area = sum(w * h for w, h in sizes)
    max_width = max(w for w, _ in sizes)

    edge = max(1, int(min_edge))
    while edge < max_width or edge * edge < total_area:
        edge *= 2
    return edge, edge


class RectPacker:
    """Guillotine packer over a fixed area.

    Free space is kept as a list of disjoint rectangles. A request goes to
    the free rectangle that leaves the least area unused (ties: smaller
    leftover short side, then top-most, then left-most). The chosen
    rectangle is split into a right strip as tall as the request and a
    bottom strip spanning the full free width.
    """

    def __init__(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise ValueError(f"packer size must be positive: {width}x{height}")
        self.width = width
        self.height = height
        self.free: List[Rect] = [Rect(0, 0, width, height)]
        self.used: List[Rect] = []

    def pack(self, w: int, h: int) -> Rect | None:
        if w < 0 or h < 0:
            raise ValueError(f"request size must not be negative: {w}x{h}")
        if w == 0 or h == 0:
            if w > self.width or h > self.height:
                return None
            return Rect(0, 0, w, h)

        best_idx = -1
        best_key: tuple[int, int, int, int] | None = None
        for idx, fr in enumerate(self.free):
            if fr.w < w or fr.h < h:
                continue
            key = (fr.area - w * h, min(fr.w - w, fr.h - h), fr.y, fr.x)
            if best_key is None or key < best_key:
                best_key = key
                best_idx = idx

        if best_idx < 0:
            return None

        fr = self.free.pop(best_idx)
        placed = Rect(fr.x, fr.y, w, h)
        self.used.append(placed)

        for part in (
            Rect(fr.x + w, fr.y, fr.w - w, h),
            Rect(fr.x, fr.y + h, fr.w, fr.h - h),
        ):
            if part.area > 0:
                self.free.append(part)
        self._merge_free()
        return placed

    def _merge_free(self) -> None:
        merged = True
        while merged:
            merged = False
            for i in range(len(self.free)):
                a = self.free[i]
                for j in range(i + 1, len(self.free)):
                    b = self.free[j]
                    joined: Rect | None = None
                    if a.x == b.x and a.w == b.w:
                        if a.bottom == b.y:
                            joined = Rect(a.x, a.y, a.w, a.h + b.h)
                        elif b.bottom == a.y:
                            joined = Rect(b.x, b.y, b.w, a.h + b.h)
                    elif a.y == b.y and a.h == b.h:
                        if a.right == b.x:
                            joined = Rect(a.x, a.y, a.w + b.w, a.h)
                        elif b.right == a.x:
                            joined = Rect(b.x, b.y, a.w + b.w, b.h)
                    if joined is not None:
                        self.free[i] = joined
                        del self.free[j]
                        merged = True
                        break
                if merged:
                    break


def packing_order(imgs: Sequence[SourceImage], order: str = "input") -> List[SourceImage]:
    if order == "input":
        return list(imgs)
    if order == "area":
        return sorted(imgs, key=lambda i: i.w * i.h, reverse=True)
    if order == "height":
        return sorted(imgs, key=lambda i: (i.h, i.w), reverse=True)
    if order == "max-side":
        return sorted(imgs, key=lambda i: max(i.w, i.h), reverse=True)
    raise ValueError(f"unknown packing order: {order}")


def compute_layout_packed(
    imgs: Sequence[SourceImage],
    order: str = "input",
    bin_size: Tuple[int, int] | None = None,
) -> LayoutResult:
    if not imgs:
        raise EmptyInputError()
    _check_names(imgs)

    if bin_size is None:
        bin_w, bin_h = estimate_bin_size((i.w, i.h) for i in imgs)
    else:
        bin_w, bin_h = bin_size
    logger.info("Packing area %d:%d", bin_w, bin_h)

    packer = RectPacker(bin_w, bin_h)
    by_name: dict[str, Placement] = {}
    for info in packing_order(imgs, order):
        r = packer.pack(info.w, info.h)
        if r is None:
            raise PackingFailedError(info.name)
        by_name[info.name] = Placement(name=info.name, x=r.x, y=r.y, w=info.w, h=info.h)

    placed = [by_name[i.name] for i in imgs]
    # zero-area images take no pixels and do not count towards the height
    used_h = max((p.y + p.h for p in placed if p.w * p.h > 0), default=0)
    if used_h <= 0:
        raise DegenerateCanvasError(bin_w, used_h)

    logger.debug("Cropped sprite height %d -> %d", bin_h, used_h)
    return LayoutResult("packed", CanvasSpec(bin_w, used_h), placed, bin=CanvasSpec(bin_w, bin_h))


def compute_layout(
    imgs: Sequence[SourceImage],
    layout: str,
    order: str = "input",
    bin_size: Tuple[int, int] | None = None,
) -> LayoutResult:
    if layout == "vertical":
        return compute_layout_vertical(imgs)
    if layout == "horizontal":
        return compute_layout_horizontal(imgs)
    if layout == "packed":
        return compute_layout_packed(imgs, order=order, bin_size=bin_size)
    raise ValueError(f"unknown layout: {layout}")


def check_layout(result: LayoutResult, imgs: Sequence[SourceImage]) -> None:
    canvas = result.canvas
    names = [p.name for p in result.placed]
    if len(set(names)) != len(names):
        raise LayoutError("layout contains duplicate names")
    if set(names) != {i.name for i in imgs}:
        raise LayoutError("layout names differ from input names")

    for p in result.placed:
        if p.w * p.h == 0:
            continue
        if p.x < 0 or p.y < 0 or p.x + p.w > canvas.width or p.y + p.h > canvas.height:
            raise LayoutError(f"'{p.name}' at ({p.x}, {p.y}) {p.w}x{p.h} exceeds canvas {canvas.width}x{canvas.height}")

    rects = [(p.name, p.rect) for p in result.placed]
    for i, (na, a) in enumerate(rects):
        for nb, b in rects[i + 1:]:
            if rect_intersects(a, b):
                raise LayoutError(f"'{na}' overlaps '{nb}'")


def build_sprite(
    result: LayoutResult,
    imgs: Sequence[SourceImage],
    workers: int = 0,
) -> Image.Image:
    canvas = result.canvas
    out = Image.new("RGBA", (canvas.width, canvas.height), (0, 0, 0, 0))

    sources = {i.name: i for i in imgs}

    def prepare_one(p: Placement) -> Tuple[Image.Image, Placement]:
        info = sources.get(p.name)
        if info is None:
            raise CopyOutOfBoundsError(f"no source image for '{p.name}'")
        if info.image is None:
            raise ValueError(f"source image '{p.name}' has no pixel data")
        img = info.image
        if img.mode != "RGBA":
            img = img.convert("RGBA")
        return img, p

    def paste_one(img: Image.Image, p: Placement) -> None:
        if img.size != (p.w, p.h):
            raise CopyOutOfBoundsError(f"'{p.name}' is {img.size[0]}x{img.size[1]}, placement is {p.w}x{p.h}")
        if p.w == 0 or p.h == 0:
            return
        if p.x < 0 or p.y < 0 or p.x + p.w > canvas.width or p.y + p.h > canvas.height:
            raise CopyOutOfBoundsError(
                f"'{p.name}' at ({p.x}, {p.y}) {p.w}x{p.h} exceeds sprite {canvas.width}x{canvas.height}"
            )
        # no mask: source pixels, alpha included, replace the destination
        out.paste(img, (p.x, p.y))

    n_workers = _effective_workers(workers)
    if n_workers <= 1 or len(result.placed) <= 2:
        for p in result.placed:
            paste_one(*prepare_one(p))
    else:
        with ThreadPoolExecutor(max_workers=n_workers) as ex:
            futs = [ex.submit(prepare_one, p) for p in result.placed]
            for fut in as_completed(futs):
                paste_one(*fut.result())

    return out


def _px(v: int, minify: bool) -> str:
    if v == 0:
        return "0" if minify else "0px"
    return f"-{v}px"


def css_rule(p: Placement, minify: bool = False) -> str:
    x = _px(p.x, minify)
    y = _px(p.y, minify)
    if minify:
        return f".{p.name}{{background-position:{x} {y};width:{p.w}px;height:{p.h}px}}"
    return f".{p.name} {{ background-position: {x} {y}; width: {p.w}px; height: {p.h}px; }}"


def emit_css(placed: Sequence[Placement], minify: bool = False, image_url: str | None = None) -> str:
    rules: List[str] = []
    if image_url is not None and placed:
        url = image_url.replace('"', '\\"')
        if minify:
            selectors = ",".join(f".{p.name}" for p in placed)
            rules.append(f'{selectors}{{background-image:url("{url}");background-repeat:no-repeat}}')
        else:
            selectors = ",\n".join(f".{p.name}" for p in placed)
            rules.append(f'{selectors} {{ background-image: url("{url}"); background-repeat: no-repeat; }}')

    rules.extend(css_rule(p, minify=minify) for p in placed)
    if minify:
        return "".join(rules)
    return "".join(r + "\n" for r in rules)


def natural_key(s: str):
    return [int(t) if t.isdigit() else t.lower() for t in re.split(r"(\d+)", s)]


def iter_image_files(folder: Path, recursive: bool = True) -> List[Path]:
    if not folder.exists() or not folder.is_dir():
        raise FileNotFoundError(f"input folder not found: {folder}")

    logger.debug("Scanning directory: %s", folder)

    files: List[Path] = []
    if recursive:
        walker: Iterable[Path] = folder.rglob("*")
    else:
        walker = folder.glob("*")

    for p in walker:
        if p.is_file() and p.suffix.lower() in SUPPORTED_EXTS:
            logger.debug("Found: %s", p)
            files.append(p)

    files.sort(key=lambda p: natural_key(p.relative_to(folder).as_posix()))
    logger.debug("Total images in %s: %d", folder, len(files))
    return files


_CLASS_BAD_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def css_class_name(stem: str) -> str:
    name = _CLASS_BAD_CHARS.sub("_", stem)
    if not name or re.match(r"-?\d", name) or name == "-":
        name = "_" + name
    return name


def open_image(path: Path) -> Image.Image:
    with Image.open(path) as img:
        img.load()
        return img.convert("RGBA")


def _decode(path: Path) -> Tuple[Path, SourceImage | None, str | None]:
    try:
        img = open_image(path)
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        return path, None, str(e)
    return path, SourceImage.from_image(css_class_name(path.stem), img), None


def _accept(
    decoded: Iterable[Tuple[Path, SourceImage | None, str | None]],
    on_error: str,
) -> Iterator[SourceImage]:
    if on_error not in ("skip", "abort"):
        raise ValueError(f"on_error must be 'skip' or 'abort', got {on_error!r}")

    seen: set[str] = set()
    for path, src, err in decoded:
        if src is not None and src.name in seen:
            if on_error == "abort":
                raise ImageLoadError(path, f"duplicate name '{src.name}'")
            logger.warning("Skipped %s: duplicate name %r", path, src.name)
            continue
        if src is None:
            if on_error == "abort":
                raise ImageLoadError(path, err or "unknown error")
            logger.warning("Failed to open image %s: %s", path, err)
            continue
        seen.add(src.name)
        yield src


def iter_sources(paths: Iterable[Path], on_error: str = "skip") -> Iterator[SourceImage]:
    return _accept((_decode(p) for p in paths), on_error)


def load_sources(paths: Sequence[Path], on_error: str = "skip", workers: int = 0) -> List[SourceImage]:
    n_workers = _effective_workers(workers)
    if n_workers <= 1 or len(paths) <= 8:
        return list(iter_sources(paths, on_error=on_error))

    with ThreadPoolExecutor(max_workers=n_workers) as ex:
        return list(_accept(ex.map(_decode, paths), on_error))


def make_sprite(
    imgs: Sequence[SourceImage],
    layout: str = "vertical",
    order: str = "input",
    bin_size: Tuple[int, int] | None = None,
    minify: bool = False,
    image_url: str | None = None,
    workers: int = 0,
) -> Tuple[Image.Image, str, LayoutResult]:
    result = compute_layout(imgs, layout, order=order, bin_size=bin_size)
    check_layout(result, imgs)
    logger.info("Sprite dimension %d:%d", result.canvas.width, result.canvas.height)
    sheet = build_sprite(result, imgs, workers=workers)
    css = emit_css(result.placed, minify=minify, image_url=image_url)
    return sheet, css, result


def save_sprite(img: Image.Image, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    ext = path.suffix.lower()
    if ext == ".webp":
        img.save(path, "WEBP", lossless=True, quality=100, method=6)
    elif ext == ".png":
        img.save(path, optimize=True)
    elif ext in {".jpg", ".jpeg"}:
        # no alpha in JPEG; transparent areas become black
        flat = Image.new("RGB", img.size, (0, 0, 0))
        flat.paste(img, (0, 0), img if img.mode == "RGBA" else None)
        flat.save(path, quality=92, subsampling=1, optimize=True)
    else:
        img.save(path)


def generate_sprite_and_css(
    input_dir: Path,
    output_image: Path,
    output_css: Path,
    layout: str = "vertical",
    order: str = "input",
    bin_size: Tuple[int, int] | None = None,
    minify: bool = False,
    image_url: str | None = None,
    recursive: bool = True,
    on_error: str = "skip",
    workers: int = 0,
) -> LayoutResult:
    files = iter_image_files(input_dir, recursive=recursive)
    imgs = load_sources(files, on_error=on_error, workers=workers)
    if not imgs:
        raise EmptyInputError(f"no images found in input directory: {input_dir}")

    sheet, css, result = make_sprite(
        imgs,
        layout=layout,
        order=order,
        bin_size=bin_size,
        minify=minify,
        image_url=image_url,
        workers=workers,
    )

    save_sprite(sheet, output_image)
    output_css.parent.mkdir(parents=True, exist_ok=True)
    output_css.write_text(css, encoding="utf-8")
    logger.info("Saved %s and %s (%d images)", output_image, output_css, len(result.placed))
    return result


def parse_size(s: str) -> Tuple[int, int]:
    parts = s.lower().replace("\u00d7", "x").split("x")
    if len(parts) != 2:
        raise ValueError("size must be like 1024x1024")
    w, h = int(parts[0]), int(parts[1])
    if w <= 0 or h <= 0:
        raise ValueError("size must be positive")
    return w, h


def log_level(verbose: int) -> int:
    # SPRITE_LOG=debug etc. wins over -v
    env = os.environ.get("SPRITE_LOG", "").strip().upper()
    if env and isinstance(logging.getLevelName(env), int):
        return logging.getLevelName(env)

    if verbose <= 0:
        return logging.WARNING
    if verbose == 1:
        return logging.INFO
    return logging.DEBUG


def setup_logging(verbose: int) -> None:
    logging.basicConfig(level=log_level(verbose), format="%(levelname)s %(message)s")


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Combine a directory of images into one sprite sheet and a CSS file with a class per image."
    )

    parser.add_argument("-i", "--input", type=str, required=True, help="Input directory containing images")
    parser.add_argument(
        "-o",
        "--output",
        type=str,
        default="sprite.png",
        help="Output sprite image file (png or webp)",
    )
    parser.add_argument("-c", "--css", type=str, default="sprite.css", help="Output CSS file")
    parser.add_argument(
        "-l",
        "--layout",
        type=str,
        default="vertical",
        choices=list(LAYOUTS),
        help="vertical stacks images top to bottom; horizontal puts them side by side; packed bin-packs them.",
    )
    parser.add_argument(
        "--order",
        type=str,
        default="input",
        choices=list(ORDERS),
        help="Packing order for --layout=packed. input keeps file order; the others pack largest first.",
    )
    parser.add_argument(
        "--bin-size",
        type=str,
        default=None,
        help="Packing area like 1024x1024 for --layout=packed. Default: estimated from the images.",
    )
    parser.add_argument("--minify-css", action="store_true", help="Write the CSS without whitespace")
    parser.add_argument(
        "--css-url",
        type=str,
        default=None,
        help="Add a shared rule setting background-image to this URL for every class",
    )
    parser.add_argument("--no-recursive", action="store_true", help="Only scan the top level of the input directory")
    parser.add_argument(
        "--on-error",
        type=str,
        default="skip",
        choices=["skip", "abort"],
        help="What to do with unreadable images or duplicate names: skip with a warning, or abort.",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=0,
        help="Thread workers for image decoding. 0 means auto.",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More output (-v info, -vv debug)")

    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    logger.debug("Using layout: %s", args.layout)

    if Path(args.output).suffix.lower() not in OUTPUT_EXTS:
        parser.error(f"--output must end with one of: {', '.join(OUTPUT_EXTS)}")

    bin_size = None
    if args.bin_size:
        try:
            bin_size = parse_size(args.bin_size)
        except ValueError as e:
            parser.error(f"--bin-size: {e}")

    try:
        generate_sprite_and_css(
            Path(args.input),
            Path(args.output),
            Path(args.css),
            layout=args.layout,
            order=args.order,
            bin_size=bin_size,
            minify=args.minify_css,
            image_url=args.css_url,
            recursive=not args.no_recursive,
            on_error=args.on_error,
            workers=args.workers,
        )
    except (SpriteError, OSError, ValueError) as e:
        raise SystemExit(f"error: {e}")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
