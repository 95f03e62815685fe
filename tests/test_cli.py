from __future__ import annotations

import logging

import pytest
from PIL import Image

import sprite


def test_main_packed(image_dir, tmp_path):
    out_png = tmp_path / "sprite.webp"
    out_css = tmp_path / "sprite.css"

    rc = sprite.main(["-i", str(image_dir), "-o", str(out_png), "-c", str(out_css), "-l", "packed", "--minify-css"])

    assert rc == 0
    with Image.open(out_png) as im:
        assert im.format == "WEBP"
        assert im.size[0] == 256
    css = out_css.read_text(encoding="utf-8")
    assert "\n" not in css
    assert ".play{" in css and ".stop{" in css and ".pause{" in css


def test_main_flat_horizontal_with_url(image_dir, tmp_path):
    out_css = tmp_path / "s.css"

    sprite.main(
        [
            "-i", str(image_dir),
            "-o", str(tmp_path / "s.png"),
            "-c", str(out_css),
            "-l", "horizontal",
            "--no-recursive",
            "--css-url", "s.png",
        ]
    )

    css = out_css.read_text(encoding="utf-8")
    assert 'url("s.png")' in css
    assert ".stop" not in css
    assert ".play { background-position: -32px 0px;" in css


def test_main_bin_size(image_dir, tmp_path):
    out_png = tmp_path / "s.png"

    sprite.main(["-i", str(image_dir), "-o", str(out_png), "-c", str(tmp_path / "s.css"), "-l", "packed", "--bin-size", "64x64"])

    with Image.open(out_png) as im:
        assert im.size[0] == 64


def test_main_bad_bin_size(image_dir, tmp_path):
    with pytest.raises(SystemExit):
        sprite.main(["-i", str(image_dir), "-l", "packed", "--bin-size", "big"])


def test_main_packing_failure_exits(image_dir, tmp_path):
    with pytest.raises(SystemExit) as exc:
        sprite.main(["-i", str(image_dir), "-o", str(tmp_path / "s.png"), "-c", str(tmp_path / "s.css"), "-l", "packed", "--bin-size", "16x16"])
    assert "failed to pack" in str(exc.value.code)


def test_main_missing_input(tmp_path):
    with pytest.raises(SystemExit) as exc:
        sprite.main(["-i", str(tmp_path / "missing"), "-o", str(tmp_path / "s.png"), "-c", str(tmp_path / "s.css")])
    assert "not found" in str(exc.value.code)


def test_parse_size():
    assert sprite.parse_size("1024x512") == (1024, 512)
    assert sprite.parse_size("64×64") == (64, 64)
    with pytest.raises(ValueError):
        sprite.parse_size("0x10")
    with pytest.raises(ValueError):
        sprite.parse_size("100")


def test_log_level(monkeypatch):
    monkeypatch.delenv("SPRITE_LOG", raising=False)
    assert sprite.log_level(0) == logging.WARNING
    assert sprite.log_level(1) == logging.INFO
    assert sprite.log_level(3) == logging.DEBUG

    monkeypatch.setenv("SPRITE_LOG", "error")
    assert sprite.log_level(2) == logging.ERROR

    monkeypatch.setenv("SPRITE_LOG", "chatty")
    assert sprite.log_level(1) == logging.INFO


@pytest.mark.parametrize("name", ["s.jpg", "sprite"])
def test_main_rejects_unsupported_output(image_dir, tmp_path, name):
    out = tmp_path / name

    with pytest.raises(SystemExit) as exc:
        sprite.main(["-i", str(image_dir), "-o", str(out), "-c", str(tmp_path / "s.css")])
    assert exc.value.code == 2
    assert not out.exists()
    assert not (tmp_path / "s.css").exists()


def test_main_save_error_exits(image_dir, tmp_path):
    # a directory where the sprite file should go
    out = tmp_path / "taken.png"
    out.mkdir()

    with pytest.raises(SystemExit) as exc:
        sprite.main(["-i", str(image_dir), "-o", str(out), "-c", str(tmp_path / "s.css")])
    assert str(exc.value.code).startswith("error:")
