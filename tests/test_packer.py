from __future__ import annotations

import pytest

import sprite


def test_estimate_bin_size_minimum():
    assert sprite.estimate_bin_size([(10, 10), (20, 5)]) == (256, 256)


def test_estimate_bin_size_doubles_for_width():
    assert sprite.estimate_bin_size([(600, 1)]) == (1024, 1024)


def test_estimate_bin_size_doubles_for_area():
    # 300 * 300 = 90000 > 256 * 256
    assert sprite.estimate_bin_size([(100, 100)] * 9) == (512, 512)


def test_estimate_bin_size_exact_square_is_enough():
    assert sprite.estimate_bin_size([(256, 256)]) == (256, 256)


def test_estimate_bin_size_custom_minimum():
    assert sprite.estimate_bin_size([(10, 10)], min_edge=512) == (512, 512)


def test_estimate_bin_size_empty():
    with pytest.raises(sprite.EmptyInputError):
        sprite.estimate_bin_size([])


def test_packer_rejects_empty_area():
    with pytest.raises(ValueError):
        sprite.RectPacker(0, 10)


def test_packer_first_request_goes_top_left():
    packer = sprite.RectPacker(100, 100)

    assert packer.pack(30, 40) == sprite.Rect(0, 0, 30, 40)
    assert sorted(packer.free, key=lambda r: (r.y, r.x)) == [
        sprite.Rect(30, 0, 70, 40),
        sprite.Rect(0, 40, 100, 60),
    ]


def test_packer_prefers_tightest_free_rect():
    packer = sprite.RectPacker(100, 100)
    packer.pack(60, 60)

    # right strip 40x60 fits better than the 100x40 bottom strip
    assert packer.pack(40, 50) == sprite.Rect(60, 0, 40, 50)
    # exact fit of the 100x40 bottom strip
    assert packer.pack(100, 40) == sprite.Rect(0, 60, 100, 40)


def test_packer_reports_no_fit():
    packer = sprite.RectPacker(50, 50)

    assert packer.pack(60, 10) is None
    assert packer.pack(50, 50) == sprite.Rect(0, 0, 50, 50)
    assert packer.free == []
    assert packer.pack(1, 1) is None


def test_packer_zero_area_request_does_not_consume_space():
    packer = sprite.RectPacker(10, 10)

    assert packer.pack(0, 5) == sprite.Rect(0, 0, 0, 5)
    assert packer.free == [sprite.Rect(0, 0, 10, 10)]
    assert packer.pack(0, 11) is None


def test_packer_negative_request():
    with pytest.raises(ValueError):
        sprite.RectPacker(10, 10).pack(-1, 2)


def test_packer_merges_adjacent_free_rects():
    packer = sprite.RectPacker(100, 100)
    packer.free = [sprite.Rect(0, 0, 50, 20), sprite.Rect(50, 0, 50, 20), sprite.Rect(0, 20, 100, 80)]

    packer._merge_free()

    assert packer.free == [sprite.Rect(0, 0, 100, 100)]


def test_packer_places_without_overlap():
    packer = sprite.RectPacker(128, 128)
    placed = []
    for w, h in [(64, 64), (64, 32), (32, 64), (16, 16), (50, 10), (10, 50), (8, 8), (30, 20)]:
        r = packer.pack(w, h)
        assert r is not None
        assert 0 <= r.x and r.x + r.w <= 128
        assert 0 <= r.y and r.y + r.h <= 128
        placed.append(r)

    for i, a in enumerate(placed):
        for b in placed[i + 1:]:
            assert not sprite.rect_intersects(a, b)
    assert packer.used == placed
    for fr in packer.free:
        for r in placed:
            assert not sprite.rect_intersects(fr, r)


def test_rect_intersects():
    a = sprite.Rect(0, 0, 10, 10)

    assert sprite.rect_intersects(a, sprite.Rect(5, 5, 10, 10))
    assert not sprite.rect_intersects(a, sprite.Rect(10, 0, 10, 10))
    assert not sprite.rect_intersects(a, sprite.Rect(0, 10, 10, 10))
    assert not sprite.rect_intersects(a, sprite.Rect(2, 2, 0, 5))
