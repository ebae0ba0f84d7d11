import numpy as np
import pytest
from PIL import Image

from acvdvolume.oocslice import (
    extract_slice,
    header_flip_axes,
    main,
    slice_components,
    write_slice,
)


def _write_volume(directory, volume, element_type, extra=(), channels=1):
    if channels == 1:
        nz, ny, nx = volume.shape
    else:
        nz, ny, nx, _ = volume.shape
    lines = [
        "ObjectType = Image",
        "NDims = 3",
        f"DimSize = {nx} {ny} {nz}",
        f"ElementType = {element_type}",
        f"ElementNumberOfChannels = {channels}",
        "ElementSpacing = 1 1 1",
        "BinaryDataByteOrderMSB = False",
        *extra,
        "ElementDataFile = vol.raw",
    ]
    header = directory / "vol.mhd"
    header.write_text("\n".join(lines) + "\n")
    little = volume.astype(volume.dtype.newbyteorder("<"))
    (directory / "vol.raw").write_bytes(little.tobytes())
    return header


@pytest.fixture
def uchar_volume(tmp_path):
    volume = np.arange(60, dtype=np.uint8).reshape(3, 4, 5)
    return _write_volume(tmp_path, volume, "MET_UCHAR"), volume


@pytest.mark.parametrize("code, expected", [(2, 1), (15, 1), (3, 1), (4, 2), (5, 2), (10, 4), (11, 4)])
def test_slice_components(code, expected):
    assert slice_components(code) == expected


def test_extract_slice_reverses_y(uchar_volume):
    header, volume = uchar_volume
    result = extract_slice(header, 1)
    assert result.shape == (1, 4, 5)
    np.testing.assert_array_equal(result[0], volume[1, ::-1, :])


def test_extract_slice_out_of_range(uchar_volume):
    header, _ = uchar_volume
    with pytest.raises(ValueError):
        extract_slice(header, 7)


def test_write_uchar_slice_round_trip(uchar_volume, tmp_path):
    header, volume = uchar_volume
    png = tmp_path / "s.png"
    rng = tmp_path / "r.txt"
    low, high = write_slice(extract_slice(header, 2), png, rng)
    with Image.open(png) as img:
        assert img.mode == "L"
        pixels = np.asarray(img)
    np.testing.assert_array_equal(pixels, volume[2])
    expected = volume[2]
    assert (low, high) == (float(expected.min()), float(expected.max()))
    assert rng.read_text() == f"{expected.min()} {expected.max()}"


def test_write_ushort_slice_packs_two_bytes(tmp_path):
    volume = (np.arange(24, dtype=np.uint16) * 1000).reshape(2, 3, 4)
    header = _write_volume(tmp_path, volume, "MET_USHORT")
    png = tmp_path / "s.png"
    write_slice(extract_slice(header, 1), png, tmp_path / "r.txt")
    with Image.open(png) as img:
        assert img.mode == "LA"
        pixels = np.asarray(img)
    unpacked = np.ascontiguousarray(pixels).view(np.uint16)[..., 0]
    np.testing.assert_array_equal(unpacked, volume[1])


def test_write_float_slice_packs_rgba(tmp_path):
    volume = np.linspace(-2.5, 7.25, 24, dtype=np.float32).reshape(2, 3, 4)
    header = _write_volume(tmp_path, volume, "MET_FLOAT")
    png = tmp_path / "s.png"
    rng = tmp_path / "r.txt"
    low, high = write_slice(extract_slice(header, 0), png, rng)
    with Image.open(png) as img:
        assert img.mode == "RGBA"
        pixels = np.asarray(img)
    unpacked = np.ascontiguousarray(pixels).view(np.float32)[..., 0]
    np.testing.assert_array_equal(unpacked, volume[0])
    assert low == pytest.approx(float(volume[0].min()))
    assert high == pytest.approx(float(volume[0].max()))


def test_write_multi_component_uchar(tmp_path):
    volume = np.arange(72, dtype=np.uint8).reshape(2, 3, 4, 3)
    header = _write_volume(tmp_path, volume, "MET_UCHAR", channels=3)
    png = tmp_path / "s.png"
    write_slice(extract_slice(header, 1), png, tmp_path / "r.txt")
    with Image.open(png) as img:
        assert img.mode == "RGB"
        pixels = np.asarray(img)
    np.testing.assert_array_equal(pixels, volume[1])


def test_write_multi_component_ushort_rejected(tmp_path):
    image = np.zeros((1, 2, 2, 3), dtype=np.uint16)
    with pytest.raises(ValueError):
        write_slice(image, tmp_path / "s.png", tmp_path / "r.txt")


def test_write_slice_needs_single_plane(tmp_path):
    with pytest.raises(ValueError):
        write_slice(np.zeros((2, 3, 3), dtype=np.uint8), tmp_path / "s.png", tmp_path / "r.txt")


def test_header_flip_axes(tmp_path):
    volume = np.zeros((1, 2, 2), dtype=np.uint8)
    header = _write_volume(
        tmp_path, volume, "MET_UCHAR", extra=["TransformMatrix = -1 0 0 0 1 0 0 0 -1"]
    )
    assert header_flip_axes(header) == (True, False, True)


def test_header_flip_axes_without_matrix(uchar_volume):
    header, _ = uchar_volume
    assert header_flip_axes(header) == (False, False, False)


def test_main_writes_outputs(uchar_volume, tmp_path, monkeypatch):
    header, volume = uchar_volume
    monkeypatch.chdir(tmp_path)
    assert main([str(header), "0"]) == 0
    with Image.open(tmp_path / "slice.png") as img:
        pixels = np.asarray(img)
    np.testing.assert_array_equal(pixels, volume[0])
    assert (tmp_path / "range.txt").read_text() == f"{volume[0].min()} {volume[0].max()}"


def test_main_usage(capsys):
    assert main([]) == 1
    assert "Usage" in capsys.readouterr().out


def test_main_bad_slice(uchar_volume, tmp_path, monkeypatch):
    header, _ = uchar_volume
    monkeypatch.chdir(tmp_path)
    assert main([str(header), "99"]) == 1
    assert not (tmp_path / "slice.png").exists()