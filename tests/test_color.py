from __future__ import annotations

import io
from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

np = pytest.importorskip("numpy")
pytest.importorskip("PIL.ImageCms")
from PIL import Image, ImageCms  # noqa: E402  # pylint: disable=wrong-import-position

try:
    from .tiff_samples import gradient_rgb, profile_bytes, write_profile
except ImportError:  # pragma: no cover - fallback for direct execution
    from tests.tiff_samples import gradient_rgb, profile_bytes, write_profile

from icc_tiff_batch_processor import color  # noqa: E402  # pylint: disable=wrong-import-position


@pytest.fixture()
def srgb_target(tmp_path: Path) -> ImageCms.ImageCmsProfile:
    return color.load_color_profile(write_profile(tmp_path / "target.icc"))


def test_untagged_image_receives_profile_without_pixel_changes(srgb_target):
    image = Image.fromarray(gradient_rgb())

    result = color.apply_color_profile(image, srgb_target)

    assert result.outcome is color.ColorOutcome.EMBEDDED
    assert result.image is image
    assert result.icc_profile == srgb_target.tobytes()
    np.testing.assert_array_equal(np.asarray(result.image), gradient_rgb())


def test_tagged_image_is_transformed_with_high_precision(srgb_target, monkeypatch: pytest.MonkeyPatch):
    image = Image.fromarray(gradient_rgb())
    image.info["icc_profile"] = profile_bytes("sRGB")
    calls = {}
    original = ImageCms.profileToProfile

    def spy_profile_to_profile(im, source, target, **kwargs):
        calls.update(kwargs)
        return original(im, source, target, **kwargs)

    monkeypatch.setattr(color.ImageCms, "profileToProfile", spy_profile_to_profile)

    result = color.apply_color_profile(image, srgb_target)

    assert result.outcome is color.ColorOutcome.TRANSFORMED
    assert result.icc_profile == srgb_target.tobytes()
    assert calls["flags"] == ImageCms.Flags.HIGHRESPRECALC
    assert calls["outputMode"] == "RGB"
    assert result.image.size == image.size
    # sRGB -> sRGB is close to an identity transform.
    diff = np.abs(np.asarray(result.image, dtype=np.int16) - gradient_rgb().astype(np.int16))
    assert int(diff.max()) <= 2


def test_transform_failure_keeps_image_and_original_profile(srgb_target):
    image = Image.fromarray(gradient_rgb())
    image.info["icc_profile"] = b"garbage profile payload"

    result = color.apply_color_profile(image, srgb_target)

    assert result.outcome is color.ColorOutcome.TRANSFORM_FAILED
    assert result.image is image
    assert result.icc_profile == b"garbage profile payload"


def test_transform_color_space_reports_failure_as_none(srgb_target, monkeypatch: pytest.MonkeyPatch):
    def failing_profile_to_profile(*args, **kwargs):
        raise ImageCms.PyCMSError("unsupported mode")

    monkeypatch.setattr(color.ImageCms, "profileToProfile", failing_profile_to_profile)
    image = Image.new("RGB", (2, 2))

    assert color.transform_color_space(image, profile_bytes("sRGB"), srgb_target) is None


def test_output_mode_keeps_alpha_for_rgb_targets(srgb_target):
    assert color.output_mode_for(Image.new("RGBA", (1, 1)), srgb_target) == "RGBA"
    assert color.output_mode_for(Image.new("RGB", (1, 1)), srgb_target) == "RGB"

    lab = ImageCms.ImageCmsProfile(ImageCms.createProfile("LAB"))
    assert color.output_mode_for(Image.new("RGB", (1, 1)), lab) == "LAB"


def test_load_color_profile_rejects_invalid_files(tmp_path: Path):
    bogus = tmp_path / "bogus.icc"
    bogus.write_text("not a profile")

    with pytest.raises(color.ProfileLoadError):
        color.load_color_profile(bogus)


def test_profile_description_is_readable(srgb_target):
    assert isinstance(color.profile_description(srgb_target), str)


@pytest.fixture()
def lab_target(tmp_path: Path) -> ImageCms.ImageCmsProfile:
    return color.load_color_profile(write_profile(tmp_path / "lab.icc", "LAB"))


def test_tagged_image_is_converted_into_a_different_colour_space(lab_target):
    image = Image.fromarray(gradient_rgb())
    image.info["icc_profile"] = profile_bytes("sRGB")

    result = color.apply_color_profile(image, lab_target)

    expected = ImageCms.profileToProfile(
        image,
        ImageCms.ImageCmsProfile(io.BytesIO(profile_bytes("sRGB"))),
        lab_target,
        renderingIntent=ImageCms.Intent.PERCEPTUAL,
        outputMode="LAB",
        flags=ImageCms.Flags.HIGHRESPRECALC,
    )
    assert result.outcome is color.ColorOutcome.TRANSFORMED
    assert result.image.mode == "LAB"
    assert result.icc_profile == lab_target.tobytes()
    np.testing.assert_array_equal(np.asarray(result.image), np.asarray(expected))
    assert not np.array_equal(np.asarray(result.image), gradient_rgb())


def test_sixteen_bit_lattice_points_match_the_eight_bit_transform(srgb_target):
    levels = np.array([0, 50, 100, 155, 200, 255], dtype=np.uint8)
    rgb8 = np.stack(np.meshgrid(levels, levels[::-1], levels, indexing="ij"), axis=-1).reshape(36, 6, 3)
    rgb16 = rgb8.astype(np.uint16) * 257

    converted = color.transform_pixel_array(rgb16, profile_bytes("sRGB"), srgb_target)

    expected8 = ImageCms.profileToProfile(
        Image.fromarray(rgb8),
        ImageCms.ImageCmsProfile(io.BytesIO(profile_bytes("sRGB"))),
        srgb_target,
        renderingIntent=ImageCms.Intent.PERCEPTUAL,
        outputMode="RGB",
        flags=ImageCms.Flags.HIGHRESPRECALC,
    )
    assert converted.dtype == np.uint16
    np.testing.assert_array_equal(converted, np.asarray(expected8).astype(np.uint16) * 257)


def test_sixteen_bit_transform_keeps_precision_and_alpha(srgb_target):
    ramp = np.linspace(0, 65535, 4 * 5 * 3).round().astype(np.uint16).reshape((4, 5, 3))
    alpha = np.full((4, 5, 1), 1234, dtype=np.uint16)
    pixels = np.concatenate([ramp, alpha], axis=2)

    converted = color.transform_pixel_array(pixels, profile_bytes("sRGB"), srgb_target)

    assert converted.shape == pixels.shape
    assert converted.dtype == np.uint16
    np.testing.assert_array_equal(converted[:, :, 3], alpha[:, :, 0])
    # sRGB -> sRGB stays within the 8-bit lattice tolerance and keeps fine steps.
    diff = np.abs(converted[:, :, :3].astype(np.int64) - ramp.astype(np.int64))
    assert int(diff.max()) <= 3 * 257
    assert len(np.unique(converted[:, :, :3])) > 40


def test_untagged_array_receives_profile_without_changes(srgb_target):
    pixels = (np.arange(12, dtype=np.uint16) * 5000).reshape((3, 4))

    result = color.apply_color_profile_array(pixels, None, srgb_target)

    assert result.outcome is color.ColorOutcome.EMBEDDED
    assert result.image is pixels
    assert result.icc_profile == srgb_target.tobytes()


def test_array_transform_into_mismatched_colour_space_fails(lab_target):
    pixels = np.zeros((2, 2, 3), dtype=np.uint16)

    result = color.apply_color_profile_array(pixels, profile_bytes("sRGB"), lab_target)

    assert result.outcome is color.ColorOutcome.TRANSFORM_FAILED
    assert result.image is pixels
    assert result.icc_profile == profile_bytes("sRGB")
