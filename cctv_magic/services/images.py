"""Reference image preprocessing: orientation check, crop, resize to the video frame."""

import io
from dataclasses import dataclass
from typing import Literal

from PIL import Image, ImageOps, UnidentifiedImageError

from cctv_magic.core.exceptions import BadRequestError
from cctv_magic.services.catalog import LANDSCAPE_SIZE, PORTRAIT_SIZE, VIDEO_SIZES, parse_size

MIN_DIMENSION = 64
JPEG_QUALITY = 95

Orientation = Literal["landscape", "portrait"]


@dataclass
class CropBox:
    x: int
    y: int
    width: int
    height: int


@dataclass
class ProcessedImage:
    data: bytes
    width: int
    height: int
    content_type: str = "image/jpeg"


def orientation_for(width: int, height: int) -> Orientation:
    return "landscape" if width > height else "portrait"


def default_size_for(width: int, height: int) -> str:
    return LANDSCAPE_SIZE if orientation_for(width, height) == "landscape" else PORTRAIT_SIZE


def load_image(content: bytes) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(content))
        image.load()
    except (UnidentifiedImageError, OSError) as e:
        raise BadRequestError("Uploaded file is not a readable image") from e
    image = ImageOps.exif_transpose(image)
    if image.width < MIN_DIMENSION or image.height < MIN_DIMENSION:
        raise BadRequestError(
            f"Image must be at least {MIN_DIMENSION}x{MIN_DIMENSION} pixels",
            details={"width": image.width, "height": image.height},
        )
    return image


def centered_crop(width: int, height: int, target_width: int, target_height: int) -> CropBox:
    """Largest box with the target aspect ratio, centred in the source."""
    target_ratio = target_width / target_height
    if width / height > target_ratio:
        crop_height = height
        crop_width = round(height * target_ratio)
    else:
        crop_width = width
        crop_height = round(width / target_ratio)
    return CropBox(
        x=(width - crop_width) // 2,
        y=(height - crop_height) // 2,
        width=crop_width,
        height=crop_height,
    )


def _validate_crop(crop: CropBox, width: int, height: int) -> None:
    if crop.width <= 0 or crop.height <= 0 or crop.x < 0 or crop.y < 0:
        raise BadRequestError("Invalid crop area")
    if crop.x + crop.width > width or crop.y + crop.height > height:
        raise BadRequestError(
            "Crop area exceeds image bounds",
            details={"image": [width, height], "crop": [crop.x, crop.y, crop.width, crop.height]},
        )


def preprocess_reference_image(content: bytes, size: str, crop: CropBox | None = None) -> ProcessedImage:
    """Crop (given box or centred) and resize to ``size`` exactly; JPEG output."""
    if size not in VIDEO_SIZES:
        raise BadRequestError(f"Unsupported size: {size}", details={"allowed": list(VIDEO_SIZES)})
    target_width, target_height = parse_size(size)
    image = load_image(content)
    if crop is None:
        crop = centered_crop(image.width, image.height, target_width, target_height)
    else:
        _validate_crop(crop, image.width, image.height)
    region = image.crop((crop.x, crop.y, crop.x + crop.width, crop.y + crop.height))
    if region.mode != "RGB":
        region = region.convert("RGB")
    resized = region.resize((target_width, target_height), Image.Resampling.LANCZOS)
    out = io.BytesIO()
    resized.save(out, format="JPEG", quality=JPEG_QUALITY)
    return ProcessedImage(data=out.getvalue(), width=target_width, height=target_height)
