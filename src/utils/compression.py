# RJ Auto Metadata
# Copyright (C) 2025 Riiicil
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

# src/utils/compression.py
import io
import os
from PIL import Image, ImageOps
from src.utils.logging import log_message

MODEL_INPUT_DIMENSION = 256   # longest edge sent to the vision model
MODEL_INPUT_QUALITY = 50
THUMBNAIL_SIZE = (120, 120)
THUMBNAIL_QUALITY = 80


def _save_jpeg_optimized(img: Image.Image, target, quality: int) -> None:
    """
    Save a Pillow image as JPEG. `target` may be a path or a binary file object.
    subsampling=0 keeps chroma detail for the model; optimize=True gives
    smaller Huffman tables at the same quality.
    """
    img.save(target, 'JPEG', quality=quality, optimize=True, subsampling=0, progressive=False)


def _flatten_to_rgb(img: Image.Image) -> Image.Image:
    """Composite transparent images onto white and convert anything else to RGB."""
    has_transparency = img.mode in ('RGBA', 'LA') or 'transparency' in img.info
    if has_transparency:
        rgba = img.convert('RGBA')
        background = Image.new('RGB', rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    if img.mode != 'RGB':
        return img.convert('RGB')
    return img


def encode_jpeg(img: Image.Image, quality: int) -> bytes:
    buffer = io.BytesIO()
    _save_jpeg_optimized(_flatten_to_rgb(img), buffer, quality)
    return buffer.getvalue()


def downscale_image(img: Image.Image, max_dimension: int) -> Image.Image:
    width, height = img.size
    if width <= max_dimension and height <= max_dimension:
        return img
    scale_factor = min(max_dimension / width, max_dimension / height)
    new_width = max(1, int(width * scale_factor))
    new_height = max(1, int(height * scale_factor))
    return img.resize((new_width, new_height), Image.LANCZOS)


def prepare_image_bytes(input_path, max_dimension=MODEL_INPUT_DIMENSION, quality=MODEL_INPUT_QUALITY):
    """
    Return downscaled JPEG bytes of `input_path` for the vision model.
    Only the first frame of animated formats is used. Raises OSError when the
    file cannot be decoded.
    """
    filename = os.path.basename(input_path)
    with Image.open(input_path) as img:
        img.seek(0)
        img = ImageOps.exif_transpose(img)
        original_size = img.size
        resized = downscale_image(img, max_dimension)
        data = encode_jpeg(resized, quality)
    log_message(
        f"Prepared {filename} for analysis: {original_size[0]}x{original_size[1]} -> "
        f"{resized.size[0]}x{resized.size[1]}, {len(data) // 1024} KB",
        "debug",
    )
    return data


def prepare_bytes_from_raster(raw_bytes, max_dimension=MODEL_INPUT_DIMENSION, quality=MODEL_INPUT_QUALITY):
    """Same as prepare_image_bytes but for an already-encoded raster held in memory."""
    with Image.open(io.BytesIO(raw_bytes)) as img:
        return encode_jpeg(downscale_image(img, max_dimension), quality)


def cover_thumbnail(img: Image.Image, size=THUMBNAIL_SIZE, quality=THUMBNAIL_QUALITY) -> bytes:
    """Center-crop `img` to fill `size` exactly and return it as JPEG bytes."""
    fitted = ImageOps.fit(_flatten_to_rgb(img), size, Image.LANCZOS)
    return encode_jpeg(fitted, quality)
