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

# src/processing/vector_processing/format_svg_processing.py
import os
from svglib.svglib import svg2rlg
from reportlab.graphics import renderPM
from src.utils.logging import log_message

SVG_RASTER_SIZE = 512


class SvgRasterizeError(Exception):
    pass


def rasterize_svg(svg_path, target_size=SVG_RASTER_SIZE):
    """
    Render an SVG to PNG bytes with its longest edge scaled to `target_size`
    on a white background. Raises SvgRasterizeError if the file cannot be
    parsed or rendered.
    """
    filename = os.path.basename(svg_path)
    log_message(f"Rasterizing SVG: {filename}", "debug")
    try:
        drawing = svg2rlg(svg_path)
    except FileNotFoundError:
        raise SvgRasterizeError(f"File SVG not found: {svg_path}")
    except Exception as e:
        raise SvgRasterizeError(f"Failed to read or parse SVG {filename} ({type(e).__name__}): {e}")
    if drawing is None:
        raise SvgRasterizeError(f"Failed to read or parse SVG: {filename}")

    longest = max(drawing.width or 0, drawing.height or 0)
    if longest > 0:
        scale = target_size / longest
        drawing.width = drawing.width * scale
        drawing.height = drawing.height * scale
        drawing.scale(scale, scale)

    try:
        data = renderPM.drawToString(drawing, fmt="PNG", bg=0xFFFFFF)
    except Exception as e:
        raise SvgRasterizeError(f"Error when rendering SVG {filename} ({type(e).__name__}): {e}")
    if not data:
        raise SvgRasterizeError(f"Rendered SVG is empty: {filename}")
    return data
