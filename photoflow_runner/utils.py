import math
from pathlib import Path
from typing import Optional, Union

from PIL import Image

PathLike = Union[str, Path]


def pil_image_from_path(path: PathLike) -> Optional[Image.Image]:
    im = None
    try:
        im = Image.open(path)
        # Force a full decode so truncated files fail here rather than later
        im.load()
    except Exception:
        if im is not None:
            im.close()
        return None
    return im


def has_alpha(im: Image.Image) -> bool:
    if im.mode in ("RGBA", "LA", "PA"):
        return True
    return im.mode == "P" and "transparency" in im.info


def flatten_to_rgb(im: Image.Image, background=(255, 255, 255)) -> Image.Image:
    """Return an RGB copy, compositing any transparency onto ``background``."""
    if has_alpha(im):
        rgba = im.convert("RGBA")
        canvas = Image.new("RGB", rgba.size, background)
        canvas.paste(rgba, mask=rgba.getchannel("A"))
        return canvas
    if im.mode != "RGB":
        return im.convert("RGB")
    return im


def format_file_size(num_bytes: int) -> str:
    if num_bytes <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    index = min(int(math.floor(math.log(num_bytes, 1024))), len(units) - 1)
    value = round(num_bytes / (1024 ** index), 2)
    # 1.50 -> 1.5, 2.00 -> 2
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {units[index]}"
