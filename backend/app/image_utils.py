"""Screenshot helpers: dimensions and a compressed preview."""
from PIL import Image, UnidentifiedImageError
import io


def image_dimensions(image_bytes: bytes) -> tuple[int, int]:
    """(width, height) of an encoded image, (0, 0) if it cannot be read."""
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            return img.size
    except (UnidentifiedImageError, OSError):
        return 0, 0


def make_preview(screenshot_bytes: bytes, max_width: int = 800, quality: int = 75) -> bytes:
    """
    Resize and compress a full-page screenshot for list views.
    A 1920px-wide PNG of a long page (often 5-20MB) becomes a JPEG a few
    hundred KB in size.
    """
    img = Image.open(io.BytesIO(screenshot_bytes))

    # Resize if wider than max_width
    w, h = img.size
    if w > max_width:
        ratio = max_width / w
        img = img.resize((max_width, max(1, int(h * ratio))), Image.LANCZOS)

    # Convert RGBA to RGB (JPEG doesn't support alpha)
    if img.mode == 'RGBA':
        bg = Image.new('RGB', img.size, (255, 255, 255))
        bg.paste(img, mask=img.split()[3])
        img = bg
    elif img.mode != 'RGB':
        img = img.convert('RGB')

    buf = io.BytesIO()
    img.save(buf, format='JPEG', quality=quality, optimize=True)
    return buf.getvalue()
