"""
ESC/POS Raster Images
=====================

Converts PNG/JPEG images into ESC/POS raster bytes sized for a printer.
The raster block itself is encoded by python-escpos into a ``Dummy``
printer buffer.
"""

from io import BytesIO

from escpos.printer import Dummy
from PIL import Image

from .config import DEFAULT_PRINT_WIDTH

INIT = b'\x1b\x40'  # ESC @
FEED_4 = b'\x1b\x64\x04'  # ESC d 4
CUT = b'\x1d\x56\x00'  # GS V 0, full cut

LUMINANCE_THRESHOLD = 128


def load_monochrome(image_data: bytes, width: int = DEFAULT_PRINT_WIDTH) -> Image.Image:
    """
    Decode an image, scale it to ``width`` dots and threshold it.

    Transparent pixels print as white. Returns a greyscale image holding
    only black (0) and white (255).
    """
    img = Image.open(BytesIO(image_data))
    img = img.convert('RGBA')

    background = Image.new('RGBA', img.size, (255, 255, 255, 255))
    img = Image.alpha_composite(background, img).convert('L')

    if img.width != width:
        height = max(1, round(img.height * width / img.width))
        img = img.resize((width, height), Image.Resampling.NEAREST)

    return img.point(lambda p: 0 if p < LUMINANCE_THRESHOLD else 255)


def raster_command(img: Image.Image) -> bytes:
    """GS v 0 raster bit image(s) for a black and white image."""
    printer = Dummy()
    printer.image(img, impl='bitImageRaster')
    return printer.output


def image_to_escpos(image_data: bytes, width: int = DEFAULT_PRINT_WIDTH, cut: bool = True) -> bytes:
    """
    Build a complete print payload for an image.

    Args:
        image_data: Raw image bytes (PNG/JPEG)
        width: Printer width in dots
        cut: Feed and cut after the image

    Returns:
        ESC @, raster image, then (optionally) feed 4 lines and full cut
    """
    data = bytearray(INIT)
    data.extend(raster_command(load_monochrome(image_data, width)))
    if cut:
        data.extend(FEED_4)
        data.extend(CUT)
    return bytes(data)
