"""Crop and normalize screen captures for recognition.

A capture arrives as a full viewport screenshot. The normalizer cuts out the
captcha rectangle (taking the device pixel ratio into account), upscales it
for legibility, optionally binarizes it, and encodes it as JPEG. The SHA-256
of the encoded bytes is the cache fingerprint.
"""

import base64
import binascii
import hashlib
import io
from dataclasses import dataclass
from typing import Tuple, Union

from PIL import Image, ImageChops, UnidentifiedImageError

from captcha_relay.errors import CaptureDecodeError, InvalidCropError
from captcha_relay.config.mcp_logger import logger

RawCapture = Union[bytes, str]


@dataclass
class CropRegion:
    """Target rectangle in CSS pixels.
    
    Attributes:
        x: Left edge relative to the viewport.
        y: Top edge relative to the viewport.
        width: Rectangle width.
        height: Rectangle height.
        device_pixel_ratio: Screen pixels per CSS pixel.
    """
    x: float
    y: float
    width: float
    height: float
    device_pixel_ratio: float = 1.0
    
    def to_box(self, image_size: Tuple[int, int]) -> Tuple[int, int, int, int]:
        """Return the crop box in capture pixels, clamped to the image."""
        dpr = self.device_pixel_ratio or 1.0
        image_width, image_height = image_size
        left = max(0, min(image_width, round(self.x * dpr)))
        top = max(0, min(image_height, round(self.y * dpr)))
        right = max(left, min(image_width, round((self.x + self.width) * dpr)))
        bottom = max(top, min(image_height, round((self.y + self.height) * dpr)))
        return left, top, right, bottom


@dataclass(frozen=True)
class NormalizedImage:
    """Encoded image ready to be sent to a provider."""
    data: bytes
    mime_type: str
    width: int
    height: int
    fingerprint: str
    
    @property
    def base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")
    
    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64}"


def fingerprint(data: bytes) -> str:
    """Deterministic digest used as the cache key."""
    return hashlib.sha256(data).hexdigest()


def decode_capture(raw_capture: RawCapture) -> Image.Image:
    """Decode raw bytes, a base64 string or a ``data:`` URL into an RGB image.
    
    Raises:
        CaptureDecodeError: If the payload is not a readable image.
    """
    try:
        if isinstance(raw_capture, str):
            payload = raw_capture.strip()
            if payload.startswith("data:"):
                payload = payload.split(",", 1)[1] if "," in payload else ""
            # line-wrapped base64 is common in exported screenshots
            payload = "".join(payload.split())
            raw_bytes = base64.b64decode(payload, validate=True)
        else:
            raw_bytes = bytes(raw_capture)
        
        if not raw_bytes:
            raise CaptureDecodeError("Capture is empty")
        
        image = Image.open(io.BytesIO(raw_bytes))
        image.load()
    except CaptureDecodeError:
        raise
    except (binascii.Error, ValueError, UnidentifiedImageError, OSError) as e:
        raise CaptureDecodeError(f"Unable to decode capture: {e}") from e
    
    return image.convert("RGB")


class ImageNormalizer:
    """Crops, rescales and optionally enhances captures.
    
    Enhancement is a tunable policy: providers must cope with both enhanced
    and plain images.
    """
    
    def __init__(
        self,
        scale: float = 2.0,
        enhance: bool = False,
        ink_threshold: int = 40,
        dark_threshold: int = 100,
        jpeg_quality: int = 90
    ):
        self.scale = scale
        self.enhance = enhance
        self.ink_threshold = ink_threshold
        self.dark_threshold = dark_threshold
        self.jpeg_quality = jpeg_quality
        self.logger = logger.bind(component="image_normalizer")
    
    def normalize(self, raw_capture: RawCapture, region: CropRegion) -> NormalizedImage:
        """Turn a full-frame capture into a provider-ready image.
        
        Args:
            raw_capture: Screenshot as bytes, base64 or ``data:`` URL.
            region: Rectangle of the captcha inside the viewport.
        
        Returns:
            The encoded crop and its fingerprint.
        
        Raises:
            CaptureDecodeError: If the capture cannot be decoded.
            InvalidCropError: If the crop has zero area.
        """
        image = decode_capture(raw_capture)
        box = region.to_box(image.size)
        left, top, right, bottom = box
        if right - left <= 0 or bottom - top <= 0:
            raise InvalidCropError(
                f"Crop region {box} has zero area inside a {image.size[0]}x{image.size[1]} capture"
            )
        
        cropped = image.crop(box)
        target_size = (
            max(1, round(cropped.width * self.scale)),
            max(1, round(cropped.height * self.scale))
        )
        resized = cropped.resize(target_size, Image.LANCZOS)
        
        if self.enhance:
            resized = self.binarize(resized)
        
        buffer = io.BytesIO()
        resized.save(buffer, format="JPEG", quality=self.jpeg_quality)
        data = buffer.getvalue()
        
        normalized = NormalizedImage(
            data=data,
            mime_type="image/jpeg",
            width=resized.width,
            height=resized.height,
            fingerprint=fingerprint(data)
        )
        self.logger.debug(
            "capture_normalized",
            crop_box=box,
            size=f"{normalized.width}x{normalized.height}",
            enhanced=self.enhance,
            fingerprint=normalized.fingerprint[:12]
        )
        return normalized
    
    def binarize(self, image: Image.Image) -> Image.Image:
        """Map pixels to black ink or white background.
        
        A pixel is ink when one channel dominates the other two by more than
        ``ink_threshold`` (coloured captcha text) or when it is darker than
        ``dark_threshold``.
        """
        red, green, blue = image.convert("RGB").split()
        
        # channel minus the brighter of the other two, clipped at 0
        dominance = ImageChops.lighter(
            ImageChops.lighter(
                ImageChops.subtract(red, ImageChops.lighter(green, blue)),
                ImageChops.subtract(green, ImageChops.lighter(red, blue))
            ),
            ImageChops.subtract(blue, ImageChops.lighter(red, green))
        )
        dominant = dominance.point(lambda v: 255 if v > self.ink_threshold else 0)
        dark = image.convert("L").point(lambda v: 255 if v < self.dark_threshold else 0)
        
        ink = ImageChops.lighter(dominant, dark)
        return ImageChops.invert(ink).convert("RGB")
