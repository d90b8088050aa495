"""Image acquisition helpers: cropping, rescaling and fingerprinting."""

from .normalizer import CropRegion, ImageNormalizer, NormalizedImage, decode_capture, fingerprint

__all__ = ["CropRegion", "ImageNormalizer", "NormalizedImage", "decode_capture", "fingerprint"]
