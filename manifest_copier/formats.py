"""
Module with known photo and video extensions and the filter presets built on them.
"""
from typing import Dict, Iterable, List, Optional, Tuple

RAW_FORMATS: Dict[str, str] = {
    ".nef": "Nikon RAW",
    ".nrw": "Nikon RAW (Coolpix)",
    ".cr2": "Canon RAW",
    ".cr3": "Canon RAW (New)",
    ".crw": "Canon RAW (Old)",
    ".arw": "Sony RAW",
    ".srf": "Sony RAW (Old)",
    ".sr2": "Sony RAW",
    ".raf": "Fujifilm RAW",
    ".orf": "Olympus RAW",
    ".rw2": "Panasonic RAW",
    ".raw": "Generic RAW",
    ".pef": "Pentax RAW",
    ".ptx": "Pentax RAW",
    ".rwl": "Leica RAW",
    ".dng": "Digital Negative (Adobe)",
    ".iiq": "Phase One RAW",
    ".3fr": "Hasselblad RAW",
    ".fff": "Hasselblad RAW",
    ".x3f": "Sigma RAW",
    ".dcr": "Kodak RAW",
    ".kdc": "Kodak RAW",
    ".mrw": "Minolta RAW",
    ".srw": "Samsung RAW",
    ".erf": "Epson RAW",
    ".mef": "Mamiya RAW",
    ".mos": "Mamiya RAW",
    ".rwz": "Rawzor RAW",
}

JPEG_FORMATS: Tuple[str, ...] = (".jpg", ".jpeg", ".jpe", ".jfif")

OTHER_IMAGE_FORMATS: Dict[str, str] = {
    ".png": "PNG Image",
    ".tif": "TIFF Image",
    ".tiff": "TIFF Image",
    ".bmp": "Bitmap Image",
    ".gif": "GIF Image",
    ".webp": "WebP Image",
    ".heic": "HEIC (iPhone)",
    ".heif": "HEIF Image",
    ".psd": "Photoshop",
    ".psb": "Photoshop Big",
    ".ai": "Adobe Illustrator",
}

VIDEO_FORMATS: Dict[str, str] = {
    ".mp4": "MP4 Video",
    ".mov": "QuickTime Video",
    ".avi": "AVI Video",
    ".mkv": "MKV Video",
    ".mts": "AVCHD Video",
    ".m2ts": "AVCHD Video",
    ".mpg": "MPEG Video",
    ".mpeg": "MPEG Video",
    ".wmv": "Windows Media Video",
}

PHOTO_EXTENSIONS: Tuple[str, ...] = (
    tuple(RAW_FORMATS) + JPEG_FORMATS + tuple(OTHER_IMAGE_FORMATS)
)
MEDIA_EXTENSIONS: Tuple[str, ...] = PHOTO_EXTENSIONS + tuple(VIDEO_FORMATS)

# Preset name -> (description, extensions)
PRESETS: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    "all-photos": ("All Photos (RAW + JPEG + Images)", PHOTO_EXTENSIONS),
    "all-media": ("All Media (Photos + Videos)", MEDIA_EXTENSIONS),
    "raw-only": ("RAW Only (All camera brands)", tuple(RAW_FORMATS)),
    "jpeg-only": ("JPEG Only", JPEG_FORMATS),
    "nikon-raw": ("Nikon RAW", (".nef", ".nrw")),
    "canon-raw": ("Canon RAW", (".cr2", ".cr3", ".crw")),
    "sony-raw": ("Sony RAW", (".arw", ".srf", ".sr2")),
    "video-only": ("Video Files", tuple(VIDEO_FORMATS)),
}


def format_description(extension: str) -> str:
    """Human readable name of a file format, e.g. ``".NEF"`` -> ``"Nikon RAW"``."""
    extension = extension.lower()
    if extension in RAW_FORMATS:
        return RAW_FORMATS[extension]
    if extension in JPEG_FORMATS:
        return "JPEG Image"
    if extension in OTHER_IMAGE_FORMATS:
        return OTHER_IMAGE_FORMATS[extension]
    if extension in VIDEO_FORMATS:
        return VIDEO_FORMATS[extension]
    return "Unknown Format"


def preset_extensions(name: str) -> Tuple[str, ...]:
    """Extensions of a named preset.

    Args:
        name: Preset name, e.g. ``"nikon-raw"``

    Returns:
        Tuple of lower-cased extensions with a leading dot

    Raises:
        ValueError: If the preset is unknown
    """
    try:
        return PRESETS[name.strip().lower()][1]
    except KeyError:
        raise ValueError(
            f"Unknown preset {name!r}, expected one of: {', '.join(PRESETS)}"
        ) from None


def build_extension_filter(extensions: Optional[str] = None,
                           presets: Iterable[str] = ()) -> str:
    """Combine an explicit extension list with presets into one filter string.

    Order is kept and repeats are dropped, so the result reads the same way
    it was given.

    Args:
        extensions: Raw filter text, e.g. ``"jpg,.png"``
        presets: Preset names to add

    Returns:
        Comma separated filter text, empty if nothing was given
    """
    parts: List[str] = []
    if extensions and extensions.strip():
        parts.append(extensions.strip())
    for name in presets:
        parts.append(",".join(preset_extensions(name)))

    seen = set()
    tokens = []
    for token in ",".join(parts).replace(";", ",").replace(" ", ",").split(","):
        token = token.strip()
        key = "." + token.lower().lstrip(".")
        if token and key not in seen:
            seen.add(key)
            tokens.append(token)
    return ",".join(tokens)
