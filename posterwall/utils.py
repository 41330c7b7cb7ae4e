import datetime
import socket
from io import BytesIO
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

from PIL import Image, ImageFont, ImageOps

from . import config

# Constants
PACKAGE_ROOT = Path(__file__).resolve().parent
PROJECT_ROOT = PACKAGE_ROOT.parent

POSTER_ASPECT = 1.5  # height / width
POSTER_FILL = 0.9

Box = Tuple[int, int, int, int]


def get_static_assets_root() -> Path:
    """Return the absolute path to the static assets directory."""
    return Path(config.WEB_STATIC_DIR)


def asset_path(*parts: str) -> Path:
    """Build a path inside the static assets directory."""
    return get_static_assets_root().joinpath(*parts)


def _default_font_candidates() -> Tuple[str, ...]:
    return (
        asset_path('fonts/Inter-SemiBold.ttf').as_posix(),
        asset_path('fonts/DejaVuSans.ttf').as_posix(),
        '/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf',
        'DejaVuSans.ttf'
    )


def load_font(size: int, candidates: Optional[Sequence[str]] = None) -> ImageFont.ImageFont:
    """Load the first available font from the candidate list or fall back to default."""
    font_candidates = candidates or _default_font_candidates()
    for candidate in font_candidates:
        candidate_path = Path(candidate)
        if not candidate_path.is_absolute():
            candidate_path = PROJECT_ROOT / candidate_path
        if candidate_path.exists():
            try:
                return ImageFont.truetype(candidate_path.as_posix(), size)
            except OSError as exc:
                config.logger.warning("[font] failed to load %s: %s", candidate_path, exc)
    config.logger.debug("[font] falling back to default font")
    return ImageFont.load_default()


def get_ip_address() -> str:
    """
    Get the local IP address of the machine.
    """
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # doesn't even have to be reachable
        s.connect(('10.254.254.254', 1))
        ip = s.getsockname()[0]
    except OSError:
        ip = '127.0.0.1'
    finally:
        s.close()
    return ip


def ensure_image_mode(image: Union[Image.Image, BytesIO, bytes, bytearray], mode: str) -> Image.Image:
    """Return the image in the requested mode, converting only if needed."""
    if isinstance(image, (bytes, bytearray)):
        image = BytesIO(image)
    if isinstance(image, BytesIO):
        image.seek(0)
        image = Image.open(image)
    if image.mode == mode:
        return image
    return image.convert(mode)


def decode_image(content: Optional[bytes]) -> Optional[Image.Image]:
    """Decode image bytes to RGB, returning ``None`` for missing or unreadable data."""
    if not content:
        return None
    try:
        image = ensure_image_mode(content, 'RGB')
        image.load()
        return image
    except (OSError, ValueError) as exc:
        config.logger.debug('[image] undecodable image (%d bytes): %s', len(content), exc)
        return None


def cover_fit(image: Image.Image, size: Tuple[int, int]) -> Image.Image:
    """Scale and center-crop ``image`` so it fills ``size`` exactly."""
    return ImageOps.fit(image, size, method=Image.Resampling.LANCZOS, centering=(0.5, 0.5))


def poster_box(frame_width: int, frame_height: int, fill: float = POSTER_FILL) -> Box:
    """Return the centered 2:3 poster rectangle that fits within ``fill`` of the frame."""
    width = int(frame_width * fill)
    height = int(width * POSTER_ASPECT)
    if height > frame_height * fill:
        height = int(frame_height * fill)
        width = int(height / POSTER_ASPECT)
    left = (frame_width - width) // 2
    top = (frame_height - height) // 2
    return (left, top, left + width, top + height)


def encode_png(image: Image.Image) -> bytes:
    buffer = BytesIO()
    image.save(buffer, format='PNG')
    return buffer.getvalue()


def to_iso_datetime(value: Optional[datetime.datetime]) -> str:
    """Return an ISO-8601 representation for datetimes or POSIX timestamps."""
    if value is None:
        return ''
    if isinstance(value, (int, float)):
        if value <= 0:
            return ''
        value = datetime.datetime.fromtimestamp(value, datetime.timezone.utc)
    trimmed = value.replace(microsecond=0)
    return trimmed.isoformat()
