"""Display surfaces driven by the rotation engine and transition controller."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Set, Tuple

from PIL import Image, ImageDraw, ImageEnhance, ImageFilter

from .. import config
from ..items import Item
from ..utils import cover_fit, decode_image, encode_png, load_font, poster_box

logger = config.logger

ImageSource = Callable[[Optional[str]], Optional[bytes]]

STREAMING_BADGE = 'Currently Streaming'
BACKGROUND_BLUR = 24
BACKGROUND_BRIGHTNESS = 0.45


@dataclass(frozen=True)
class Tile:
    """One cell of the flip grid, in poster-relative pixel coordinates."""

    index: int
    row: int
    col: int
    left: int
    top: int
    right: int
    bottom: int

    @property
    def box(self) -> Tuple[int, int, int, int]:
        return (self.left, self.top, self.right, self.bottom)


def build_tile_grid(width: int, height: int, rows: int, cols: int) -> List[Tile]:
    """Split a ``width`` x ``height`` area into ``rows`` x ``cols`` tiles.

    Tiles are numbered in row-major order; the last row and column absorb the
    remainder pixels so the grid always covers the whole area.
    """
    rows = max(1, rows)
    cols = max(1, cols)
    tile_w = width // cols
    tile_h = height // rows
    tiles: List[Tile] = []
    for row in range(rows):
        top = row * tile_h
        bottom = height if row == rows - 1 else top + tile_h
        for col in range(cols):
            left = col * tile_w
            right = width if col == cols - 1 else left + tile_w
            tiles.append(Tile(len(tiles), row, col, left, top, right, bottom))
    return tiles


class WallSurface(ABC):
    """Where the engine puts posters. All methods are synchronous state changes."""

    @property
    @abstractmethod
    def poster_size(self) -> Tuple[int, int]:
        raise NotImplementedError

    @abstractmethod
    def show(self, item: Item, poster_url: str, background_url: str, streaming: bool) -> None:
        raise NotImplementedError

    @abstractmethod
    def update_info(self, item: Item) -> None:
        raise NotImplementedError

    @abstractmethod
    def begin_tiles(self, tiles: List[Tile], from_url: str, to_url: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def flip_tile(self, tile: Tile) -> None:
        raise NotImplementedError

    @abstractmethod
    def set_overlay(self, url: Optional[str], opacity: float) -> None:
        raise NotImplementedError

    @abstractmethod
    def set_background(self, url: str) -> None:
        raise NotImplementedError


class FrameSurface(WallSurface):
    """Keeps the logical wall state and composites it into a Pillow frame on demand."""

    def __init__(
        self,
        images: ImageSource,
        width: Optional[int] = None,
        height: Optional[int] = None
    ):
        self.images = images
        self.width = width or config.FRAME_WIDTH
        self.height = height or config.FRAME_HEIGHT
        self.item: Optional[Item] = None
        self.poster_url = ''
        self.background_url = ''
        self.streaming = False
        self.overlay_url: Optional[str] = None
        self.overlay_opacity = 0.0
        self.tiles: List[Tile] = []
        self.flipped: Set[int] = set()
        self.tile_urls: Tuple[str, str] = ('', '')
        self._fonts: Dict[int, object] = {}

    @property
    def poster_size(self) -> Tuple[int, int]:
        left, top, right, bottom = poster_box(self.width, self.height)
        return (right - left, bottom - top)

    def show(self, item: Item, poster_url: str, background_url: str, streaming: bool) -> None:
        self.item = item
        self.poster_url = poster_url
        self.background_url = background_url
        self.streaming = streaming
        self.tiles = []
        self.flipped = set()
        self.tile_urls = ('', '')

    def update_info(self, item: Item) -> None:
        self.item = item

    def begin_tiles(self, tiles: List[Tile], from_url: str, to_url: str) -> None:
        self.tiles = list(tiles)
        self.flipped = set()
        self.tile_urls = (from_url, to_url)

    def flip_tile(self, tile: Tile) -> None:
        self.flipped.add(tile.index)

    def set_overlay(self, url: Optional[str], opacity: float) -> None:
        if url is not None:
            self.overlay_url = url
        self.overlay_opacity = max(0.0, min(1.0, opacity))

    def set_background(self, url: str) -> None:
        self.background_url = url

    @property
    def transitioning(self) -> bool:
        return bool(self.tiles)

    def _font(self, size: int):
        if size not in self._fonts:
            self._fonts[size] = load_font(size)
        return self._fonts[size]

    def _load(self, url: Optional[str]) -> Optional[Image.Image]:
        return decode_image(self.images(url))

    def _backdrop(self, url: Optional[str]) -> Optional[Image.Image]:
        image = self._load(url)
        if image is None:
            return None
        image = cover_fit(image, (self.width, self.height))
        image = image.filter(ImageFilter.GaussianBlur(BACKGROUND_BLUR))
        return ImageEnhance.Brightness(image).enhance(BACKGROUND_BRIGHTNESS)

    def _render_background(self) -> Image.Image:
        frame = self._backdrop(self.background_url)
        if frame is None:
            frame = Image.new('RGB', (self.width, self.height), 'black')
        if self.overlay_url and self.overlay_opacity > 0:
            overlay = self._backdrop(self.overlay_url)
            if overlay is not None:
                frame = Image.blend(frame, overlay, self.overlay_opacity)
        return frame

    def _render_poster(self, frame: Image.Image) -> None:
        box = poster_box(self.width, self.height)
        size = (box[2] - box[0], box[3] - box[1])
        if self.tiles:
            from_url, to_url = self.tile_urls
            faces = {
                False: self._load(from_url),
                True: self._load(to_url)
            }
            fitted = {flipped: cover_fit(image, size) if image is not None else None for flipped, image in faces.items()}
            for tile in self.tiles:
                face = fitted[tile.index in self.flipped]
                if face is None:
                    continue
                frame.paste(face.crop(tile.box), (box[0] + tile.left, box[1] + tile.top))
            return
        poster = self._load(self.poster_url)
        if poster is not None:
            frame.paste(cover_fit(poster, size), box[:2])

    def _render_stream_info(self, frame: Image.Image) -> None:
        item = self.item
        if item is None:
            return
        draw = ImageDraw.Draw(frame, 'RGBA')
        box = poster_box(self.width, self.height)
        margin = max(12, self.width // 40)

        badge_font = self._font(max(14, self.width // 36))
        badge_box = draw.textbbox((0, 0), STREAMING_BADGE, font=badge_font)
        badge_w = badge_box[2] - badge_box[0] + margin * 2
        badge_h = badge_box[3] - badge_box[1] + margin
        badge_left = (self.width - badge_w) // 2
        badge_top = max(0, box[1] - badge_h - margin // 2)
        draw.rounded_rectangle(
            (badge_left, badge_top, badge_left + badge_w, badge_top + badge_h),
            radius=badge_h // 2,
            fill=(229, 160, 13, 230)
        )
        draw.text((badge_left + margin, badge_top + margin // 2), STREAMING_BADGE, fill='black', font=badge_font)

        caption_font = self._font(max(18, self.width // 22))
        details_font = self._font(max(14, self.width // 34))
        panel_h = self.height // 7
        panel_top = box[3] - panel_h
        draw.rectangle((box[0], panel_top, box[2], box[3]), fill=(0, 0, 0, 170))
        draw.text((box[0] + margin, panel_top + margin), item.caption, fill='white', font=caption_font)
        caption_box = draw.textbbox((0, 0), item.caption or ' ', font=caption_font)
        draw.text(
            (box[0] + margin, panel_top + margin + (caption_box[3] - caption_box[1]) + margin // 2),
            item.details,
            fill=(220, 220, 220),
            font=details_font
        )

        bar_h = max(4, self.height // 240)
        bar_top = box[3] - bar_h
        draw.rectangle((box[0], bar_top, box[2], box[3]), fill=(255, 255, 255, 60))
        filled = box[0] + int((box[2] - box[0]) * item.progress / 100)
        if filled > box[0]:
            draw.rectangle((box[0], bar_top, filled, box[3]), fill=(229, 160, 13, 255))

    def render(self) -> Image.Image:
        frame = self._render_background()
        self._render_poster(frame)
        if self.streaming:
            self._render_stream_info(frame)
        return frame

    def render_png(self) -> bytes:
        return encode_png(self.render())
