"""
Signature cropping for certificate signatures.

An uploaded signature scan is shown to the admin scaled down to fit the
editor ("display space"). The crop box lives in display space and is kept at
the certificate's signature slot ratio (512:224). Rendering maps the box back
to the source pixels ("natural space") and always resamples to a fixed
1536x672 raster so every course signature has the same resolution on the
certificate, whatever the scan size or editor zoom.

Background removal is a luminance threshold, not segmentation: it assumes dark
ink on light paper and simply fades bright pixels out. Coloured or dark
backgrounds are left mostly untouched.
"""
import io
import logging
import math
from typing import NamedTuple, Optional

import numpy as np
from PIL import Image, UnidentifiedImageError

try:
    import cairosvg  # optional, needed only for SVG signatures
except (ImportError, OSError):
    cairosvg = None

SIGNATURE_ASPECT_RATIO = 512 / 224
OUTPUT_SCALE = 3
OUTPUT_SIZE = (512 * OUTPUT_SCALE, 224 * OUTPUT_SCALE)  # 1536 x 672
MIN_CROP_WIDTH = 50
INITIAL_FILL = 0.8
MAX_UPLOAD_BYTES = 2 * 1024 * 1024
# Decoded size cap; a small compressed file can still expand to a huge raster
MAX_SOURCE_PIXELS = 40_000_000
DISPLAY_VIEWPORT = (600, 400)

EXTENSION_MIMETYPES = {
    'png': 'image/png',
    'jpg': 'image/jpeg',
    'jpeg': 'image/jpeg',
    'webp': 'image/webp',
    'svg': 'image/svg+xml',
}
ALLOWED_MIMETYPES = set(EXTENSION_MIMETYPES.values())
ALLOWED_EXTENSIONS = set(EXTENSION_MIMETYPES)

# Luminance thresholds for the background matte
TRANSPARENT_ABOVE = 230
FADE_ABOVE = 200

# Cropper states
IDLE = 'idle'
LOADED = 'loaded'
ADJUSTING = 'adjusting'
PREVIEWED = 'previewed'
COMMITTED = 'committed'
CANCELLED = 'cancelled'
TERMINAL_STATES = (COMMITTED, CANCELLED)

# Gesture modes
MOVE = 'move'
RESIZE = 'resize'


class InvalidSignatureUpload(ValueError):
    """Upload rejected before entering the crop flow (bad type, too large, undecodable)."""


class CropStateError(ValueError):
    """Operation not allowed in the cropper's current state."""


class CropBox(NamedTuple):
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def to_dict(self) -> dict:
        return {'x': self.x, 'y': self.y, 'width': self.width, 'height': self.height}


class ImageDimensions(NamedTuple):
    display_width: float
    display_height: float
    natural_width: int
    natural_height: int

    @property
    def scale_x(self) -> float:
        return self.natural_width / self.display_width

    @property
    def scale_y(self) -> float:
        return self.natural_height / self.display_height

    def to_dict(self) -> dict:
        return {
            'display_width': self.display_width,
            'display_height': self.display_height,
            'natural_width': self.natural_width,
            'natural_height': self.natural_height,
        }


def upload_mimetype(filename: Optional[str], mimetype: Optional[str]) -> Optional[str]:
    """Declared mimetype, or the one implied by the file extension when none was sent."""
    if mimetype:
        return mimetype.lower()
    if filename and '.' in filename:
        return EXTENSION_MIMETYPES.get(filename.rsplit('.', 1)[1].lower())
    return None


def validate_upload(filename: Optional[str], mimetype: Optional[str], size: int) -> None:
    """Raise InvalidSignatureUpload for anything that is not a raster/SVG image up to 2MB."""
    if upload_mimetype(filename, mimetype) not in ALLOWED_MIMETYPES:
        raise InvalidSignatureUpload('Invalid format. Use JPG, PNG, WebP or SVG.')
    if size > MAX_UPLOAD_BYTES:
        raise InvalidSignatureUpload('Image too large. Max 2MB.')
    if size == 0:
        raise InvalidSignatureUpload('The uploaded file is empty.')


def decode_image(data: bytes, mimetype: Optional[str] = None) -> Image.Image:
    """Decode upload bytes into an RGBA Pillow image."""
    if (mimetype or '').lower() == 'image/svg+xml':
        if cairosvg is None:
            raise InvalidSignatureUpload('SVG signatures require cairosvg to be installed.')
        try:
            data = cairosvg.svg2png(bytestring=data)
        except Exception as e:
            raise InvalidSignatureUpload(f'Could not read SVG signature: {e}')
    try:
        img = Image.open(io.BytesIO(data))
        width, height = img.size
        if width * height > MAX_SOURCE_PIXELS:
            raise InvalidSignatureUpload('Image dimensions too large.')
        img.load()
    except Image.DecompressionBombError:
        raise InvalidSignatureUpload('Image dimensions too large.')
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidSignatureUpload(f'Error reading file: {e}')
    return img.convert('RGBA')


def client_display_size(display_size) -> Optional[tuple]:
    """Editor size sent by the client, or None when it sent none.

    Both values must be finite and positive; anything else is rejected.
    """
    if not display_size or display_size[0] is None or display_size[1] is None:
        return None
    try:
        width, height = float(display_size[0]), float(display_size[1])
    except (TypeError, ValueError):
        raise InvalidSignatureUpload('Display size must be numbers.')
    if not (math.isfinite(width) and math.isfinite(height)) or width <= 0 or height <= 0:
        raise InvalidSignatureUpload('Display size must be positive numbers.')
    return width, height


def fit_display(natural_width: int, natural_height: int, viewport=DISPLAY_VIEWPORT):
    """Size the image is shown at in the editor: scaled down to the viewport, never up."""
    max_w, max_h = viewport
    factor = min(max_w / natural_width, max_h / natural_height, 1.0)
    return natural_width * factor, natural_height * factor


def initial_crop_box(dims: ImageDimensions) -> CropBox:
    """Centered box at 80% of the limiting display dimension."""
    width = dims.display_width * INITIAL_FILL
    height = width / SIGNATURE_ASPECT_RATIO
    if height > dims.display_height * INITIAL_FILL:
        height = dims.display_height * INITIAL_FILL
        width = height * SIGNATURE_ASPECT_RATIO
    return CropBox(
        x=(dims.display_width - width) / 2,
        y=(dims.display_height - height) / 2,
        width=width,
        height=height,
    )


def move_box(initial: CropBox, dx: float, dy: float, dims: ImageDimensions) -> CropBox:
    """Translate the box, clamped to the image. Size is unchanged."""
    x = max(0.0, min(initial.x + dx, dims.display_width - initial.width))
    y = max(0.0, min(initial.y + dy, dims.display_height - initial.height))
    return CropBox(x, y, initial.width, initial.height)


def resize_box(initial: CropBox, dx: float, dims: ImageDimensions) -> CropBox:
    """Resize from the bottom-right handle with the top-left corner fixed.

    Width follows the horizontal drag; height is always derived from it.
    Bounds win over the minimum width near the image edges.
    """
    width = max(float(MIN_CROP_WIDTH), initial.width + dx)
    height = width / SIGNATURE_ASPECT_RATIO

    if initial.x + width > dims.display_width:
        width = dims.display_width - initial.x
        height = width / SIGNATURE_ASPECT_RATIO

    if initial.y + height > dims.display_height:
        height = dims.display_height - initial.y
        width = height * SIGNATURE_ASPECT_RATIO

    return CropBox(initial.x, initial.y, width, height)


def maximize_box(dims: ImageDimensions) -> CropBox:
    """Largest ratio-preserving box, centered."""
    width = dims.display_width
    height = width / SIGNATURE_ASPECT_RATIO
    if height > dims.display_height:
        height = dims.display_height
        width = height * SIGNATURE_ASPECT_RATIO
    return CropBox(
        x=(dims.display_width - width) / 2,
        y=(dims.display_height - height) / 2,
        width=width,
        height=height,
    )


def render_crop(image: Optional[Image.Image], box: CropBox, dims: ImageDimensions) -> Optional[Image.Image]:
    """Resample the selected source region into the canonical 1536x672 raster.

    Returns None when there is no usable source image.
    """
    if image is None:
        logging.warning('[SIGNATURE] No source image available for rendering')
        return None
    region = (
        box.x * dims.scale_x,
        box.y * dims.scale_y,
        box.right * dims.scale_x,
        box.bottom * dims.scale_y,
    )
    try:
        return image.convert('RGBA').resize(OUTPUT_SIZE, Image.Resampling.LANCZOS, box=region)
    except (OSError, ValueError):
        logging.exception('[SIGNATURE] Failed to rasterize crop region %s', region)
        return None


def remove_background(raster: Image.Image) -> Image.Image:
    """Fade out light pixels: luminance > 230 becomes transparent, (200, 230] fades linearly.

    Alpha is only ever lowered, so already transparent pixels stay transparent.
    """
    rgba = np.asarray(raster.convert('RGBA'), dtype=np.float64)
    r, g, b, alpha = rgba[..., 0], rgba[..., 1], rgba[..., 2], rgba[..., 3].copy()
    luminance = 0.2126 * r + 0.7152 * g + 0.0722 * b

    alpha[luminance > TRANSPARENT_ABOVE] = 0
    faded = 255 * (1 - (luminance - FADE_ABOVE) / (TRANSPARENT_ABOVE - FADE_ABOVE))
    fade = (luminance > FADE_ABOVE) & (luminance <= TRANSPARENT_ABOVE) & (faded < alpha)
    alpha[fade] = faded[fade]

    out = rgba.astype(np.uint8)
    out[..., 3] = np.clip(np.rint(alpha), 0, 255).astype(np.uint8)
    return Image.fromarray(out)


def encode_png(raster: Image.Image) -> bytes:
    buf = io.BytesIO()
    raster.save(buf, format='PNG')
    return buf.getvalue()


class SignatureCropper:
    """One interactive crop session over a single uploaded signature.

    Idle -> Loaded -> Adjusting (repeatable) -> Previewed -> Adjusting | Committed | Cancelled
    """

    def __init__(self):
        self.state = IDLE
        self.original = None
        self.mimetype = None
        self.dims = None
        self.box = None
        self.gesture = None
        self.preview = None
        self.remove_background = True
        self._image = None

    # -- persistence -----------------------------------------------------

    def snapshot(self) -> dict:
        return {
            'state': self.state,
            'mimetype': self.mimetype,
            'dims': self.dims.to_dict() if self.dims else None,
            'box': self.box.to_dict() if self.box else None,
            'gesture': self.gesture,
            'remove_background': self.remove_background,
        }

    @classmethod
    def restore(cls, snapshot: dict, original: Optional[bytes], preview: Optional[bytes] = None):
        cropper = cls()
        cropper.state = snapshot.get('state', IDLE)
        cropper.mimetype = snapshot.get('mimetype')
        cropper.original = original
        cropper.preview = preview
        if snapshot.get('dims'):
            cropper.dims = ImageDimensions(**snapshot['dims'])
        if snapshot.get('box'):
            cropper.box = CropBox(**snapshot['box'])
        cropper.gesture = snapshot.get('gesture')
        cropper.remove_background = bool(snapshot.get('remove_background', True))
        return cropper

    @property
    def image(self) -> Optional[Image.Image]:
        """Decoded original upload; always the editing source, never a previous crop."""
        if self._image is None and self.original:
            try:
                self._image = decode_image(self.original, self.mimetype)
            except InvalidSignatureUpload:
                logging.exception('[SIGNATURE] Stored original could not be decoded')
                return None
        return self._image

    # -- transitions -----------------------------------------------------

    def _require(self, *states):
        if self.state not in states:
            raise CropStateError(f'Operation not allowed while cropper is {self.state}')

    def load(self, data: bytes, filename=None, mimetype=None, display_size=None) -> CropBox:
        self._require(IDLE)
        validate_upload(filename, mimetype, len(data or b''))
        mimetype = upload_mimetype(filename, mimetype)
        client_size = client_display_size(display_size)
        img = decode_image(data, mimetype)
        natural_w, natural_h = img.size
        display_w, display_h = client_size or fit_display(natural_w, natural_h)
        self.original = data
        self.mimetype = mimetype
        self._image = img
        self.dims = ImageDimensions(display_w, display_h, natural_w, natural_h)
        self.box = initial_crop_box(self.dims)
        self.state = LOADED
        return self.box

    def begin_gesture(self, mode: str, x: float, y: float) -> None:
        self._require(LOADED, ADJUSTING)
        if mode not in (MOVE, RESIZE):
            raise CropStateError(f'Unknown gesture mode: {mode}')
        self.gesture = {'mode': mode, 'anchor': [x, y], 'initial': self.box.to_dict()}
        self.state = ADJUSTING

    def drag_to(self, x: float, y: float) -> CropBox:
        if not self.gesture:
            raise CropStateError('No gesture in progress')
        self._require(ADJUSTING)
        dx = x - self.gesture['anchor'][0]
        dy = y - self.gesture['anchor'][1]
        initial = CropBox(**self.gesture['initial'])
        if self.gesture['mode'] == MOVE:
            self.box = move_box(initial, dx, dy, self.dims)
        else:
            self.box = resize_box(initial, dx, self.dims)
        return self.box

    def end_gesture(self) -> None:
        self.gesture = None

    def move(self, dx: float, dy: float) -> CropBox:
        self._require(LOADED, ADJUSTING)
        self.box = move_box(self.box, dx, dy, self.dims)
        self.state = ADJUSTING
        return self.box

    def resize(self, dx: float, dy: float = 0.0) -> CropBox:
        self._require(LOADED, ADJUSTING)
        self.box = resize_box(self.box, dx, self.dims)
        self.state = ADJUSTING
        return self.box

    def maximize(self) -> CropBox:
        self._require(LOADED, ADJUSTING)
        self.end_gesture()
        self.box = maximize_box(self.dims)
        self.state = ADJUSTING
        return self.box

    def render(self) -> Optional[bytes]:
        raster = render_crop(self.image, self.box, self.dims)
        if raster is None:
            return None
        if self.remove_background:
            raster = remove_background(raster)
        return encode_png(raster)

    def apply(self, remove_background=None) -> Optional[bytes]:
        """Render the preview. Stays put (returns None) when the raster is unavailable."""
        self._require(LOADED, ADJUSTING, PREVIEWED)
        self.end_gesture()
        if remove_background is not None:
            self.remove_background = bool(remove_background)
        png = self.render()
        if png is None:
            return None
        self.preview = png
        self.state = PREVIEWED
        return png

    def reset(self) -> CropBox:
        """Edit again: drop the preview and go back to the original upload."""
        self._require(PREVIEWED)
        self.preview = None
        self.state = ADJUSTING
        return self.box

    def commit(self) -> Optional[bytes]:
        self._require(LOADED, ADJUSTING, PREVIEWED)
        self.end_gesture()
        png = self.preview if self.state == PREVIEWED else self.render()
        if png is None:
            return None
        self.preview = png
        self.state = COMMITTED
        return png

    def cancel(self) -> None:
        if self.state in TERMINAL_STATES:
            raise CropStateError(f'Cropper already {self.state}')
        self.end_gesture()
        self.preview = None
        self.state = CANCELLED
