# nsfw_scan/preprocess.py
import io
from typing import Sequence

import torch
import torchvision.transforms as T
from PIL import Image, UnidentifiedImageError

from nsfw_scan.errors import InvalidInput

INPUT_SIZE = 224
CHANNEL_MEANS_BGR = (0.406, 0.456, 0.485)
TENSOR_SHAPE = (3, INPUT_SIZE, INPUT_SIZE)


def _rgb_to_bgr(x: torch.Tensor) -> torch.Tensor:
    return x[[2, 1, 0], :, :]


def build_transform(means: Sequence[float] = CHANNEL_MEANS_BGR) -> T.Compose:
    """
    Stretch to 224x224 (no aspect preservation, no crop), scale to [0,1],
    reorder RGB -> BGR, subtract per-channel means. No std division.
    """
    return T.Compose([
        T.Resize((INPUT_SIZE, INPUT_SIZE), interpolation=T.InterpolationMode.BILINEAR),
        T.ToTensor(),                      # [3,224,224] RGB, /255
        T.Lambda(_rgb_to_bgr),
        T.Normalize(mean=list(means), std=[1.0, 1.0, 1.0]),
    ])


_default_transform = build_transform()


def _flatten_alpha(img: Image.Image) -> Image.Image:
    # premultiplied alpha: transparent pixels end up black
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGBA", rgba.size, (0, 0, 0, 255))
        return Image.alpha_composite(background, rgba).convert("RGB")
    return img.convert("RGB")


def preprocess(img: Image.Image, means: Sequence[float] = CHANNEL_MEANS_BGR) -> torch.Tensor:
    if img is None or img.width == 0 or img.height == 0:
        raise InvalidInput("cannot preprocess an empty image")

    transform = _default_transform if tuple(means) == CHANNEL_MEANS_BGR else build_transform(means)
    x = transform(_flatten_alpha(img))
    return x.contiguous()  # [3,224,224] B,G,R planes


def image_from_bytes(b: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(b))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidInput(f"undecodable image: {e}") from e
    return img
