"""
Per-pixel color/brightness heuristics.

Each target class owns several independent color profiles. A pixel
matches the class when any profile fires; its confidence is the highest
confidence among the firing profiles, clamped to [0, MAX_CONFIDENCE].
Profiles are written against numpy arrays so the same definition serves
single-pixel queries and whole sampled grids.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

import numpy as np

MAX_CONFIDENCE = 0.95


class TargetClass(str, Enum):
    """Pixel classes the heuristics can score."""
    PROJECTILE = "projectile"
    IMPLEMENT = "implement"
    BODY = "body"


@dataclass
class PixelFeatures:
    """Channel values and derived color statistics for a batch of pixels."""
    r: np.ndarray
    g: np.ndarray
    b: np.ndarray
    brightness: np.ndarray
    saturation: np.ndarray
    contrast: np.ndarray
    yellowness: np.ndarray

    @classmethod
    def from_rgb(cls, pixels: np.ndarray) -> "PixelFeatures":
        """
        Build features from an array whose last axis is RGB.

        Args:
            pixels: Array of shape (..., 3), any numeric dtype in 0-255.
        """
        rgb = np.asarray(pixels, dtype=np.float32)
        r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]
        max_c = np.maximum(np.maximum(r, g), b)
        min_c = np.minimum(np.minimum(r, g), b)
        spread = max_c - min_c
        saturation = np.divide(spread, max_c, out=np.zeros_like(max_c), where=max_c > 0)

        return cls(
            r=r,
            g=g,
            b=b,
            brightness=(r + g + b) / 3.0,
            saturation=saturation,
            contrast=spread,
            yellowness=np.clip(((r + g) / 2.0 - b) / 255.0, 0.0, 1.0),
        )


@dataclass(frozen=True)
class ColorProfile:
    """
    One heuristic color profile.

    Attributes:
        name: Profile label (also used as the pixel "type" for body pixels).
        matches: Predicate over PixelFeatures returning a boolean array.
        confidence: Confidence over PixelFeatures, clamped by the caller.
        weight: Contribution of a firing profile to the aggregate score.
    """
    name: str
    matches: Callable[[PixelFeatures], np.ndarray]
    confidence: Callable[[PixelFeatures], np.ndarray]
    weight: float = 1.0


@dataclass(frozen=True)
class PixelMatch:
    """Classification of a single pixel."""
    is_match: bool
    intensity: float
    confidence: float
    profile: Optional[str] = None


@dataclass
class PixelClassification:
    """
    Vectorized classification of many pixels.

    Attributes:
        is_match: Boolean array, True where any profile fired.
        intensity: Normalized brightness (0-1).
        confidence: Best firing profile confidence (0 where nothing fired).
        profile_index: Index of the best firing profile, -1 where none fired.
        score: Sum of the weights of every firing profile.
    """
    is_match: np.ndarray
    intensity: np.ndarray
    confidence: np.ndarray
    profile_index: np.ndarray
    score: np.ndarray


def _bright(f: PixelFeatures) -> np.ndarray:
    return f.brightness / 255.0


# Ball colors: bright yellow-green felt under variable light and wear.
PROJECTILE_PROFILES: Tuple[ColorProfile, ...] = (
    ColorProfile(
        name="bright_yellow_green",
        matches=lambda f: (f.g > 150) & (f.r > 120) & (f.b < 110) & (np.abs(f.g - f.r) < 60),
        confidence=lambda f: 0.4 + 0.4 * f.yellowness + 0.2 * _bright(f),
    ),
    ColorProfile(
        name="fluorescent",
        matches=lambda f: (f.g > 180) & (f.r > 170) & (f.b < 120) & (f.g >= f.r),
        confidence=lambda f: 0.5 + 0.3 * f.yellowness + 0.15 * _bright(f),
    ),
    ColorProfile(
        name="worn",
        matches=lambda f: (
            (f.g > 130) & (f.r > 110) & (f.b < 150)
            & (f.g - f.b > 35) & (f.r - f.b > 25)
            & (np.abs(f.g - f.r) < 50) & (f.brightness > 110)
        ),
        confidence=lambda f: 0.3 + 0.35 * f.yellowness + 0.1 * _bright(f),
    ),
    ColorProfile(
        name="high_contrast",
        matches=lambda f: (f.brightness > 190) & (f.r > 170) & (f.b < f.g - 45),
        confidence=lambda f: 0.35 + 0.4 * (f.contrast / 255.0),
    ),
    ColorProfile(
        name="low_saturation_bright",
        matches=lambda f: (
            (f.brightness > 160) & (f.saturation > 0.12) & (f.saturation < 0.45)
            & (f.g - f.b > 20) & (f.r - f.b > 15) & (f.g >= f.r - 10)
        ),
        confidence=lambda f: 0.25 + 0.4 * f.saturation + 0.1 * _bright(f),
    ),
)

# Racket materials: dark frame edges, bright strings, mid-dark grip.
IMPLEMENT_PROFILES: Tuple[ColorProfile, ...] = (
    ColorProfile(
        name="frame",
        matches=lambda f: (f.brightness < 100) & (f.contrast > 20),
        confidence=lambda f: 0.5 + 0.4 * (f.contrast / 255.0),
        weight=1.5,
    ),
    ColorProfile(
        name="strings",
        matches=lambda f: (f.brightness > 160) & (
            ((f.r > 180) & (f.g > 180) & (f.b > 180))
            | ((f.g > 150) & (f.r > 120) & (f.b < 120))
        ),
        confidence=lambda f: 0.5 + 0.3 * _bright(f),
        weight=1.2,
    ),
    ColorProfile(
        name="handle",
        matches=lambda f: (f.brightness > 30) & (f.brightness < 120),
        confidence=lambda f: np.full_like(f.brightness, 0.4),
        weight=1.0,
    ),
)

BODY_PROFILES: Tuple[ColorProfile, ...] = (
    ColorProfile(
        name="skin",
        matches=lambda f: (
            (f.r > 95) & (f.g > 40) & (f.b > 20) & (f.contrast > 15)
            & (np.abs(f.r - f.g) > 15) & (f.r > f.g) & (f.r > f.b)
        ),
        confidence=lambda f: np.full_like(f.brightness, 0.9),
        weight=3.0,
    ),
    ColorProfile(
        name="clothing",
        matches=lambda f: ((f.r > 200) & (f.g > 200) & (f.b > 200)) | (f.brightness > 180),
        confidence=lambda f: np.full_like(f.brightness, 0.8),
        weight=2.0,
    ),
    ColorProfile(
        name="hair",
        matches=lambda f: (
            ((f.brightness >= 20) & (f.brightness < 80) & (f.saturation < 0.5))
            | ((f.r > 150) & (f.g > 120) & (f.b > 80) & (f.brightness <= 180))
        ),
        confidence=lambda f: np.full_like(f.brightness, 0.6),
        weight=1.0,
    ),
)

PROFILES: Dict[TargetClass, Tuple[ColorProfile, ...]] = {
    TargetClass.PROJECTILE: PROJECTILE_PROFILES,
    TargetClass.IMPLEMENT: IMPLEMENT_PROFILES,
    TargetClass.BODY: BODY_PROFILES,
}


def classify_pixels(pixels: np.ndarray, target: TargetClass) -> PixelClassification:
    """
    Classify every pixel in an array against a target class.

    Args:
        pixels: Array of shape (..., 3) in RGB order.
        target: Target class whose profiles are evaluated.

    Returns:
        PixelClassification with arrays shaped like pixels[..., 0].
    """
    features = PixelFeatures.from_rgb(pixels)
    shape = features.brightness.shape

    confidence = np.zeros(shape, dtype=np.float32)
    best = np.full(shape, -1, dtype=np.int16)
    score = np.zeros(shape, dtype=np.float32)

    for index, profile in enumerate(PROFILES[target]):
        fired = np.asarray(profile.matches(features), dtype=bool)
        if not fired.any():
            continue
        profile_conf = np.clip(profile.confidence(features), 0.0, MAX_CONFIDENCE)
        better = fired & ((profile_conf > confidence) | (best < 0))
        confidence = np.where(better, profile_conf, confidence)
        best = np.where(better, index, best)
        score += fired * profile.weight

    return PixelClassification(
        is_match=best >= 0,
        intensity=features.brightness / 255.0,
        confidence=confidence,
        profile_index=best,
        score=score,
    )


def classify_pixel(r: int, g: int, b: int, target: TargetClass) -> PixelMatch:
    """
    Classify a single RGB triple.

    Args:
        r, g, b: Channel values 0-255.
        target: Target class to score against.

    Returns:
        PixelMatch with the winning profile name, if any.
    """
    result = classify_pixels(np.array([[r, g, b]], dtype=np.float32), target)
    index = int(result.profile_index[0])

    return PixelMatch(
        is_match=bool(result.is_match[0]),
        intensity=float(result.intensity[0]),
        confidence=float(result.confidence[0]),
        profile=PROFILES[target][index].name if index >= 0 else None,
    )


def profile_names(target: TargetClass) -> Tuple[str, ...]:
    """Names of the profiles for a target class, in evaluation order."""
    return tuple(profile.name for profile in PROFILES[target])
