#!/usr/bin/env python3
"""
Reaction color analysis pipeline.

Takes the decoded RGBA pixels of a photographed presumptive color test and
produces the dominant reaction colors, ranked candidate substances, a
lighting/quality assessment and bilingual recommendations.

Stages: Sampling → Clustering → Matching → Scene Assessment → Assembly → Render
"""

import logging
import math
import time
from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple, Optional, Protocol, Union

import numpy as np
from PIL import Image
from scipy.spatial.distance import cdist

from color_space import (
    HSL, Lab, RGB,
    get_color_name, rgb_to_hex, rgb_to_hsl,
    rgb_to_lab_tuple, round_half_up,
)
from reference_table import ChemicalSignature, ReferenceTable

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Image size limits (security: prevent decompression bombs)
MAX_IMAGE_PIXELS = 50_000_000  # 50 megapixels
MAX_IMAGE_DIMENSION = 10_000  # 10k pixels per side
MAX_ANALYSIS_DIMENSION = 1200  # Images are downscaled to this before analysis

# Adaptive sampling: (pixel count exceeded, stride). First match wins.
SAMPLE_RATES = (
    (500_000, 50),
    (200_000, 25),
    (100_000, 15),
    (50_000, 8),
)
DEFAULT_SAMPLE_RATE = 4

# Matcher heuristic scores (0-1)
NAME_MATCH_SCORE = 0.9
PURPLE_MATCH_SCORE = 0.8
BLUE_MATCH_SCORE = 0.7
ORANGE_MATCH_SCORE = 0.7
BASELINE_MATCH_SCORE = 0.3
PURPLE_HEX_PATTERNS = ('80', '4B')  # Compared against the lowercase hex as-is

# Quality tiers: (label, resolution exceeded, variance exceeded). First match wins.
QUALITY_TIERS = (
    ('excellent', 1_000_000, 1000),
    ('good', 500_000, 500),
    ('fair', 100_000, 200),
)

# (English, Arabic)
RECOMMENDATIONS = {
    'dim_lighting': (
        'Consider retaking the photo with better lighting for more accurate results',
        'فكر في إعادة التقاط الصورة مع إضاءة أفضل للحصول على نتائج أكثر دقة',
    ),
    'poor_quality': (
        'Use a higher resolution camera for better color detection',
        'استخدم كاميرا بدقة أعلى لكشف أفضل للألوان',
    ),
    'limited_variation': (
        'The image may have limited color variation. Try a different angle or lighting',
        'قد تحتوي الصورة على تنوع محدود في الألوان. جرب زاوية أو إضاءة مختلفة',
    ),
}

BASIC_RECOMMENDATIONS = (
    ('Image quality is acceptable for analysis', 'جودة الصورة مقبولة للتحليل'),
    ('Results can be improved with higher resolution', 'يمكن تحسين النتائج بصورة عالية الدقة'),
)


@dataclass(frozen=True)
class AnalyzerConfig:
    """Pipeline tunables. Defaults come from the module constants above."""
    cluster_count: int = 8
    max_iterations: int = 20
    convergence_threshold: float = 5.0

    min_alpha: int = 128
    min_channel_sum: int = 30
    max_channel_sum: int = 750
    sample_rates: tuple = SAMPLE_RATES
    default_sample_rate: int = DEFAULT_SAMPLE_RATE

    min_dominance: float = 1.0
    max_colors: int = 6
    base_color_confidence: float = 60.0
    dominance_weight: float = 2.0
    max_color_confidence: float = 95.0

    match_threshold: float = BASELINE_MATCH_SCORE
    max_matches: int = 3

    bright_above: float = 200
    dim_below: float = 80
    normal_range: tuple = (120, 180)  # Exclusive bounds
    quality_tiers: tuple = QUALITY_TIERS
    min_colors_for_variation: int = 3

    def __post_init__(self):
        if self.cluster_count < 1:
            raise ValueError(f"cluster_count must be positive, got {self.cluster_count}")
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be positive, got {self.max_iterations}")
        if self.default_sample_rate < 1 or any(rate < 1 for _, rate in self.sample_rates):
            raise ValueError("Sample rates must be positive")


DEFAULT_CONFIG = AnalyzerConfig()


class RandomProvider(Protocol):
    """Source of centroid seeds. ``numpy.random.Generator`` satisfies it."""

    def integers(self, low, high=None, size=None): ...


# =============================================================================
# Result Types
# =============================================================================

class Position(NamedTuple):
    x: int
    y: int


@dataclass(frozen=True)
class ChemicalMatch:
    """
    A reference signature scored against one color.

    ``confidence`` is on a 0-1 scale (ranking math), unlike
    ``ColorData.confidence`` which is 0-100 (display badges).
    """
    substance: str
    substance_localized: str
    test_type: str
    color_range: str
    confidence: float  # 0-1
    notes: str
    notes_localized: str

    @classmethod
    def from_signature(cls, signature: ChemicalSignature, confidence: float) -> 'ChemicalMatch':
        return cls(
            substance=signature.substance,
            substance_localized=signature.substance_localized,
            test_type=signature.test_type,
            color_range=signature.color_range,
            confidence=min(1.0, max(0.0, confidence)),
            notes=signature.notes,
            notes_localized=signature.notes_localized,
        )

    def to_dict(self) -> dict:
        return {
            'substance': self.substance,
            'substance_localized': self.substance_localized,
            'testType': self.test_type,
            'colorRange': self.color_range,
            'confidence': self.confidence,
            'notes': self.notes,
            'notes_localized': self.notes_localized,
        }


@dataclass(frozen=True)
class ColorData:
    """
    A dominant color found in the image.

    ``confidence`` and ``dominance`` are both 0-100. Chemical match
    confidences are 0-1; do not compare them directly.
    """
    hex: str
    rgb: RGB
    hsl: HSL
    lab: Lab
    position: Position  # Mean (x, y) of the color's sampled pixels
    confidence: float  # 0-100
    dominance: float  # 0-100, share of sampled pixels
    color_name: str
    chemical_matches: tuple = ()  # ChemicalMatch, best first

    def to_dict(self) -> dict:
        return {
            'hex': self.hex,
            'rgb': self.rgb._asdict(),
            'hsl': self.hsl._asdict(),
            'lab': self.lab._asdict(),
            'position': self.position._asdict(),
            'confidence': self.confidence,
            'dominance': self.dominance,
            'colorName': self.color_name,
            'chemicalMatches': [m.to_dict() for m in self.chemical_matches],
        }


@dataclass(frozen=True)
class AnalysisResult:
    """Output of a single analysis. ``dominant_color`` is None when no colors survive."""
    colors: tuple  # ColorData, dominance descending
    dominant_color: Optional[ColorData]
    color_distribution: dict  # color name -> dominance
    lighting_condition: str  # bright | normal | dim | mixed
    image_quality: str  # excellent | good | fair | poor
    recommendations: tuple
    recommendations_localized: tuple  # Arabic
    processing_time: float  # milliseconds

    def recommendations_for(self, language: str = 'en') -> tuple:
        return self.recommendations_localized if language == 'ar' else self.recommendations

    def to_dict(self) -> dict:
        return {
            'colors': [c.to_dict() for c in self.colors],
            'dominantColor': self.dominant_color.to_dict() if self.dominant_color else None,
            'colorDistribution': dict(self.color_distribution),
            'lightingCondition': self.lighting_condition,
            'imageQuality': self.image_quality,
            'recommendations': list(self.recommendations),
            'recommendations_localized': list(self.recommendations_localized),
            'processingTime': self.processing_time,
        }


# =============================================================================
# Stage 1: Pixel Sampling
# =============================================================================

@dataclass
class PixelSamples:
    """Accepted pixels as parallel arrays."""
    rgb: np.ndarray  # (n, 3) int
    xy: np.ndarray  # (n, 2) int, pixel coordinates

    def __len__(self) -> int:
        return len(self.rgb)

    @classmethod
    def empty(cls) -> 'PixelSamples':
        return cls(rgb=np.empty((0, 3), dtype=np.int32), xy=np.empty((0, 2), dtype=np.int64))


def validate_buffer(buffer, width: int, height: int) -> np.ndarray:
    """
    Check that ``buffer`` holds exactly ``width * height`` RGBA pixels.

    Returns:
        uint8 array of shape (width * height, 4)

    Raises:
        ValueError: On missing buffer, bad dimensions or length mismatch
    """
    if buffer is None:
        raise ValueError("Pixel buffer is required")

    for name, value in (('width', width), ('height', height)):
        if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
            raise ValueError(f"Image {name} must be an integer, got {value!r}")
        if value <= 0:
            raise ValueError(f"Image {name} must be positive, got {value}")

    if isinstance(buffer, (bytes, bytearray, memoryview)):
        data = np.frombuffer(buffer, dtype=np.uint8)
    else:
        data = np.asarray(buffer).reshape(-1)
        if data.dtype != np.uint8:
            if not np.issubdtype(data.dtype, np.integer):
                raise ValueError(f"Pixel buffer must hold integers, got dtype {data.dtype}")
            if data.size and (data.min() < 0 or data.max() > 255):
                raise ValueError("Pixel values must be in 0-255")
            data = data.astype(np.uint8)

    expected = int(width) * int(height) * 4
    if data.size != expected:
        raise ValueError(
            f"Pixel buffer has {data.size:,} bytes, expected {expected:,} "
            f"for a {width}x{height} RGBA image"
        )

    return data.reshape(-1, 4)


def sample_rate(total_pixels: int, config: AnalyzerConfig = DEFAULT_CONFIG) -> int:
    """Pixel stride for an image of ``total_pixels`` pixels."""
    for threshold, rate in config.sample_rates:
        if total_pixels > threshold:
            return rate
    return config.default_sample_rate


def sample_pixels(buffer, width: int, height: int,
                  config: AnalyzerConfig = DEFAULT_CONFIG) -> PixelSamples:
    """
    Stage 1: Walk the buffer with an adaptive stride and keep usable pixels.

    Rejects mostly transparent pixels, near-black shadow/noise and near-white
    glare/background.
    """
    pixels = validate_buffer(buffer, width, height)
    total_pixels = width * height
    stride = sample_rate(total_pixels, config)

    indices = np.arange(0, total_pixels, stride)
    sampled = pixels[indices].astype(np.int32)
    rgb = sampled[:, :3]
    channel_sum = rgb.sum(axis=1)

    keep = (
        (sampled[:, 3] >= config.min_alpha) &
        (channel_sum >= config.min_channel_sum) &
        (channel_sum <= config.max_channel_sum)
    )
    indices = indices[keep]
    xy = np.column_stack([indices % width, indices // width])

    logger.debug(f"Sampled {keep.sum()} of {len(sampled)} pixels (stride {stride})")

    return PixelSamples(rgb=rgb[keep], xy=xy)


# =============================================================================
# Stage 2: Clustering
# =============================================================================

@dataclass
class Cluster:
    """A surviving k-means cluster."""
    rgb: RGB  # Centroid
    size: int  # Member pixel count
    dominance: float  # 0-100
    position: Position
    confidence: float  # 0-100


def cluster_colors(samples: PixelSamples, k: Optional[int] = None,
                   rng: Optional[RandomProvider] = None,
                   config: AnalyzerConfig = DEFAULT_CONFIG) -> list:
    """
    Stage 2: k-means on raw RGB with Euclidean distance.

    Centroids are seeded by sampling input pixels with replacement and
    refined to integer means until total displacement drops below the
    convergence threshold or the iteration cap is reached.

    Returns:
        List of Cluster, dominance descending, at most ``config.max_colors``.
    """
    k = config.cluster_count if k is None else k
    if k < 1:
        raise ValueError(f"Cluster count must be positive, got {k}")

    n = len(samples)
    if n == 0:
        return []

    rng = rng if rng is not None else np.random.default_rng()
    pixels = samples.rgb.astype(np.float64)
    centroids = pixels[np.asarray(rng.integers(0, n, size=k))].copy()

    iterations = 0
    while iterations < config.max_iterations:
        # argmin takes the first minimum: ties go to the lowest centroid index
        labels = cdist(pixels, centroids).argmin(axis=1)

        updated = centroids.copy()
        for i in range(k):
            members = pixels[labels == i]
            if len(members):
                updated[i] = np.floor(members.mean(axis=0) + 0.5)

        movement = float(np.linalg.norm(updated - centroids, axis=1).sum())
        centroids = updated
        iterations += 1
        if movement < config.convergence_threshold:
            break

    logger.debug(f"k-means finished after {iterations} iteration(s)")

    clusters = []
    counts = np.bincount(labels, minlength=k)
    for i in range(k):
        size = int(counts[i])
        if size == 0:
            continue

        dominance = size / n * 100
        if dominance < config.min_dominance:
            continue

        mean_x, mean_y = samples.xy[labels == i].mean(axis=0)
        confidence = min(
            config.max_color_confidence,
            config.base_color_confidence + dominance * config.dominance_weight,
        )
        clusters.append(Cluster(
            rgb=RGB(*(int(c) for c in centroids[i])),
            size=size,
            dominance=dominance,
            position=Position(round_half_up(mean_x), round_half_up(mean_y)),
            confidence=max(0.0, confidence),
        ))

    clusters.sort(key=lambda c: -c.dominance)
    return clusters[:config.max_colors]


# =============================================================================
# Stage 3: Chemical Matching
# =============================================================================

def match_score(hex_value: str, rgb: RGB, signature: ChemicalSignature,
                color_name: Optional[str] = None) -> float:
    """
    Heuristic 0-1 score of a color against one signature's color range.

    Coarse pattern matching, not colorimetry. Checks run in a fixed order
    and the first hit wins.
    """
    color_range = signature.color_range.lower()
    name = (color_name or get_color_name(hex_value)).lower()

    if name in color_range:
        return NAME_MATCH_SCORE
    if 'purple' in color_range and any(p in hex_value for p in PURPLE_HEX_PATTERNS):
        return PURPLE_MATCH_SCORE
    if 'blue' in color_range and rgb.b > rgb.r and rgb.b > rgb.g:
        return BLUE_MATCH_SCORE
    if 'orange' in color_range and rgb.r > rgb.g > rgb.b:
        return ORANGE_MATCH_SCORE
    return BASELINE_MATCH_SCORE


def find_chemical_matches(hex_value: str, rgb: RGB, table: ReferenceTable,
                          config: AnalyzerConfig = DEFAULT_CONFIG,
                          color_name: Optional[str] = None) -> list:
    """
    Rank reference signatures for one color.

    The relevance filter applies to the heuristic score; the reported
    confidence is heuristic score times the signature's base confidence.
    """
    color_name = color_name or get_color_name(hex_value)
    matches = []
    for signature in table:
        score = match_score(hex_value, rgb, signature, color_name)
        if score > config.match_threshold:
            matches.append(ChemicalMatch.from_signature(signature, score * signature.confidence))

    matches.sort(key=lambda m: -m.confidence)
    return matches[:config.max_matches]


# =============================================================================
# Stage 4: Scene Assessment
# =============================================================================

def average_brightness(samples: PixelSamples) -> Optional[float]:
    if len(samples) == 0:
        return None
    return float(samples.rgb.sum(axis=1).mean() / 3)


def color_variance(samples: PixelSamples) -> float:
    """Population variance of R, G and B jointly (per-channel variances summed)."""
    if len(samples) == 0:
        return 0.0
    rgb = samples.rgb.astype(np.float64)
    return float(((rgb - rgb.mean(axis=0)) ** 2).sum(axis=1).mean())


def assess_lighting(samples: PixelSamples, config: AnalyzerConfig = DEFAULT_CONFIG) -> str:
    """
    Classify lighting from mean brightness.

    The bands are not contiguous: brightness in [80, 120] or [180, 200]
    falls through to 'mixed'.
    """
    brightness = average_brightness(samples)
    if brightness is None:
        return 'mixed'
    if brightness > config.bright_above:
        return 'bright'
    if brightness < config.dim_below:
        return 'dim'
    low, high = config.normal_range
    if low < brightness < high:
        return 'normal'
    return 'mixed'


def assess_quality(samples: PixelSamples, width: int, height: int,
                   config: AnalyzerConfig = DEFAULT_CONFIG) -> str:
    resolution = width * height
    variance = color_variance(samples)
    for label, min_resolution, min_variance in config.quality_tiers:
        if resolution > min_resolution and variance > min_variance:
            return label
    return 'poor'


def generate_recommendations(colors: list, lighting: str, quality: str,
                             config: AnalyzerConfig = DEFAULT_CONFIG) -> tuple:
    """Return (english, arabic) advisory lists. Rules are independent."""
    keys = []
    if lighting == 'dim':
        keys.append('dim_lighting')
    if quality == 'poor':
        keys.append('poor_quality')
    if len(colors) < config.min_colors_for_variation:
        keys.append('limited_variation')

    english = [RECOMMENDATIONS[k][0] for k in keys]
    arabic = [RECOMMENDATIONS[k][1] for k in keys]
    return english, arabic


# =============================================================================
# Stage 5: Assembly
# =============================================================================

def color_distribution(colors: list) -> dict:
    """
    Map color name to dominance.

    Colors sharing a name overwrite each other, so with colors sorted by
    dominance the least dominant one of a name is kept.
    """
    distribution = {}
    for color in colors:
        distribution[color.color_name] = color.dominance
    return distribution


def find_closest_color(colors, rgb) -> Optional[ColorData]:
    """
    Detected color nearest to a picked pixel.

    Distance is the absolute difference of the packed ``0xRRGGBB`` values,
    so the red channel dominates. Ties keep the earlier color.
    """
    if not colors:
        return None
    target = int(rgb_to_hex(*rgb)[1:], 16)
    return min(colors, key=lambda c: abs(int(c.hex[1:], 16) - target))


class ColorAnalyzer:
    """
    Runs the full pipeline against an injected reference table.

    Args:
        reference_table: Signatures to match against (default: built-in table)
        config: Pipeline tunables
        rng: Seed source for k-means. Pass ``numpy.random.default_rng(seed)``
            for reproducible output; a fresh generator is used per call otherwise.
    """

    def __init__(self, reference_table: Optional[ReferenceTable] = None,
                 config: AnalyzerConfig = DEFAULT_CONFIG,
                 rng: Optional[RandomProvider] = None):
        self.reference_table = reference_table if reference_table is not None else ReferenceTable()
        self.config = config
        self.rng = rng

    def describe_cluster(self, cluster: Cluster) -> ColorData:
        r, g, b = cluster.rgb
        hex_value = rgb_to_hex(r, g, b)
        name = get_color_name(hex_value)
        return ColorData(
            hex=hex_value,
            rgb=cluster.rgb,
            hsl=rgb_to_hsl(r, g, b),
            lab=rgb_to_lab_tuple(r, g, b),
            position=cluster.position,
            confidence=cluster.confidence,
            dominance=cluster.dominance,
            color_name=name,
            chemical_matches=tuple(find_chemical_matches(
                hex_value, cluster.rgb, self.reference_table, self.config, name
            )),
        )

    def analyze_image(self, buffer, width: int, height: int) -> AnalysisResult:
        """
        Analyze an RGBA pixel buffer of ``width * height * 4`` bytes.

        Raises:
            ValueError: If the buffer does not match the dimensions
        """
        start = time.perf_counter()

        samples = sample_pixels(buffer, width, height, self.config)
        clusters = cluster_colors(samples, rng=self.rng, config=self.config)
        colors = [self.describe_cluster(c) for c in clusters]

        lighting = assess_lighting(samples, self.config)
        quality = assess_quality(samples, width, height, self.config)
        english, arabic = generate_recommendations(colors, lighting, quality, self.config)

        elapsed = (time.perf_counter() - start) * 1000
        logger.debug(
            f"Analyzed {width}x{height}: {len(colors)} colors, "
            f"lighting={lighting}, quality={quality} ({elapsed:.1f} ms)"
        )

        return AnalysisResult(
            colors=tuple(colors),
            dominant_color=colors[0] if colors else None,
            color_distribution=color_distribution(colors),
            lighting_condition=lighting,
            image_quality=quality,
            recommendations=tuple(english),
            recommendations_localized=tuple(arabic),
            processing_time=elapsed,
        )


def analyze_image(buffer, width: int, height: int, **kwargs) -> AnalysisResult:
    """Analyze a pixel buffer with a one-off ``ColorAnalyzer(**kwargs)``."""
    return ColorAnalyzer(**kwargs).analyze_image(buffer, width, height)


def analyze_image_basic(buffer, width: int, height: int) -> AnalysisResult:
    """
    Fallback analysis: exact-color histogram on a sparse grid.

    No clustering and no chemical matching. Dominance is relative to the
    eight most frequent colors only.
    """
    start = time.perf_counter()
    pixels = validate_buffer(buffer, width, height).reshape(height, width, 4)

    step = max(1, int(math.sqrt(width * height) / 100))
    grid = pixels[::step, ::step]
    ys, xs = np.mgrid[0:height:step, 0:width:step]

    opaque = grid[..., 3] > 128
    rgb = grid[..., :3][opaque].astype(np.int64)
    xs, ys = xs[opaque], ys[opaque]

    colors = []
    if len(rgb):
        packed = (rgb[:, 0] << 16) | (rgb[:, 1] << 8) | rgb[:, 2]
        unique, first_seen, inverse, counts = np.unique(
            packed, return_index=True, return_inverse=True, return_counts=True
        )
        # Most frequent first, earlier-seen colors win ties
        top = np.lexsort((first_seen, -counts))[:8]
        total = counts[top].sum()

        for idx in top:
            value = int(unique[idx])
            r, g, b = value >> 16, (value >> 8) & 0xFF, value & 0xFF
            members = inverse.reshape(-1) == idx
            dominance = counts[idx] / total * 100
            hex_value = rgb_to_hex(r, g, b)
            colors.append(ColorData(
                hex=hex_value,
                rgb=RGB(r, g, b),
                hsl=rgb_to_hsl(r, g, b),
                lab=rgb_to_lab_tuple(r, g, b),
                position=Position(round_half_up(xs[members].mean()), round_half_up(ys[members].mean())),
                confidence=min(95.0, 60.0 + float(dominance)),
                dominance=float(dominance),
                color_name=get_color_name(hex_value),
            ))

    return AnalysisResult(
        colors=tuple(colors),
        dominant_color=colors[0] if colors else None,
        color_distribution=color_distribution(colors),
        lighting_condition='mixed',
        image_quality='good' if width * height > 500_000 else 'fair',
        recommendations=tuple(en for en, _ in BASIC_RECOMMENDATIONS),
        recommendations_localized=tuple(ar for _, ar in BASIC_RECOMMENDATIONS),
        processing_time=(time.perf_counter() - start) * 1000,
    )


# =============================================================================
# Image Loading
# =============================================================================

def load_image(image_path: Union[str, Path],
               max_dimension: int = MAX_ANALYSIS_DIMENSION) -> tuple[bytes, int, int]:
    """
    Decode an image file to an RGBA buffer, downscaled to ``max_dimension``.

    Returns:
        (buffer, width, height)

    Raises:
        FileNotFoundError: If image file doesn't exist
        ValueError: If file is not a valid image or exceeds size limits
    """
    try:
        img = Image.open(image_path)
    except FileNotFoundError:
        raise FileNotFoundError(f"Image not found: {image_path}")
    except Exception as e:
        raise ValueError(f"Could not open image: {e}")

    with img:
        # Validate image dimensions (security: prevent decompression bombs)
        width, height = img.size
        if width > MAX_IMAGE_DIMENSION or height > MAX_IMAGE_DIMENSION:
            raise ValueError(
                f"Image dimensions {width}x{height} exceed maximum "
                f"{MAX_IMAGE_DIMENSION}x{MAX_IMAGE_DIMENSION}"
            )
        if width * height > MAX_IMAGE_PIXELS:
            raise ValueError(
                f"Image has {width * height:,} pixels, exceeding maximum {MAX_IMAGE_PIXELS:,}"
            )

        rgba = img.convert('RGBA')

    if width > max_dimension or height > max_dimension:
        ratio = min(max_dimension / width, max_dimension / height)
        width = max(1, int(width * ratio))
        height = max(1, int(height * ratio))
        rgba = rgba.resize((width, height), Image.Resampling.BILINEAR)
        logger.debug(f"Downscaled {image_path} to {width}x{height}")

    return rgba.tobytes(), width, height


def analyze_file(image_path: Union[str, Path], analyzer: Optional[ColorAnalyzer] = None,
                 basic: bool = False, max_dimension: int = MAX_ANALYSIS_DIMENSION) -> AnalysisResult:
    """Load an image file and analyze it."""
    buffer, width, height = load_image(image_path, max_dimension)
    if basic:
        return analyze_image_basic(buffer, width, height)
    analyzer = analyzer or ColorAnalyzer()
    return analyzer.analyze_image(buffer, width, height)


# =============================================================================
# Render
# =============================================================================

def render(result: AnalysisResult, language: str = 'en') -> str:
    """Render an analysis result as a plain-text report."""
    arabic = language == 'ar'
    lines = []

    lines.append(f"LIGHTING: {result.lighting_condition} | QUALITY: {result.image_quality}")
    lines.append(f"Colors: {len(result.colors)} | Processing time: {result.processing_time:.0f} ms")
    lines.append("")

    if not result.colors:
        lines.append("No usable reaction colors detected.")
        lines.append("")

    for i, color in enumerate(result.colors, 1):
        lines.append(f"[{i}] {color.color_name}")
        lines.append(f"  Hex: {color.hex} | RGB: {tuple(color.rgb)} | "
                     f"LAB: ({color.lab.l:.0f}, {color.lab.a:.0f}, {color.lab.b:.0f})")
        lines.append(f"  Dominance: {color.dominance:.1f}% | Confidence: {color.confidence:.0f}%")
        for match in color.chemical_matches:
            substance = match.substance_localized if arabic else match.substance
            notes = match.notes_localized if arabic else match.notes
            lines.append(f"  - {substance} ({match.test_type}, {match.color_range}): "
                         f"{match.confidence:.2f}")
            lines.append(f"      {notes}")
        lines.append("")

    recommendations = result.recommendations_for(language)
    if recommendations:
        lines.append("RECOMMENDATIONS:")
        for text in recommendations:
            lines.append(f"  - {text}")

    return "\n".join(lines).rstrip()


def text_color_for_background(lab: Lab) -> str:
    """Return black or white text color based on background lightness."""
    return "#000" if lab.l > 50 else "#fff"


def render_html(result: AnalysisResult, image_path: str, language: str = 'en') -> str:
    """Render an analysis result as a standalone HTML page."""
    from html import escape

    arabic = language == 'ar'
    direction = 'rtl' if arabic else 'ltr'

    lines = []
    lines.append('<!DOCTYPE html>')
    lines.append(f'<html lang="{escape(language)}" dir="{direction}">')
    lines.append('<head>')
    lines.append('<meta charset="utf-8">')
    lines.append(f'<title>Color analysis: {escape(Path(image_path).name)}</title>')
    lines.append('<style>')
    lines.append('body { font-family: system-ui, sans-serif; max-width: 860px; margin: 2rem auto; }')
    lines.append('.color { display: flex; gap: 1rem; margin: 1rem 0; }')
    lines.append('.swatch { width: 96px; height: 96px; border-radius: 6px; display: flex; '
                 'align-items: center; justify-content: center; font-size: 0.8rem; }')
    lines.append('.matches { margin: 0.25rem 0; padding-inline-start: 1.2rem; }')
    lines.append('</style>')
    lines.append('</head>')
    lines.append('<body>')
    lines.append(f'<h1>{escape(Path(image_path).name)}</h1>')
    lines.append(f'<p>Lighting: <strong>{result.lighting_condition}</strong> | '
                 f'Quality: <strong>{result.image_quality}</strong> | '
                 f'{result.processing_time:.0f} ms</p>')

    if not result.colors:
        lines.append('<p>No usable reaction colors detected.</p>')

    for color in result.colors:
        lines.append('<div class="color">')
        lines.append(f'  <div class="swatch" style="background:{color.hex}; '
                     f'color:{text_color_for_background(color.lab)}">{color.hex}</div>')
        lines.append('  <div>')
        lines.append(f'    <strong>{escape(color.color_name)}</strong> '
                     f'{color.dominance:.1f}% (confidence {color.confidence:.0f}%)')
        if color.chemical_matches:
            lines.append('    <ul class="matches">')
            for match in color.chemical_matches:
                substance = match.substance_localized if arabic else match.substance
                notes = match.notes_localized if arabic else match.notes
                lines.append(f'      <li>{escape(substance)}: {match.confidence:.2f} '
                             f'({escape(match.test_type)}) - {escape(notes)}</li>')
            lines.append('    </ul>')
        lines.append('  </div>')
        lines.append('</div>')

    recommendations = result.recommendations_for(language)
    if recommendations:
        lines.append('<h2>Recommendations</h2>')
        lines.append('<ul>')
        for text in recommendations:
            lines.append(f'  <li>{escape(text)}</li>')
        lines.append('</ul>')

    lines.append('</body>')
    lines.append('</html>')

    return '\n'.join(lines)


def visualize_colors(result: AnalysisResult, output_path: Union[str, Path]) -> None:
    """Save a swatch strip of the detected colors with dominance percentages."""
    from PIL import ImageDraw

    swatch_size = 80
    padding = 10
    text_height = 25
    count = max(1, len(result.colors))

    img_width = count * (swatch_size + padding) + padding
    img_height = swatch_size + text_height + 2 * padding

    img = Image.new('RGB', (img_width, img_height), (240, 240, 240))
    draw = ImageDraw.Draw(img)

    for i, color in enumerate(result.colors):
        x = padding + i * (swatch_size + padding)
        y = padding

        draw.rectangle([x, y, x + swatch_size, y + swatch_size], fill=tuple(color.rgb))

        text = f"{color.dominance:.1f}%"
        bbox = draw.textbbox((0, 0), text)
        text_width = bbox[2] - bbox[0]
        text_x = x + (swatch_size - text_width) // 2
        draw.text((text_x, y + swatch_size + 4), text, fill=(0, 0, 0))

    img.save(output_path)


# =============================================================================
# CLI
# =============================================================================

def build_analyzer(seed: Optional[int] = None, references: Optional[str] = None) -> ColorAnalyzer:
    table = ReferenceTable.from_json(references) if references else ReferenceTable()
    rng = np.random.default_rng(seed) if seed is not None else None
    return ColorAnalyzer(reference_table=table, rng=rng)


def main(argv=None):
    import argparse
    import json
    import sys

    parser = argparse.ArgumentParser(
        description='Analyze a photographed color test and suggest matching substances.'
    )
    parser.add_argument(
        '--input', '-i',
        required=True,
        help='Path to the image file'
    )
    parser.add_argument(
        '--output', '-o',
        nargs='?',
        const=True,
        default=None,
        help='Write HTML report. Optionally specify path, otherwise auto-names from input.'
    )
    parser.add_argument('--json', help='Write the analysis result as JSON to this path')
    parser.add_argument('--swatches', help='Write a PNG swatch strip to this path')
    parser.add_argument('--lang', choices=('en', 'ar'), default='en', help='Report language')
    parser.add_argument('--basic', action='store_true', help='Use the histogram fallback analysis')
    parser.add_argument('--seed', type=int, help='Seed k-means for reproducible output')
    parser.add_argument('--references', help='JSON reference table replacing the built-in one')
    parser.add_argument('--verbose', '-v', action='store_true', help='Log pipeline details')

    args = parser.parse_args(argv)
    image_path = Path(args.input)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format='%(levelname)s %(name)s: %(message)s')

    # Run analysis
    try:
        analyzer = build_analyzer(args.seed, args.references)
        result = analyze_file(image_path, analyzer=analyzer, basic=args.basic)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error analyzing image: {e}", file=sys.stderr)
        sys.exit(1)

    # Always print report to terminal
    print(render(result, args.lang))

    try:
        if args.output:
            if args.output is True:
                output_path = image_path.with_name(f"{image_path.stem}-colors.html")
            else:
                output_path = Path(args.output)
            output_path.write_text(render_html(result, str(image_path), args.lang), encoding='utf-8')
            print(f"\nWrote: {output_path}")

        if args.json:
            Path(args.json).write_text(
                json.dumps(result.to_dict(), ensure_ascii=False, indent=2), encoding='utf-8'
            )
            print(f"Wrote: {args.json}")

        if args.swatches:
            visualize_colors(result, args.swatches)
            print(f"Wrote: {args.swatches}")
    except OSError as e:
        print(f"Error writing output: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
