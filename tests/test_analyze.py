"""Tests for the reaction color analysis pipeline."""

import json

import numpy as np
import pytest

from analyze import (
    RECOMMENDATIONS,
    AnalyzerConfig,
    ColorAnalyzer,
    PixelSamples,
    Position,
    analyze_image,
    analyze_image_basic,
    assess_lighting,
    assess_quality,
    cluster_colors,
    color_distribution,
    color_variance,
    find_chemical_matches,
    find_closest_color,
    generate_recommendations,
    match_score,
    sample_pixels,
    sample_rate,
)
from color_space import RGB
from reference_table import ChemicalSignature, ReferenceTable


class FixedRandom:
    """Seed source returning preset pixel indices."""

    def __init__(self, indices):
        self.indices = indices

    def integers(self, low, high=None, size=None):
        return np.array(self.indices[:size])


def solid(width, height, rgba):
    return bytes(rgba) * (width * height)


def split_rows(width, height, top, bottom):
    """Top half of the rows in one color, the rest in another."""
    half = height // 2
    return bytes(top) * (width * half) + bytes(bottom) * (width * (height - half))


def samples_of(colors):
    rgb = np.array(colors, dtype=np.int32).reshape(-1, 3)
    xy = np.zeros((len(rgb), 2), dtype=np.int64)
    return PixelSamples(rgb=rgb, xy=xy)


def signature(color_range, confidence=1.0, substance='Test'):
    return ChemicalSignature(
        substance=substance, substance_localized='اختبار', test_type='Marquis Test',
        color_range=color_range, confidence=confidence, notes='', notes_localized='',
    )


# =============================================================================
# Sampling
# =============================================================================

@pytest.mark.parametrize('total, expected', [
    (500_001, 50), (500_000, 25),
    (200_001, 25), (200_000, 15),
    (100_001, 15), (100_000, 8),
    (50_001, 8), (50_000, 4),
    (1, 4),
])
def test_sample_rate_boundaries(total, expected):
    assert sample_rate(total) == expected


def test_sampling_walks_with_stride_and_maps_coordinates():
    samples = sample_pixels(solid(10, 10, (100, 50, 25, 255)), 10, 10)
    # 100 pixels, stride 4
    assert len(samples) == 25
    assert samples.xy[1].tolist() == [4, 0]
    assert samples.xy[3].tolist() == [2, 1]
    assert samples.rgb[0].tolist() == [100, 50, 25]


@pytest.mark.parametrize('rgba, kept', [
    ((100, 100, 100, 127), False),
    ((100, 100, 100, 128), True),
    ((10, 10, 9, 255), False),
    ((10, 10, 10, 255), True),
    ((255, 255, 241, 255), False),
    ((250, 250, 250, 255), True),
])
def test_sampling_rejects_noise_pixels(rgba, kept):
    samples = sample_pixels(solid(4, 4, rgba), 4, 4)
    assert (len(samples) > 0) == kept


def test_sampling_accepts_numpy_arrays():
    pixels = np.full((3, 5, 4), 200, dtype=np.uint8)
    samples = sample_pixels(pixels, 5, 3)
    assert len(samples) == 4  # indices 0, 4, 8, 12


@pytest.mark.parametrize('buffer, width, height', [
    (None, 2, 2),
    (bytes(15), 2, 2),
    (bytes(16), 0, 4),
    (bytes(16), 2.0, 2),
    (bytes(16), 4, -1),
    (np.full(16, 300), 2, 2),
])
def test_invalid_input_fails_fast(buffer, width, height):
    with pytest.raises(ValueError):
        analyze_image(buffer, width, height)


# =============================================================================
# Clustering
# =============================================================================

def test_clustering_empty_input():
    assert cluster_colors(PixelSamples.empty()) == []


def test_clustering_two_color_image():
    samples = sample_pixels(split_rows(10, 10, (200, 0, 0, 255), (0, 0, 200, 255)), 10, 10)
    clusters = cluster_colors(samples, k=2, rng=FixedRandom([0, 24]))

    assert [c.rgb for c in clusters] == [(200, 0, 0), (0, 0, 200)]
    assert [c.dominance for c in clusters] == pytest.approx([52.0, 48.0])
    assert clusters[0].position == Position(4, 2)
    assert clusters[0].confidence == 95


def test_identical_centroids_resolve_to_lowest_index():
    samples = samples_of([(90, 30, 30)] * 20)
    clusters = cluster_colors(samples, k=8, rng=FixedRandom([0] * 8))
    assert len(clusters) == 1
    assert clusters[0].size == 20


def test_small_clusters_are_dropped():
    samples = samples_of([(200, 0, 0)] * 199 + [(0, 200, 0)])
    clusters = cluster_colors(samples, k=2, rng=FixedRandom([0, 199]))
    assert len(clusters) == 1
    assert clusters[0].dominance == pytest.approx(99.5)
    assert clusters[0].confidence == 95


def test_confidence_grows_with_dominance():
    colors = [(200, 0, 0)] * 90 + [(0, 200, 0)] * 10
    clusters = cluster_colors(samples_of(colors), k=2, rng=FixedRandom([0, 99]))
    assert clusters[1].dominance == pytest.approx(10.0)
    assert clusters[1].confidence == pytest.approx(80.0)


def test_centroids_are_integer_means():
    samples = samples_of([(10, 20, 30), (11, 21, 31)] * 5)
    clusters = cluster_colors(samples, k=1, rng=FixedRandom([0]))
    # Means of 10.5 etc. round half up
    assert clusters[0].rgb == (11, 21, 31)


def test_clustering_invariants_on_noisy_image():
    rng = np.random.default_rng(3)
    pixels = rng.integers(0, 256, size=(120, 160, 4), dtype=np.uint8)
    pixels[..., 3] = 255
    samples = sample_pixels(pixels, 160, 120)

    clusters = cluster_colors(samples, rng=np.random.default_rng(11))

    assert 0 < len(clusters) <= 6
    assert sum(c.dominance for c in clusters) <= 100 + 1e-9
    assert all(c.dominance >= 1 for c in clusters)
    dominances = [c.dominance for c in clusters]
    assert dominances == sorted(dominances, reverse=True)
    assert all(0 <= c.confidence <= 95 for c in clusters)


def test_seeded_analyses_are_reproducible():
    rng = np.random.default_rng(5)
    pixels = rng.integers(0, 256, size=(80, 80, 4), dtype=np.uint8)
    pixels[..., 3] = 255

    first = analyze_image(pixels, 80, 80, rng=np.random.default_rng(42))
    second = analyze_image(pixels, 80, 80, rng=np.random.default_rng(42))
    assert [c.hex for c in first.colors] == [c.hex for c in second.colors]


# =============================================================================
# Matching
# =============================================================================

def test_name_match_scores_highest():
    assert match_score('#8b008b', RGB(139, 0, 139), signature('Purple to Black')) == 0.9


def test_purple_hex_pattern_match():
    # Named "Dark Green", but the hex contains "80"
    assert match_score('#008000', RGB(0, 128, 0), signature('Purple to Pink')) == 0.8


def test_purple_pattern_is_case_sensitive():
    # "4B" never appears in a lowercase hex
    assert match_score('#4b0082', RGB(75, 0, 130), signature('Purple')) == 0.3


def test_blue_family_match():
    assert match_score('#3c648c', RGB(60, 100, 140), signature('Blue')) == 0.7


def test_orange_family_match():
    assert match_score('#c8783c', RGB(200, 120, 60), signature('Orange to Red')) == 0.7


def test_baseline_score():
    assert match_score('#c80000', RGB(200, 0, 0), signature('Blue')) == 0.3


def test_matches_for_dark_magenta():
    matches = find_chemical_matches('#8b008b', RGB(139, 0, 139), ReferenceTable())

    assert [m.substance for m in matches] == ['LSD', 'MDMA/Ecstasy', 'Cannabis/THC']
    assert [m.confidence for m in matches] == pytest.approx([0.81, 0.765, 0.63])
    assert matches[0].test_type == 'Ehrlich Test'


def test_filter_uses_heuristic_score_not_product():
    table = ReferenceTable([signature('Purple', confidence=0.2)])
    matches = find_chemical_matches('#8b008b', RGB(139, 0, 139), table)
    assert len(matches) == 1
    assert matches[0].confidence == pytest.approx(0.18)


def test_baseline_only_entries_are_filtered_out():
    table = ReferenceTable([signature('Blue')])
    assert find_chemical_matches('#c80000', RGB(200, 0, 0), table) == []


def test_matches_are_truncated_and_sorted():
    table = ReferenceTable([
        signature('Purple', confidence=c, substance=f'S{i}')
        for i, c in enumerate((0.2, 0.9, 0.5, 0.7, 0.4))
    ])
    matches = find_chemical_matches('#8b008b', RGB(139, 0, 139), table)
    assert [m.substance for m in matches] == ['S1', 'S3', 'S2']


# =============================================================================
# Scene Assessment
# =============================================================================

@pytest.mark.parametrize('value, expected', [
    (210, 'bright'),
    (200, 'mixed'),
    (190, 'mixed'),
    (180, 'mixed'),
    (150, 'normal'),
    (120, 'mixed'),
    (100, 'mixed'),
    (80, 'mixed'),
    (79, 'dim'),
])
def test_lighting_bands(value, expected):
    assert assess_lighting(samples_of([(value, value, value)] * 4)) == expected


def test_lighting_gap_from_mixed_pixels():
    # Average brightness exactly 100
    samples = samples_of([(150, 150, 150), (50, 50, 50)])
    assert assess_lighting(samples) == 'mixed'


def test_lighting_without_samples():
    assert assess_lighting(PixelSamples.empty()) == 'mixed'


def test_color_variance():
    samples = samples_of([(0, 0, 0), (100, 100, 100)])
    assert color_variance(samples) == pytest.approx(7500)
    assert color_variance(PixelSamples.empty()) == 0


@pytest.mark.parametrize('width, height, expected', [
    (1001, 1000, 'excellent'),
    (1000, 1000, 'good'),
    (1000, 200, 'fair'),
    (100, 1000, 'poor'),
])
def test_quality_tiers(width, height, expected):
    samples = samples_of([(0, 0, 0), (100, 100, 100)])
    assert assess_quality(samples, width, height) == expected


def test_quality_needs_variance():
    samples = samples_of([(100, 100, 100)] * 10)
    assert assess_quality(samples, 4000, 3000) == 'poor'


def test_recommendations_are_independent():
    english, arabic = generate_recommendations([], 'dim', 'poor')
    assert english == [RECOMMENDATIONS[k][0] for k in ('dim_lighting', 'poor_quality', 'limited_variation')]
    assert arabic == [RECOMMENDATIONS[k][1] for k in ('dim_lighting', 'poor_quality', 'limited_variation')]

    english, arabic = generate_recommendations([object()] * 3, 'normal', 'good')
    assert english == [] and arabic == []


# =============================================================================
# End to end
# =============================================================================

def test_dark_magenta_image():
    result = analyze_image(solid(100, 100, (139, 0, 139, 255)), 100, 100,
                           rng=np.random.default_rng(0))

    assert len(result.colors) == 1
    color = result.dominant_color
    assert color is result.colors[0]
    assert color.hex == '#8b008b'
    assert color.dominance == pytest.approx(100)
    assert color.confidence == 95
    assert color.color_name == 'Purple'
    assert color.position == Position(48, 50)
    assert color.chemical_matches
    assert 'purple' in color.chemical_matches[0].color_range.lower()

    assert result.color_distribution == {'Purple': pytest.approx(100)}
    assert result.lighting_condition == 'mixed'
    assert result.image_quality == 'poor'
    assert RECOMMENDATIONS['limited_variation'][0] in result.recommendations
    assert RECOMMENDATIONS['limited_variation'][1] in result.recommendations_localized
    assert result.processing_time >= 0


@pytest.mark.parametrize('width, height', [(1, 1), (7, 3), (64, 64)])
def test_transparent_image_is_not_an_error(width, height):
    result = analyze_image(bytes(width * height * 4), width, height)

    assert result.colors == ()
    assert result.dominant_color is None
    assert result.color_distribution == {}
    assert RECOMMENDATIONS['limited_variation'][0] in result.recommendations


def test_result_invariants():
    rng = np.random.default_rng(9)
    pixels = rng.integers(0, 256, size=(150, 200, 4), dtype=np.uint8)
    pixels[..., 3] = 255

    result = analyze_image(pixels, 200, 150, rng=np.random.default_rng(1))

    dominances = [c.dominance for c in result.colors]
    assert dominances == sorted(dominances, reverse=True)
    assert sum(dominances) <= 100 + 1e-9
    for color in result.colors:
        assert color.dominance >= 1
        assert 0 <= color.confidence <= 100
        confidences = [m.confidence for m in color.chemical_matches]
        assert len(confidences) <= 3
        assert confidences == sorted(confidences, reverse=True)
        assert all(0 <= c <= 1 for c in confidences)


def test_injected_reference_table():
    table = ReferenceTable([signature('Purple', confidence=0.5, substance='Custom')])
    analyzer = ColorAnalyzer(reference_table=table, rng=np.random.default_rng(0))
    result = analyzer.analyze_image(solid(20, 20, (139, 0, 139, 255)), 20, 20)

    matches = result.dominant_color.chemical_matches
    assert [m.substance for m in matches] == ['Custom']
    assert matches[0].confidence == pytest.approx(0.45)


def test_custom_config_limits_colors():
    config = AnalyzerConfig(max_colors=1)
    result = analyze_image(split_rows(10, 10, (200, 0, 0, 255), (0, 0, 200, 255)), 10, 10,
                           config=config, rng=FixedRandom([0, 24, 0, 0, 0, 0, 0, 0]))
    assert len(result.colors) == 1
    assert result.dominant_color.hex == '#c80000'


def test_invalid_config():
    with pytest.raises(ValueError):
        AnalyzerConfig(max_iterations=0)


def test_result_serializes_to_display_shape():
    result = analyze_image(solid(10, 10, (139, 0, 139, 255)), 10, 10, rng=np.random.default_rng(0))
    data = json.loads(json.dumps(result.to_dict(), ensure_ascii=False))

    assert data['dominantColor']['hex'] == '#8b008b'
    assert data['dominantColor']['rgb'] == {'r': 139, 'g': 0, 'b': 139}
    assert data['dominantColor']['colorName'] == 'Purple'
    assert data['dominantColor']['chemicalMatches'][0]['colorRange'] == 'Purple to Pink'
    assert data['lightingCondition'] == 'mixed'
    assert set(data) == {
        'colors', 'dominantColor', 'colorDistribution', 'lightingCondition',
        'imageQuality', 'recommendations', 'recommendations_localized', 'processingTime',
    }


def test_color_distribution_keeps_last_color_of_a_name():
    class Named:
        def __init__(self, color_name, dominance):
            self.color_name = color_name
            self.dominance = dominance

    assert color_distribution([Named('Red', 40), Named('Blue', 30), Named('Red', 10)]) == {
        'Red': 10, 'Blue': 30,
    }


def test_two_purples_report_the_smaller_share():
    image = split_rows(10, 10, (128, 0, 128, 255), (150, 20, 150, 255))
    result = ColorAnalyzer(rng=FixedRandom([0, 24] * 4)).analyze_image(image, 10, 10)

    assert [c.color_name for c in result.colors] == ['Purple', 'Purple']
    assert [c.dominance for c in result.colors] == pytest.approx([52.0, 48.0])
    assert result.color_distribution == pytest.approx({'Purple': 48.0})

# =============================================================================
# Basic analysis and color picking
# =============================================================================

def test_basic_analysis_histogram():
    pixels = np.zeros((100, 100, 4), dtype=np.uint8)
    pixels[:, :50] = (200, 0, 0, 255)
    pixels[:, 50:] = (0, 0, 200, 255)

    result = analyze_image_basic(pixels, 100, 100)

    assert [c.hex for c in result.colors] == ['#c80000', '#0000c8']
    assert [c.dominance for c in result.colors] == pytest.approx([50, 50])
    assert result.colors[0].position == Position(25, 50)
    assert result.colors[0].confidence == 95
    assert result.colors[0].chemical_matches == ()
    assert result.lighting_condition == 'mixed'
    assert result.image_quality == 'fair'
    assert len(result.recommendations) == 2
    assert len(result.recommendations_localized) == 2


def test_basic_analysis_keeps_top_eight():
    pixels = np.zeros((1, 10, 4), dtype=np.uint8)
    for i in range(10):
        pixels[0, i] = (i * 20, 10, 10, 255)

    result = analyze_image_basic(pixels, 10, 1)
    assert len(result.colors) == 8
    assert sum(c.dominance for c in result.colors) == pytest.approx(100)


def test_basic_analysis_of_transparent_image():
    result = analyze_image_basic(bytes(5 * 5 * 4), 5, 5)
    assert result.colors == ()
    assert result.dominant_color is None


def test_find_closest_color():
    pixels = np.zeros((100, 100, 4), dtype=np.uint8)
    pixels[:, :50] = (200, 0, 0, 255)
    pixels[:, 50:] = (0, 0, 200, 255)
    result = analyze_image_basic(pixels, 100, 100)

    assert find_closest_color(result.colors, (190, 10, 10)).hex == '#c80000'
    assert find_closest_color(result.colors, (20, 20, 180)).hex == '#0000c8'
    assert find_closest_color((), (0, 0, 0)) is None


def test_closest_color_compares_packed_hex_values():
    class Swatch:
        def __init__(self, hex_value):
            self.hex = hex_value

    colors = [Swatch('#ff0000'), Swatch('#800080')]
    # 0x810000 is 0xff80 away from purple but 0x7e0000 away from red
    assert find_closest_color(colors, (0x81, 0, 0)).hex == '#800080'

    # equal distance keeps the earlier color
    assert find_closest_color([Swatch('#000010'), Swatch('#000030')], (0, 0, 0x20)).hex == '#000010'
