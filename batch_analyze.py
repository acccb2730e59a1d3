#!/usr/bin/env python3
"""Batch analyze color test photos and write HTML/JSON reports."""

import argparse
import json
import sys
import time
from collections import Counter
from pathlib import Path

from analyze import analyze_file, build_analyzer, render_html

IMAGE_SUFFIXES = {'.jpg', '.jpeg', '.png', '.webp'}


def find_images(directory: Path) -> list[Path]:
    """Image files directly inside ``directory``, any suffix case, sorted."""
    return sorted(
        p for p in directory.iterdir()
        if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES
    )


def summarize(result) -> str:
    """One-line summary: top color and its best candidate substance."""
    if result.dominant_color is None:
        return f"no colors ({result.lighting_condition}, {result.image_quality})"
    top = result.dominant_color
    match = top.chemical_matches[0].substance if top.chemical_matches else 'no match'
    return f"{top.color_name} {top.dominance:.0f}% → {match}"


def write_reports(result, image_path: Path, output_dir: Path, language: str) -> Path:
    """Write ``{stem}-colors.html`` and ``{stem}-colors.json``; return the HTML path."""
    html_path = output_dir / f"{image_path.stem}-colors.html"
    if html_path.exists():
        print(f"  Warning: Overwriting {html_path.name}", file=sys.stderr)
    html_path.write_text(render_html(result, str(image_path), language), encoding='utf-8')

    payload = json.dumps(result.to_dict(), ensure_ascii=False, indent=2)
    html_path.with_name(f"{image_path.stem}-colors.json").write_text(payload, encoding='utf-8')
    return html_path


def run_batch(images: list[Path], analyzer, output_dir: Path, language: str):
    """
    Analyze each image and write its reports.

    A failing image is reported on stderr and skipped.

    Returns:
        (succeeded, failures, candidates): success count, ``(name, error)``
        pairs, and a Counter of the top candidate substance per image.
    """
    succeeded = 0
    failures = []
    candidates = Counter()

    for n, image_path in enumerate(images, 1):
        prefix = f"[{n}/{len(images)}] {image_path.name}"
        started = time.perf_counter()
        try:
            result = analyze_file(image_path, analyzer=analyzer)
            write_reports(result, image_path, output_dir, language)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            print(f"{prefix} → ERROR: {error}", file=sys.stderr)
            failures.append((image_path.name, error))
            continue

        print(f"{prefix} → {summarize(result)} ({time.perf_counter() - started:.2f}s)")
        succeeded += 1
        top = result.dominant_color
        if top is not None and top.chemical_matches:
            candidates[top.chemical_matches[0].substance] += 1

    return succeeded, failures, candidates


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Batch analyze color test photos and generate reports.'
    )
    parser.add_argument('--input', '-i', required=True,
                        help='Directory of photos to analyze')
    parser.add_argument('--output', '-o', required=True,
                        help='Directory for HTML and JSON reports')
    parser.add_argument('--lang', choices=('en', 'ar'), default='en', help='Report language')
    parser.add_argument('--seed', type=int, help='Seed k-means for reproducible output')
    parser.add_argument('--references', help='JSON reference table replacing the built-in one')
    args = parser.parse_args(argv)

    input_dir = Path(args.input)
    if not input_dir.is_dir():
        print(f"Error: Input directory not found: {input_dir}", file=sys.stderr)
        sys.exit(2)

    images = find_images(input_dir)
    if not images:
        print(f"No images found in {input_dir}", file=sys.stderr)
        sys.exit(2)

    try:
        analyzer = build_analyzer(args.seed, args.references)
    except (OSError, ValueError) as e:
        print(f"Error loading reference table: {e}", file=sys.stderr)
        sys.exit(2)

    output_dir = Path(args.output)
    output_dir.mkdir(parents=True, exist_ok=True)

    started = time.perf_counter()
    succeeded, failures, candidates = run_batch(images, analyzer, output_dir, args.lang)
    elapsed = time.perf_counter() - started

    print()
    print(f"Completed: {succeeded}/{len(images)} succeeded in {elapsed:.2f}s")
    if candidates:
        tally = ', '.join(f"{name} ×{count}" for name, count in candidates.most_common())
        print(f"Top candidates: {tally}")
    if failures:
        print(f"Failed ({len(failures)}):")
        for name, error in failures:
            print(f"  - {name}: {error}")
        sys.exit(1)


if __name__ == '__main__':
    main()
