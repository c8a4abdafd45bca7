"""CLI for deforming GeoJSON layers from a YAML job."""

import argparse
import logging
from pathlib import Path

from distcarto.generators import LayerGenerator


def main():
    parser = argparse.ArgumentParser(description="Deform GeoJSON layers into a distance cartogram")
    parser.add_argument("job", type=Path, help="Path to YAML job file")
    parser.add_argument("-o", "--output", type=Path, default=None, help="Output directory (overrides the job)")
    parser.add_argument("-w", "--workers", type=int, default=None, help="Number of worker threads")
    parser.add_argument("--skip-existing", action="store_true", help="Skip layers whose output exists")
    parser.add_argument("--no-progress", action="store_true", help="Disable progress bar")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    gen = LayerGenerator(args.job, output_dir=args.output)
    results = gen.generate(
        num_workers=args.workers,
        skip_existing=args.skip_existing,
        progress=not args.no_progress,
    )

    print(f"\nDeformation complete:")
    print(f"  Total layers: {results['total']}")
    print(f"  Processed: {results['processed']}")
    print(f"  Skipped: {results['skipped']}")
    print(f"  Features: {results['features']}")
    print(f"  Errors: {len(results['errors'])}")

    if results['errors']:
        print("\nErrors:")
        for err in results['errors'][:10]:
            print(f"  {err['layer']}: {err['error']}")
        if len(results['errors']) > 10:
            print(f"  ... and {len(results['errors']) - 10} more")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
