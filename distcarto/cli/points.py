"""CLI for computing image points from travel durations."""

import argparse
import logging
from pathlib import Path

from distcarto import (
    CartogramError,
    EmbeddingConfig,
    UnipolarConfig,
    displace_unipolar,
    positions_from_durations,
)
from distcarto.generators import read_points, write_points
from distcarto.generators.layer_generator import read_matrix


def main():
    parser = argparse.ArgumentParser(description="Compute image points from travel durations")
    parser.add_argument("source", type=Path, help="Source point layer (GeoJSON)")
    parser.add_argument("-o", "--output", type=Path, required=True, help="Output image point layer (GeoJSON)")

    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--durations", type=Path, help="N x N duration matrix (multipolar)")
    mode.add_argument("--times", type=Path, help="N durations from the reference point (unipolar)")

    parser.add_argument("--reference", type=int, default=None,
                        help="Reference point index (unipolar; default: the zero-duration point)")
    parser.add_argument("--method", type=str, default="median", choices=["mean", "median"],
                        help="Baseline speed from per-point speeds (unipolar)")
    parser.add_argument("--factor", type=float, default=1.0, help="Displacement exaggeration (unipolar)")
    parser.add_argument("--speed", type=float, default=None, help="Explicit baseline speed (unipolar)")
    parser.add_argument("--negative-eigenvalues", type=str, default="clip",
                        choices=["clip", "raise", "ignore"], help="Negative eigenvalue policy (multipolar)")
    parser.add_argument("--symmetrize", type=str, default=None, choices=["mean", "min", "max"],
                        help="Symmetrize an asymmetric duration matrix (multipolar)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    source, props = read_points(args.source)
    try:
        if args.durations is not None:
            cfg = EmbeddingConfig(
                negative_eigenvalues=args.negative_eigenvalues,
                symmetrize=args.symmetrize,
            )
            result = positions_from_durations(read_matrix(args.durations), source, cfg)
            image = result.points
            print(f"Multipolar positioning of {len(image)} points:")
            print(f"  Scale: {result.alignment.scale:.6g}")
            print(f"  Rotation: {result.alignment.angle:.3f} deg")
            print(f"  Reflection: {result.alignment.reflection}")
            print(f"  Alignment error: {result.alignment.error:.6g}")
            if result.clipped:
                print(f"  Clipped eigenvalues: {list(result.embedding.clipped_eigenvalues)}")
        else:
            cfg = UnipolarConfig(method=args.method, factor=args.factor, speed=args.speed)
            times = read_matrix(args.times).ravel()
            result = displace_unipolar(source, args.reference, times, cfg)
            image = result.points
            print(f"Unipolar displacement of {len(image)} points:")
            print(f"  Reference index: {result.reference_index}")
            print(f"  Reference speed: {result.reference_speed:.6g}")
    except CartogramError as e:
        parser.error(str(e))

    write_points(args.output, image, props)
    print(f"  Written: {args.output}")


if __name__ == "__main__":
    main()
