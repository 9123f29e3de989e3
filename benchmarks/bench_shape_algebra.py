#!/usr/bin/env python3
"""Benchmarks for shape bound algebra and shape-gated tile scheduling.

- Shape algebra timing: scale / add / mult / gemm bounds over a large tile grid
- Block tensor add: dense policy vs sparse policy at several tile densities

Usage:
    python benchmarks/bench_shape_algebra.py --tiles 64 --tile-size 16
"""

import argparse
import time
from typing import Callable, Dict, List

import torch

from tileshape_core import BlockTensor, GemmHelper, ShapeConfig, SparseShape, TiledRange, TiledRange1


def benchmark(func: Callable, iterations: int = 20, warmup: int = 3) -> Dict[str, float]:
    """Time a callable.

    Returns:
        Dict with 'mean_ms', 'std_ms', 'min_ms', 'max_ms'
    """
    for _ in range(warmup):
        func()

    times = []
    for _ in range(iterations):
        start = time.perf_counter()
        func()
        end = time.perf_counter()
        times.append((end - start) * 1000)  # Convert to ms

    times = torch.tensor(times)
    return {
        "mean_ms": times.mean().item(),
        "std_ms": times.std().item(),
        "min_ms": times.min().item(),
        "max_ms": times.max().item(),
    }


def make_shape(trange: TiledRange, density: float, config: ShapeConfig) -> SparseShape:
    """Shape with roughly ``density`` of its tiles nonzero."""
    norms = torch.rand(trange.tiles_shape) * trange.volumes()
    norms[torch.rand(trange.tiles_shape) >= density] = 0.0
    return SparseShape(norms, trange, config)


def make_block_tensor(trange: TiledRange, density: float, sparse: bool) -> BlockTensor:
    """Dense tensor with roughly ``density`` of its tiles nonzero, split into tiles."""
    t = torch.randn(trange.elements_shape)
    for idx in trange.indices():
        if torch.rand(()).item() >= density:
            (r0, r1), (c0, c1) = trange.tile_range(idx)
            t[r0:r1, c0:c1] = 0.0
    return BlockTensor.from_dense(t, trange, sparse=sparse)


def run_shape_suite(tiles: int, tile_size: int, density: float, iterations: int) -> Dict:
    config = ShapeConfig(zero_threshold=1e-3)
    dim = TiledRange1.uniform(tiles * tile_size, tile_size)
    trange = TiledRange([dim, dim])
    left = make_shape(trange, density, config)
    right = make_shape(trange, density, config)
    helper = GemmHelper(result_rank=2, left_rank=2, right_rank=2)

    results = {
        "scale": benchmark(lambda: left.scale(2.0), iterations),
        "add": benchmark(lambda: left.add(right, -1.5, [1, 0]), iterations),
        "mult": benchmark(lambda: left.mult(right), iterations),
        "gemm": benchmark(lambda: left.gemm(right, 1.0, helper), iterations),
    }
    for name, r in results.items():
        print(f"  {name:<6} {r['mean_ms']:>8.3f} ms")
    return results


def run_block_tensor_suite(
    tiles: int, tile_size: int, densities: List[float], iterations: int
) -> Dict:
    dim = TiledRange1.uniform(tiles * tile_size, tile_size)
    trange = TiledRange([dim, dim])
    results = {}

    x = make_block_tensor(trange, 1.0, sparse=False)
    results["dense"] = benchmark(lambda: x.add(x).to_dense(), iterations)
    print(f"  {'dense':<14} {results['dense']['mean_ms']:>8.3f} ms")

    for density in densities:
        a = make_block_tensor(trange, density, sparse=True)
        b = make_block_tensor(trange, density, sparse=True)
        key = f"sparse_{density}"
        results[key] = benchmark(lambda: a.add(b).to_dense(), iterations)
        results[key]["sparsity"] = a.add(b).shape.sparsity()
        speedup = results["dense"]["mean_ms"] / results[key]["mean_ms"]
        print(
            f"  {key:<14} {results[key]['mean_ms']:>8.3f} ms "
            f"(sparsity {results[key]['sparsity']:.2f}, speedup {speedup:.2f}x)"
        )
    return results


def main():
    """Main entry point for benchmarks."""
    parser = argparse.ArgumentParser(description="Tile shape algebra benchmarks")
    parser.add_argument("--tiles", type=int, default=64, help="Tiles per dimension")
    parser.add_argument("--tile-size", type=int, default=16, help="Elements per tile")
    parser.add_argument("--iterations", type=int, default=20, help="Benchmark iterations")
    parser.add_argument("--densities", type=float, nargs="+", default=[0.1, 0.25, 0.5],
                        help="Tile densities to benchmark")
    args = parser.parse_args()

    print("Shape algebra")
    print("=" * 50)
    run_shape_suite(args.tiles, args.tile_size, 0.5, args.iterations)

    print("\nBlock tensor add")
    print("=" * 50)
    run_block_tensor_suite(args.tiles // 4, args.tile_size, args.densities, args.iterations)


if __name__ == "__main__":
    main()
