"""
Example generating a small world and printing its statistics.

Run with ``--plot`` (needs the ``viz`` extra) to also render height,
temperature, precipitation and biome maps.
"""

import argparse
from collections import Counter

import numpy as np

from py_planetgen.core import EventType, WorldGenerator, WorldSettings


def print_progress(event):
    if event.type == EventType.PROGRESS:
        print(f"  [{event.elapsed:6.2f}s] {event.message}")


def plot(generator, path):
    import matplotlib.pyplot as plt

    cells = generator.cells
    xs, ys = cells.positions[:, 0], cells.positions[:, 1]
    fig, axes = plt.subplots(2, 2, figsize=(12, 10))

    panels = [
        (axes[0, 0], cells.height, "terrain", "Elevation", "Height"),
        (axes[0, 1], cells.temperature, "RdBu_r", "Temperature", "°C"),
        (axes[1, 0], cells.precipitation, "YlGnBu", "Precipitation", ""),
    ]
    for ax, values, cmap, title, label in panels:
        scatter = ax.scatter(xs, ys, c=values, cmap=cmap, s=5)
        ax.set_title(title)
        ax.set_aspect("equal")
        ax.invert_yaxis()
        plt.colorbar(scatter, ax=ax, label=label)

    ax = axes[1, 1]
    ax.scatter(xs, ys, c=[b.color for b in cells.biome], s=5)
    ax.set_title("Biomes")
    ax.set_aspect("equal")
    ax.invert_yaxis()

    plt.tight_layout()
    plt.savefig(path, dpi=150)
    print(f"\nWorld visualization saved to {path}")

    height_map = generator.height_map(256, 256)
    plt.figure(figsize=(6, 6))
    plt.imshow(height_map.T, cmap="terrain")
    plt.colorbar(label="Height")
    plt.title("Height map")
    plt.savefig(path.replace(".png", "_heightmap.png"), dpi=150)


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--seed", type=int, default=1212)
    parser.add_argument("--spacing", type=float, default=3.0,
                        help="Normalized minimum cell distance")
    parser.add_argument("--plot", action="store_true")
    args = parser.parse_args()

    settings = WorldSettings.from_mapping({
        "seed": args.seed,
        "bounds": {"x": -1000.0, "y": -1000.0, "width": 2000.0, "height": 2000.0},
        "continent_ratio": 0.4,
        "normalized_minimum_cell_distance": args.spacing,
    })

    generator = WorldGenerator(settings)
    generator.subscribe(print_progress)

    print("Generating world...")
    generator.generate()
    generator.events.flush()

    stats = generator.statistics()
    print(f"\nCells: {stats.cells}, plates: {stats.plates}, continental: {stats.continental_cells}")
    print(f"River mouths: {stats.river_mouths}, undrained lakes: {stats.undrained_lakes}")
    print(f"Erosion: {stats.erosion_iterations} iterations, converged={stats.converged}")
    print(f"Max height: {stats.max_height:.1f}")
    print(f"Height at center: {generator.height_at(0.0, 0.0):.2f}")

    heights = generator.cells.height
    print(f"Mean land height: {np.mean(heights[heights > 0]) if np.any(heights > 0) else 0.0:.1f}")

    print("\nBiome distribution:")
    counts = Counter(b.id for b in generator.cells.biome)
    for biome_id, count in counts.most_common():
        print(f"  {biome_id}: {count} cells ({count / stats.cells * 100:.1f}%)")

    if args.plot:
        plot(generator, "world_demo.png")

    generator.close()


if __name__ == "__main__":
    main()
