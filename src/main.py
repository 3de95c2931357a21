# main.py
import sys
from renderer.env_map_utils import generate_gradient_env_map
from renderer.env_validation import run_all_checks

# Map size and sample counts per preset. The distribution check needs many
# more samples than there are pixels to resolve the histogram.
PRESETS = {
    "quick": {"width": 64, "height": 32, "samples": 200000, "consistency_samples": 1000},
    "full": {"width": 128, "height": 64, "samples": 1000000, "consistency_samples": 10000},
}
DEFAULT_PRESET = "quick"


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    preset_name = argv[0] if argv else DEFAULT_PRESET
    if preset_name not in PRESETS:
        print(f"Unknown preset '{preset_name}', expected one of: {', '.join(PRESETS)}")
        return 2
    preset = PRESETS[preset_name]

    print(f"Validating environment importance sampling ({preset_name} preset)")
    env_map = generate_gradient_env_map(preset["width"], preset["height"])
    results = run_all_checks(
        env_map,
        num_samples=preset["samples"],
        num_consistency_samples=preset["consistency_samples"],
    )

    print("\n=== Summary ===")
    for name, passed in results.items():
        print(f"  {name:20s} {'PASSED' if passed else 'FAILED'}")
    failed = [name for name, passed in results.items() if not passed]
    if failed:
        print(f"{len(failed)} of {len(results)} checks failed")
        return 1
    print(f"All {len(results)} checks passed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
