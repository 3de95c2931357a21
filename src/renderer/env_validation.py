# renderer/env_validation.py

import math
import numpy as np
from core.uv import UV
from renderer.env_importance import EnvironmentCDF, build_environment_cdf, compute_weight_field
from .env_map_utils import generate_bright_pixel_env_map, generate_uniform_env_map
from .env_sampling import environment_pdf, environment_pdf_batch, sample_environment_map_batch

NORMALIZATION_TOLERANCE = 1e-3
MAX_REPORTED_VIOLATIONS = 10
MAX_REPORTED_ERRORS = 5


def _report(name: str, success: bool) -> bool:
    print(f"  {name} test {'PASSED' if success else 'FAILED'}")
    return success


def print_cdf_statistics(cdf: EnvironmentCDF):
    """
    Print a summary of the distribution for debugging.
    """
    print("\n=== CDF Statistics ===")
    print(f"Dimensions: {cdf.width}x{cdf.height}")
    if cdf.is_empty:
        print("  (empty distribution)")
        print("=====================\n")
        return

    marginal = cdf.marginal_cdf
    print("\nMarginal CDF:")
    print(f"  First value: {marginal[0]}")
    print(f"  Last value: {marginal[-1]}")
    print(f"  Min: {marginal.min()}, Max: {marginal.max()}")

    conditional = cdf.conditional_cdfs
    print("\nConditional CDFs (per-row):")
    print(f"  Overall min: {conditional.min()}, max: {conditional.max()}")

    print("\nSample rows (first/last values):")
    h = cdf.height
    for v in sorted({0, h // 4, h // 2, 3 * h // 4, h - 1}):
        row = cdf.conditional_cdf(v)
        print(f"  Row {v:4d}: first={row[0]:10.6f}, last={row[-1]:10.6f}")
    print("=====================\n")


def _decreasing_steps(cdf_values: np.ndarray, limit: int) -> np.ndarray:
    """Indices i > 0 where cdf_values[i] < cdf_values[i-1], at most limit of them."""
    return (np.flatnonzero(np.diff(cdf_values) < 0) + 1)[:limit]


def check_cdf_monotonicity(cdf: EnvironmentCDF) -> bool:
    """
    Walk every CDF array and flag any decrease.
    Reports at most MAX_REPORTED_VIOLATIONS for the marginal and for the conditionals.
    """
    print("Testing CDF monotonicity...")
    success = True

    marginal = cdf.marginal_cdf
    for v in _decreasing_steps(marginal, MAX_REPORTED_VIOLATIONS):
        print(f"  ERROR: Marginal CDF not monotonic at v={v} ({marginal[v - 1]} -> {marginal[v]})")
        success = False

    violations = 0
    for v in range(cdf.height):
        row = cdf.conditional_cdf(v)
        for u in _decreasing_steps(row, MAX_REPORTED_VIOLATIONS - violations):
            print(f"  ERROR: Conditional CDF not monotonic at v={v}, u={u} ({row[u - 1]} -> {row[u]})")
            success = False
            violations += 1
        if violations >= MAX_REPORTED_VIOLATIONS:
            print(f"  (stopping after {MAX_REPORTED_VIOLATIONS} violations)")
            break

    return _report("Monotonicity", success)


def check_cdf_normalization(cdf: EnvironmentCDF, tolerance: float = NORMALIZATION_TOLERANCE) -> bool:
    """
    Check that the marginal CDF and every conditional CDF end at 1.0.
    """
    print("Testing CDF normalization...")
    if cdf.is_empty:
        print("  ERROR: Distribution is empty")
        return _report("Normalization", False)

    success = True
    marginal_last = cdf.marginal_cdf[-1]
    if abs(marginal_last - 1.0) >= tolerance:
        print(f"  ERROR: Marginal CDF not normalized. Last value: {marginal_last} (expected 1.0)")
        success = False
    else:
        print(f"  Marginal CDF normalized to {marginal_last}")

    row_ends = cdf.conditional_cdfs[:, -1]
    bad_rows = np.flatnonzero(~(np.abs(row_ends - 1.0) < tolerance))
    for v in bad_rows[:MAX_REPORTED_ERRORS]:
        print(f"  ERROR: Conditional CDF row {v} not normalized. Last value: {row_ends[v]} (expected 1.0)")
    if bad_rows.size:
        print(f"  {bad_rows.size} conditional CDF rows failed normalization")
        success = False
    else:
        print("  All conditional CDFs normalized")

    return _report("Normalization", success)


def check_uniform_environment(width: int = 64, height: int = 32) -> bool:
    """
    Build the distribution of an all-white map. Because of the sin(theta)
    weighting, the marginal CDF must follow (1 - cos(theta)) / 2 and every
    conditional CDF must be linear.
    """
    print("\nTesting uniform environment (white image)...")
    cdf = build_environment_cdf(generate_uniform_env_map(width, height))
    success = True

    print("  Checking marginal CDF against sin(theta) integral...")
    theta = (np.arange(height) + 1.0) / height * math.pi
    expected_marginal = (1.0 - np.cos(theta)) / 2.0
    marginal_error = np.abs(cdf.marginal_cdf - expected_marginal)
    bad_rows = np.flatnonzero(marginal_error > 0.01)
    for v in bad_rows[:MAX_REPORTED_ERRORS]:
        print(f"  ERROR: Marginal CDF at v={v} is {cdf.marginal_cdf[v]}, "
              f"expected ~{expected_marginal[v]} (error: {marginal_error[v]})")
    if bad_rows.size:
        success = False

    print("  Checking conditional CDF linearity (should be uniform per row)...")
    expected_row = (np.arange(width) + 1.0) / width
    linear_error = np.abs(cdf.conditional_cdfs - expected_row[None, :])
    failures = np.argwhere(linear_error > 0.001)
    for v, u in failures[:MAX_REPORTED_ERRORS]:
        print(f"  ERROR: Conditional CDF at v={v}, u={u} is {cdf.conditional_cdfs[v, u]}, "
              f"expected ~{expected_row[u]} (error: {linear_error[v, u]})")
    if len(failures):
        print(f"  {len(failures)} pixels failed linearity check")
        success = False

    return _report("Uniform environment", success)


def check_sample_distribution(cdf: EnvironmentCDF, image_data, num_samples: int = 200000,
                              tolerance: float = 0.1, seed: int = 0) -> bool:
    """
    Draw many samples, bin them per pixel and compare the histogram with the
    luminance * sin(theta) weight field using the total variation distance.
    """
    print("\nTesting sample distribution matches luminance...")
    if cdf.is_empty:
        print("  ERROR: Distribution is empty")
        return _report("Distribution", False)

    weights = compute_weight_field(image_data, cdf.width, cdf.height).astype(np.float64)
    total = weights.sum()
    if not total > 0:
        print("  ERROR: Weight field has no positive mass")
        return _report("Distribution", False)
    expected = (weights / total).ravel()

    rng = np.random.default_rng(seed)
    us, vs, _ = sample_environment_map_batch(rng.random(num_samples), rng.random(num_samples), cdf)
    u_index = np.clip((us * cdf.width).astype(np.int64), 0, cdf.width - 1)
    v_index = np.clip((vs * cdf.height).astype(np.int64), 0, cdf.height - 1)
    histogram = np.bincount(v_index * cdf.width + u_index, minlength=cdf.width * cdf.height)

    distance = 0.5 * np.abs(histogram / num_samples - expected).sum()
    print(f"  Sampled {num_samples} points, total variation distance {distance:.4f} (tolerance {tolerance})")
    return _report("Distribution", distance < tolerance)


def check_pdf_integration(cdf: EnvironmentCDF, tolerance: float = 0.05) -> bool:
    """
    Integrate the evaluated pdf over the sphere, one pixel at a time:
    sum of pdf(u, v) * sin(theta) * dtheta * dphi, which should be 1.
    """
    print("\nTesting PDF integration (should sum to 1.0)...")
    if cdf.is_empty:
        print("  ERROR: Distribution is empty")
        return _report("PDF integration", False)

    uv_u = (np.arange(cdf.width) + 0.5) / cdf.width
    uv_v = (np.arange(cdf.height) + 0.5) / cdf.height
    grid_u, grid_v = np.meshgrid(uv_u, uv_v)
    pdf = environment_pdf_batch(grid_u.ravel(), grid_v.ravel(), cdf)

    # Solid angle of pixel
    dtheta = math.pi / cdf.height
    dphi = 2.0 * math.pi / cdf.width
    solid_angle = np.sin(grid_v.ravel() * math.pi) * dtheta * dphi
    integral = float(np.sum(pdf * solid_angle))

    print(f"  PDF integrates to: {integral} (expected 1.0)")
    success = abs(integral - 1.0) < tolerance
    if not success:
        print(f"  ERROR: integration error {abs(integral - 1.0)}")
    return _report("PDF integration", success)


def check_pdf_consistency(cdf: EnvironmentCDF, num_samples: int = 1000,
                          tolerance: float = 0.01, seed: int = 0) -> bool:
    """
    The pdf reported by the sampler must equal the pdf evaluated at the
    returned coordinate.
    """
    print("\nTesting PDF consistency (sample PDF == evaluate PDF)...")
    rng = np.random.default_rng(seed)
    us, vs, sample_pdfs = sample_environment_map_batch(rng.random(num_samples), rng.random(num_samples), cdf)
    failures = 0
    for i in range(num_samples):
        pdf_eval = environment_pdf(us[i], vs[i], cdf)
        error = abs(sample_pdfs[i] - pdf_eval) / max(sample_pdfs[i], pdf_eval)
        if not error <= tolerance:
            if failures < MAX_REPORTED_ERRORS:
                print(f"  ERROR: Sample {i} - sample.pdf={sample_pdfs[i]}, eval.pdf={pdf_eval} (error: {error})")
            failures += 1

    if failures:
        print(f"  {failures} mismatches out of {num_samples} samples")
    return _report(f"PDF consistency ({num_samples} samples)", failures == 0)


def check_single_bright_pixel(width: int = 64, height: int = 32, num_samples: int = 10000,
                              min_hit_fraction: float = 0.5, seed: int = 0) -> bool:
    """
    A single very bright texel on a dim background must receive most samples.
    """
    print("\nTesting single bright pixel (most samples should hit it)...")
    env_map, (bright_u, bright_v) = generate_bright_pixel_env_map(width, height)
    cdf = build_environment_cdf(env_map)

    rng = np.random.default_rng(seed)
    us, vs, _ = sample_environment_map_batch(rng.random(num_samples), rng.random(num_samples), cdf)
    hits = sum(UV(u, v).pixel(width, height) == (bright_u, bright_v) for u, v in zip(us, vs))
    hit_fraction = hits / num_samples

    print(f"  Bright pixel hit {100.0 * hit_fraction:.2f}% of the time")
    success = hit_fraction > min_hit_fraction
    if not success:
        print(f"  ERROR: expected >{100.0 * min_hit_fraction:.0f}%, got {100.0 * hit_fraction:.2f}%")
    return _report("Bright pixel", success)


def run_all_checks(image_data, width=None, height=None, num_samples: int = 200000, num_consistency_samples: int = 1000,
                   seed: int = 0) -> dict:
    """
    Run the whole battery against the distribution of image_data plus the
    synthetic uniform and bright-pixel maps. Returns {check name: passed}.
    """
    cdf = build_environment_cdf(image_data, width, height, debug=True)
    print_cdf_statistics(cdf)
    return {
        "monotonicity": check_cdf_monotonicity(cdf),
        "normalization": check_cdf_normalization(cdf),
        "uniform_environment": check_uniform_environment(),
        "distribution": check_sample_distribution(cdf, image_data, num_samples=num_samples, seed=seed),
        "pdf_integration": check_pdf_integration(cdf),
        "pdf_consistency": check_pdf_consistency(cdf, num_samples=num_consistency_samples, seed=seed),
        "bright_pixel": check_single_bright_pixel(seed=seed),
    }
