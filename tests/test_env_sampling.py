import math
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from core.uv import UV, env_dir_to_uv, env_uv_to_dir
from renderer.env_importance import EnvironmentCDF, build_cdf_from_weights, build_environment_cdf
from renderer.env_kernels import UNIFORM_SPHERE_PDF, binary_search_cdf, search_cdf
from renderer.env_map_utils import (
    generate_bright_pixel_env_map,
    generate_gradient_env_map,
    generate_uniform_env_map,
)
from renderer.env_sampling import (
    EnvSample,
    environment_pdf,
    environment_pdf_batch,
    environment_pdf_direction,
    sample_environment_map,
    sample_environment_map_batch,
)


@pytest.fixture(scope="module")
def gradient_cdf():
    return build_environment_cdf(generate_gradient_env_map(64, 32))


def test_binary_search_boundaries():
    cdf = np.array([0.25, 0.5, 0.75, 1.0], dtype=np.float32)

    assert binary_search_cdf(cdf, 0.0) == 0
    assert binary_search_cdf(cdf, 0.25) == 0
    assert binary_search_cdf(cdf, 0.3) == 1
    assert binary_search_cdf(cdf, 0.75) == 2
    assert binary_search_cdf(cdf, 0.99) == 3
    assert binary_search_cdf(cdf, 1.0) == 3
    assert binary_search_cdf(cdf, 7.0) == 3
    assert binary_search_cdf(cdf, -1.0) == 0
    assert binary_search_cdf(cdf, math.nan) == 0


def test_search_skips_zero_mass_cells():
    cdf = np.array([0.0, 0.0, 0.5, 0.5, 1.0, 1.0], dtype=np.float32)

    assert search_cdf(cdf, 0.0) == 2
    assert search_cdf(cdf, 0.5) == 2
    assert search_cdf(cdf, 0.6) == 4
    assert search_cdf(cdf, 1.0) == 4
    assert search_cdf(cdf, 2.0) == 4


def test_sample_lands_on_pixel_centers(gradient_cdf):
    sample = sample_environment_map(0.3, 0.7, gradient_cdf)

    assert isinstance(sample, EnvSample)
    assert (sample.u * 64) % 1.0 == pytest.approx(0.5)
    assert (sample.v * 32) % 1.0 == pytest.approx(0.5)
    assert sample.pdf > 0


def test_two_by_two_sample_pdf():
    cdf = build_cdf_from_weights([[10.0, 1.0], [1.0, 1.0]])
    sample = sample_environment_map(0.5, 0.5, cdf)

    assert (sample.u, sample.v) == (0.25, 0.25)
    expected = (10.0 / 11.0) * (11.0 / 13.0) * 4 / (2.0 * math.pi ** 2 * math.sin(0.25 * math.pi))
    assert sample.pdf == pytest.approx(expected, rel=1e-5)


def test_sample_and_eval_agree(gradient_cdf):
    rng = np.random.default_rng(1)
    for random_u, random_v in rng.random((1000, 2)):
        sample = sample_environment_map(random_u, random_v, gradient_cdf)
        pdf_eval = environment_pdf(sample.u, sample.v, gradient_cdf)
        assert abs(sample.pdf - pdf_eval) / max(sample.pdf, pdf_eval) < 0.01


def test_batch_matches_scalar(gradient_cdf):
    rng = np.random.default_rng(2)
    randoms_u, randoms_v = rng.random(64), rng.random(64)
    us, vs, pdfs = sample_environment_map_batch(randoms_u, randoms_v, gradient_cdf)

    for i in range(64):
        sample = sample_environment_map(randoms_u[i], randoms_v[i], gradient_cdf)
        assert (us[i], vs[i]) == (sample.u, sample.v)
        assert pdfs[i] == pytest.approx(sample.pdf, rel=1e-12)
    np.testing.assert_allclose(environment_pdf_batch(us, vs, gradient_cdf), pdfs, rtol=1e-12)


def test_uniform_map_has_uniform_sphere_density():
    cdf = build_environment_cdf(generate_uniform_env_map(64, 32))
    rng = np.random.default_rng(3)
    _, _, pdfs = sample_environment_map_batch(rng.random(500), rng.random(500), cdf)

    np.testing.assert_allclose(pdfs, UNIFORM_SPHERE_PDF, rtol=1e-2)


def test_pdf_is_positive_for_boundary_randoms():
    # Black first row and black first column: random 0 must not pick a zero-mass cell.
    weights = np.ones((4, 8), dtype=np.float32)
    weights[0] = 0.0
    weights[:, 0] = 0.0
    cdf = build_cdf_from_weights(weights)

    for random_u in (0.0, -0.5, 1.0, 1.5, math.nan):
        for random_v in (0.0, -0.5, 1.0, 1.5, math.nan):
            sample = sample_environment_map(random_u, random_v, cdf)
            assert sample.pdf > 0
            assert 0.0 <= sample.u < 1.0
            assert 0.0 <= sample.v < 1.0
    sample = sample_environment_map(0.0, 0.0, cdf)
    assert (sample.u, sample.v) == (1.5 / 8, 1.5 / 4)


def test_trailing_black_column_is_never_sampled():
    cdf = build_cdf_from_weights([[1.0, 0.0]])
    sample = sample_environment_map(1.5, 0.5, cdf)

    assert sample.u == 0.25
    assert sample.pdf > 0


def test_eval_clamps_out_of_range_coordinates(gradient_cdf):
    assert environment_pdf(1.0, 0.5, gradient_cdf) == environment_pdf(63.5 / 64, 0.5, gradient_cdf)
    assert environment_pdf(-0.2, 0.5, gradient_cdf) == environment_pdf(0.5 / 64, 0.5, gradient_cdf)
    assert environment_pdf(0.5, 1.0, gradient_cdf) > 0
    assert environment_pdf(math.nan, math.nan, gradient_cdf) > 0


def test_empty_cdf_falls_back_to_uniform_sphere():
    cdf = EnvironmentCDF.empty()
    sample = sample_environment_map(0.3, 0.9, cdf)

    assert (sample.u, sample.v, sample.pdf) == (0.5, 0.5, UNIFORM_SPHERE_PDF)
    assert environment_pdf(0.1, 0.2, cdf) == UNIFORM_SPHERE_PDF
    us, vs, pdfs = sample_environment_map_batch([0.1, 0.2], [0.3, 0.4], cdf)
    np.testing.assert_array_equal(pdfs, [UNIFORM_SPHERE_PDF] * 2)
    np.testing.assert_array_equal(environment_pdf_batch([0.1], [0.2], cdf), [UNIFORM_SPHERE_PDF])


def test_batch_rejects_mismatched_lengths(gradient_cdf):
    with pytest.raises(ValueError):
        sample_environment_map_batch([0.1, 0.2], [0.3], gradient_cdf)
    with pytest.raises(ValueError):
        environment_pdf_batch([0.1], [0.3, 0.4], gradient_cdf)


def test_bright_pixel_concentrates_samples():
    env_map, (bright_u, bright_v) = generate_bright_pixel_env_map(64, 32)
    cdf = build_environment_cdf(env_map)
    rng = np.random.default_rng(4)
    us, vs, _ = sample_environment_map_batch(rng.random(10000), rng.random(10000), cdf)

    hits = np.count_nonzero((np.floor(us * 64) == bright_u) & (np.floor(vs * 32) == bright_v))
    assert hits > 5000


def test_uv_direction_conversion():
    direction = env_uv_to_dir(0.25, 0.5)
    np.testing.assert_allclose(direction, [0.0, 0.0, -1.0], atol=1e-6)
    assert env_dir_to_uv([0.0, 0.0, -1.0]) == pytest.approx((0.25, 0.5))
    assert env_dir_to_uv([0.0, 1.0, 0.0])[1] == 0.0

    uv = UV.from_direction(env_uv_to_dir(0.8, 0.3))
    assert (uv.u, uv.v) == pytest.approx((0.8, 0.3), abs=1e-6)
    assert UV(0.85, 0.25).pixel(10, 10) == (8, 2)
    assert UV(1.0, -0.1).pixel(10, 10) == (9, 0)


def test_direction_pdf_matches_sample_pdf(gradient_cdf):
    rng = np.random.default_rng(5)
    for random_u, random_v in rng.random((50, 2)):
        sample = sample_environment_map(random_u, random_v, gradient_cdf)
        assert environment_pdf_direction(sample.direction(), gradient_cdf) == pytest.approx(sample.pdf, rel=1e-3)


def test_shared_cdf_sampling_across_threads(gradient_cdf):
    rng = np.random.default_rng(6)
    randoms_u, randoms_v = rng.random(2000), rng.random(2000)
    expected = sample_environment_map_batch(randoms_u, randoms_v, gradient_cdf)
    expected_scalar = [sample_environment_map(u, v, gradient_cdf).pdf for u, v in zip(randoms_u[:200], randoms_v[:200])]

    def draw(_):
        us, vs, pdfs = sample_environment_map_batch(randoms_u, randoms_v, gradient_cdf)
        scalar = [sample_environment_map(u, v, gradient_cdf).pdf for u, v in zip(randoms_u[:200], randoms_v[:200])]
        return us, vs, pdfs, scalar

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(draw, range(16)))

    for us, vs, pdfs, scalar in results:
        np.testing.assert_array_equal(us, expected[0])
        np.testing.assert_array_equal(vs, expected[1])
        np.testing.assert_array_equal(pdfs, expected[2])
        assert scalar == expected_scalar
    np.testing.assert_array_equal(environment_pdf_batch(expected[0], expected[1], gradient_cdf), expected[2])
