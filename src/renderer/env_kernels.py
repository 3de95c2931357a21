# renderer/env_kernels.py

import math
import numpy as np
from numba import njit

# Lower bound on sin(theta) so the density stays finite at the poles
SIN_THETA_EPSILON = 1e-4
# Density of the uniform sphere, returned for malformed (empty) distributions
UNIFORM_SPHERE_PDF = 1.0 / (4.0 * math.pi)
# Largest double below 1.0; query coordinates are clamped to [0, ONE_MINUS_EPSILON]
ONE_MINUS_EPSILON = 1.0 - 2.0 ** -53


@njit
def lower_bound(cdf, value):
    """
    Returns the smallest index i such that cdf[i] >= value,
    or len(cdf) if there is none.
    """
    left = 0
    right = cdf.shape[0]
    while left < right:
        mid = (left + right) // 2
        if cdf[mid] < value:
            left = mid + 1
        else:
            right = mid
    return left


@njit
def upper_bound(cdf, value):
    """
    Returns the smallest index i such that cdf[i] > value,
    or len(cdf) if there is none.
    """
    left = 0
    right = cdf.shape[0]
    while left < right:
        mid = (left + right) // 2
        if cdf[mid] <= value:
            left = mid + 1
        else:
            right = mid
    return left


@njit
def binary_search_cdf(cdf, value):
    """
    Perform a binary search on a 1D CDF array.
    Returns the index i such that cdf[i-1] < value <= cdf[i], clamped to
    [0, len(cdf) - 1]. NaN maps to 0.
    """
    last = cdf.shape[0] - 1
    # Handle edge cases
    if value <= cdf[0]:
        return 0
    if value >= cdf[last]:
        return last
    return min(lower_bound(cdf, value), last)


@njit
def cdf_mass(cdf, index):
    """Probability mass of cell index, recovered as a CDF difference."""
    if index == 0:
        return cdf[0]
    return cdf[index] - cdf[index - 1]


@njit
def search_cdf(cdf, value):
    """
    binary_search_cdf, except that a cell with zero mass is never returned.

    A zero-mass cell can only be hit on a tie with a plateau of the CDF
    (e.g. value == 0 over a leading black column). The index moves to the
    cell that owns the plateau: the first later cell with positive mass, or
    the first cell reaching the final value when the plateau is the tail.
    """
    index = binary_search_cdf(cdf, value)
    if cdf_mass(cdf, index) > 0.0:
        return index
    last = cdf.shape[0] - 1
    plateau = cdf[index]
    if plateau < cdf[last]:
        return min(upper_bound(cdf, plateau), last)
    return min(lower_bound(cdf, plateau), last)


@njit
def solid_angle_pdf(marginal_pdf, conditional_pdf, v, width, height):
    """
    Convert the discrete mass of a cell into a density per unit solid angle.

    width*height turns cell mass into density over the unit UV square and
    2*pi^2*sin(theta) is the Jacobian from UV area to solid angle on an
    equirectangular map.
    """
    sin_theta = max(math.sin(v * math.pi), SIN_THETA_EPSILON)
    return (conditional_pdf * marginal_pdf * width * height) / (2.0 * math.pi * math.pi * sin_theta)


@njit
def sample_kernel(random_u, random_v, marginal_cdf, conditional_cdfs):
    """
    Inverse-CDF sample of the distribution.
    conditional_cdfs is the (height, width) view of the conditional buffer.
    Returns (u, v, pdf) with u, v at the center of the chosen pixel.
    """
    height = conditional_cdfs.shape[0]
    width = conditional_cdfs.shape[1]

    # Sample V from the marginal CDF, then U from the conditional CDF of row v
    v_index = search_cdf(marginal_cdf, random_v)
    row = conditional_cdfs[v_index]
    u_index = search_cdf(row, random_u)

    u = (u_index + 0.5) / width
    v = (v_index + 0.5) / height
    pdf = solid_angle_pdf(cdf_mass(marginal_cdf, v_index), cdf_mass(row, u_index), v, width, height)
    return u, v, pdf


@njit
def pdf_kernel(u, v, marginal_cdf, conditional_cdfs):
    """
    Density per solid angle at (u, v). Uses direct quantization instead of
    a search, then the same mass-to-density conversion as sample_kernel.
    """
    height = conditional_cdfs.shape[0]
    width = conditional_cdfs.shape[1]

    # Clamp UV to valid range; the negated comparisons also catch NaN
    if not u >= 0.0:
        u = 0.0
    if not u <= ONE_MINUS_EPSILON:
        u = ONE_MINUS_EPSILON
    if not v >= 0.0:
        v = 0.0
    if not v <= ONE_MINUS_EPSILON:
        v = ONE_MINUS_EPSILON

    u_index = min(max(int(math.floor(u * width)), 0), width - 1)
    v_index = min(max(int(math.floor(v * height)), 0), height - 1)

    marginal_pdf = cdf_mass(marginal_cdf, v_index)
    conditional_pdf = cdf_mass(conditional_cdfs[v_index], u_index)
    return solid_angle_pdf(marginal_pdf, conditional_pdf, v, width, height)


@njit
def sample_batch_kernel(randoms_u, randoms_v, marginal_cdf, conditional_cdfs, out_u, out_v, out_pdf):
    for i in range(randoms_u.shape[0]):
        u, v, pdf = sample_kernel(randoms_u[i], randoms_v[i], marginal_cdf, conditional_cdfs)
        out_u[i] = u
        out_v[i] = v
        out_pdf[i] = pdf


@njit
def pdf_batch_kernel(us, vs, marginal_cdf, conditional_cdfs, out_pdf):
    for i in range(us.shape[0]):
        out_pdf[i] = pdf_kernel(us[i], vs[i], marginal_cdf, conditional_cdfs)


def uniform_sample_arrays(count: int):
    """Fallback batch result for an empty distribution."""
    return (np.full(count, 0.5), np.full(count, 0.5), np.full(count, UNIFORM_SPHERE_PDF))
