# renderer/env_sampling.py

import numpy as np
from core.uv import UV, env_dir_to_uv
from renderer.env_importance import EnvironmentCDF
from .env_kernels import (
    UNIFORM_SPHERE_PDF,
    pdf_batch_kernel,
    pdf_kernel,
    sample_batch_kernel,
    sample_kernel,
    uniform_sample_arrays,
)


class EnvSample(UV):
    """
    A sampled map coordinate together with its probability density
    per unit solid angle.
    """
    def __init__(self, u: float, v: float, pdf: float):
        super().__init__(u, v)
        self.pdf = pdf

    def __repr__(self) -> str:
        return f"EnvSample(u={self.u}, v={self.v}, pdf={self.pdf})"


def sample_environment_map(random_u: float, random_v: float, cdf: EnvironmentCDF) -> EnvSample:
    """
    Draw a map coordinate proportional to luminance * sin(theta).

    Args:
        random_u: Uniform random number in [0, 1) selecting the column
        random_v: Uniform random number in [0, 1) selecting the row
        cdf: Distribution built by build_environment_cdf

    Returns:
        EnvSample at the center of the chosen pixel, pdf always > 0.
        An empty distribution yields u = v = 0.5 and the uniform sphere pdf.
    """
    if cdf.is_empty:
        return EnvSample(0.5, 0.5, UNIFORM_SPHERE_PDF)
    u, v, pdf = sample_kernel(float(random_u), float(random_v), cdf.marginal_cdf, cdf.conditional_cdfs)
    return EnvSample(u, v, pdf)


def environment_pdf(u: float, v: float, cdf: EnvironmentCDF) -> float:
    """
    Density per unit solid angle that sample_environment_map assigns to the
    pixel containing (u, v). Coordinates outside [0, 1) are clamped.
    """
    if cdf.is_empty:
        return UNIFORM_SPHERE_PDF
    return pdf_kernel(float(u), float(v), cdf.marginal_cdf, cdf.conditional_cdfs)


def environment_pdf_direction(direction, cdf: EnvironmentCDF) -> float:
    """
    Density per unit solid angle of a world-space direction (y-up), as
    needed when weighting a BSDF-sampled direction against the environment.
    """
    u, v = env_dir_to_uv(direction)
    return environment_pdf(u, v, cdf)


def sample_environment_map_batch(randoms_u, randoms_v, cdf: EnvironmentCDF):
    """
    Vectorized sample_environment_map.

    Returns:
        (u, v, pdf) float64 arrays with one entry per random pair.
    """
    randoms_u = np.ascontiguousarray(randoms_u, dtype=np.float64).reshape(-1)
    randoms_v = np.ascontiguousarray(randoms_v, dtype=np.float64).reshape(-1)
    if randoms_u.shape != randoms_v.shape:
        raise ValueError(f"Got {randoms_u.shape[0]} u randoms but {randoms_v.shape[0]} v randoms")
    count = randoms_u.shape[0]
    if cdf.is_empty:
        return uniform_sample_arrays(count)

    out_u = np.empty(count, dtype=np.float64)
    out_v = np.empty(count, dtype=np.float64)
    out_pdf = np.empty(count, dtype=np.float64)
    sample_batch_kernel(randoms_u, randoms_v, cdf.marginal_cdf, cdf.conditional_cdfs, out_u, out_v, out_pdf)
    return out_u, out_v, out_pdf


def environment_pdf_batch(us, vs, cdf: EnvironmentCDF) -> np.ndarray:
    """Vectorized environment_pdf."""
    us = np.ascontiguousarray(us, dtype=np.float64).reshape(-1)
    vs = np.ascontiguousarray(vs, dtype=np.float64).reshape(-1)
    if us.shape != vs.shape:
        raise ValueError(f"Got {us.shape[0]} u coordinates but {vs.shape[0]} v coordinates")
    if cdf.is_empty:
        return np.full(us.shape[0], UNIFORM_SPHERE_PDF)

    out_pdf = np.empty(us.shape[0], dtype=np.float64)
    pdf_batch_kernel(us, vs, cdf.marginal_cdf, cdf.conditional_cdfs, out_pdf)
    return out_pdf
