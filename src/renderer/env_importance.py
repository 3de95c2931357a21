# renderer/env_importance.py

import numpy as np

# Rec. 709 luminance coefficients
LUMINANCE_WEIGHTS = np.array([0.212671, 0.715160, 0.072169], dtype=np.float32)


class EnvironmentCDF:
    """
    Two-level piecewise-constant distribution over an equirectangular map.

    The marginal CDF (length height) picks a row, the conditional CDF of that
    row (length width) picks a column. Conditional CDFs are stored as one flat
    row-major float32 buffer of width*height values. All arrays are read-only
    once constructed, so a single instance can be shared by any number of
    sampling threads.
    """
    def __init__(self, marginal_cdf, conditional_cdfs):
        marginal = np.array(marginal_cdf, dtype=np.float32).reshape(-1)
        conditional = np.array(conditional_cdfs, dtype=np.float32)
        if conditional.ndim != 2:
            raise ValueError(f"conditional CDFs must be 2D (height, width), got shape {conditional.shape}")
        if conditional.shape[0] != marginal.shape[0]:
            raise ValueError(
                f"marginal CDF has {marginal.shape[0]} rows but there are {conditional.shape[0]} conditional CDFs"
            )
        self._height, self._width = conditional.shape
        if self._height == 0 or self._width == 0:
            self._width = self._height = 0
            marginal = np.zeros(0, dtype=np.float32)
            conditional = np.zeros((0, 0), dtype=np.float32)

        self._flat = np.ascontiguousarray(conditional).reshape(-1)
        self._flat.flags.writeable = False
        marginal.flags.writeable = False
        self._marginal = marginal

    @classmethod
    def empty(cls) -> "EnvironmentCDF":
        return cls(np.zeros(0, dtype=np.float32), np.zeros((0, 0), dtype=np.float32))

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    @property
    def is_empty(self) -> bool:
        return self.width == 0 or self.height == 0

    @property
    def marginal_cdf(self) -> np.ndarray:
        return self._marginal

    @property
    def conditional_cdfs(self) -> np.ndarray:
        """(height, width) read-only view over the flat conditional buffer."""
        return self._flat.reshape(self.height, self.width)

    @property
    def flat_conditional_cdf(self) -> np.ndarray:
        """Row-major width*height buffer, the layout uploaded to the device."""
        return self._flat

    def conditional_cdf(self, v: int) -> np.ndarray:
        start = v * self.width
        return self._flat[start:start + self.width]

    def __repr__(self) -> str:
        return f"EnvironmentCDF({self.width}x{self.height})"


def _as_pixels(image_data, width=None, height=None) -> np.ndarray:
    """
    Bring image data to a (height, width, channels) float32 array.

    Accepts either a (H, W, 3|4) array or a flat row-major buffer together
    with its width and height (4 floats per texel).
    """
    pixels = np.asarray(image_data, dtype=np.float32)
    if pixels.ndim == 3:
        if width is not None and width != pixels.shape[1]:
            raise ValueError(f"width {width} does not match image shape {pixels.shape}")
        if height is not None and height != pixels.shape[0]:
            raise ValueError(f"height {height} does not match image shape {pixels.shape}")
    else:
        if width is None or height is None:
            raise ValueError("width and height are required for a flat image buffer")
        if width < 0 or height < 0:
            raise ValueError(f"Invalid environment map dimensions: {width}x{height}")
        if pixels.size != width * height * 4:
            raise ValueError(
                f"Image buffer holds {pixels.size} floats, expected {width * height * 4} for a {width}x{height} RGBA map"
            )
        pixels = pixels.reshape(height, width, 4)
    if pixels.shape[2] not in (3, 4):
        raise ValueError(f"Expected RGB or RGBA texels, got {pixels.shape[2]} channels")
    return pixels


def compute_weight_field(image_data, width=None, height=None) -> np.ndarray:
    """
    Compute the importance weight of every pixel of an equirectangular map.

    Each pixel is weighted by its luminance and by sin(theta) (to account for
    the spherical area element), with theta taken at the pixel's row center.
    Alpha is ignored. NaN/Inf texels propagate unchanged.

    Returns:
      weights: a (height, width) np.float32 array.
    """
    pixels = _as_pixels(image_data, width, height)
    H = pixels.shape[0]
    # theta from 0 to pi; use the pixel's center (y+0.5)
    theta = (np.arange(H, dtype=np.float32) + 0.5) / H * np.float32(np.pi)
    luminance = pixels[..., :3] @ LUMINANCE_WEIGHTS
    return (luminance * np.sin(theta)[:, None]).astype(np.float32)


def build_cdf_from_weights(weights, debug: bool = False) -> EnvironmentCDF:
    """
    Build the marginal and per-row conditional CDFs from a (height, width)
    weight field.

    Sums are accumulated in float64 and narrowed to float32 after
    normalization. A row whose sum is not positive becomes the uniform CDF
    (u+1)/width; a map whose total is not positive gets the uniform marginal
    (v+1)/height.
    """
    weights = np.asarray(weights, dtype=np.float32)
    if weights.ndim != 2:
        raise ValueError(f"Weight field must be 2D (height, width), got shape {weights.shape}")
    height, width = weights.shape
    if width == 0 or height == 0:
        return EnvironmentCDF.empty()

    _warn_on_invalid_weights(weights)

    running = np.cumsum(weights, axis=1, dtype=np.float64)
    row_sums = running[:, -1]

    conditional = np.empty_like(running)
    has_mass = row_sums > 0
    conditional[has_mass] = running[has_mass] / row_sums[has_mass][:, None]
    # Degenerate rows (all zeros) are sampled uniformly
    conditional[~has_mass] = np.arange(1, width + 1, dtype=np.float64) / width

    marginal = np.cumsum(row_sums)
    total = marginal[-1]
    if total > 0:
        marginal /= total
    else:
        marginal = np.arange(1, height + 1, dtype=np.float64) / height

    if debug:
        print(f"CDF construction complete. Total luminance: {total}")

    return EnvironmentCDF(marginal, conditional)


def build_environment_cdf(image_data, width=None, height=None, debug: bool = False) -> EnvironmentCDF:
    """
    Build the importance sampling distribution for an equirectangular HDR map.

    image_data is either a flat RGBA float buffer of length width*height*4
    (row-major, v=0 is the top row) or an (H, W, 3|4) array in linear
    radiance. Deterministic: the same image always yields the same CDF.
    """
    pixels = _as_pixels(image_data, width, height)
    H, W = pixels.shape[:2]
    if debug:
        print(f"Building environment CDF for {W}x{H} map...")
    if W == 0 or H == 0:
        return EnvironmentCDF.empty()
    return build_cdf_from_weights(compute_weight_field(pixels), debug=debug)


def _warn_on_invalid_weights(weights: np.ndarray):
    non_finite = int(np.count_nonzero(~np.isfinite(weights)))
    negative = int(np.count_nonzero(weights < 0))
    if non_finite or negative:
        print(f"Warning: environment weight field has {negative} negative and {non_finite} non-finite values; "
              "the resulting distribution may be biased")
