# renderer/env_map_utils.py

import numpy as np


def generate_gradient_env_map(width=512, height=256):
    """
    Generate a gradient environment map.
    Interpolates vertically between a zenith color and a horizon color.

    Args:
        width (int): The width of the generated environment map.
        height (int): The height of the generated environment map.

    Returns:
        np.ndarray: A (height x width x 4) RGBA array in float32 (alpha = 1).
    """
    env_map = np.ones((height, width, 4), dtype=np.float32)
    # Define the zenith (top) and horizon (bottom) colors.
    zenith_color = np.array([0.2, 0.4, 0.8], dtype=np.float32)   # Deep blue sky
    horizon_color = np.array([1.0, 0.8, 0.6], dtype=np.float32)    # Warm light near horizon

    # t goes from 0 at the top to 1 at the bottom
    t = np.linspace(0.0, 1.0, height, dtype=np.float32)[:, None]
    env_map[:, :, :3] = ((1.0 - t) * zenith_color + t * horizon_color)[:, None, :]
    return env_map


def generate_uniform_env_map(width=64, height=32, value=1.0):
    """
    Generate a constant environment map (all texels = value, alpha included).
    """
    return np.full((height, width, 4), value, dtype=np.float32)


def generate_bright_pixel_env_map(width=64, height=32, background=0.01, intensity=1000.0, pixel=None):
    """
    Generate a dim environment map with a single very bright texel.

    Args:
        background (float): Value of every other texel.
        intensity (float): RGB value of the bright texel.
        pixel (tuple): (u_index, v_index) of the bright texel, defaults to the map center.

    Returns:
        tuple: (env_map, (u_index, v_index))
    """
    if pixel is None:
        pixel = (width // 2, height // 2)
    env_map = np.full((height, width, 4), background, dtype=np.float32)
    bright_u, bright_v = pixel
    env_map[bright_v, bright_u, :3] = intensity
    return env_map, (bright_u, bright_v)
