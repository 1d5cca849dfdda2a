"""Per-eye stereo setup.

Eyes are named 'left' and 'right' everywhere, and per-eye state lives in a
dict keyed by those two names.
"""
import math
import numpy as np

from dataclasses import dataclass
from typing      import Optional

EYES = ('left', 'right')

ZNEAR = 0.01
ZFAR  = 10000.0


def check_eye(eye):
    if eye not in EYES:
        raise ValueError(f"Unknown eye {eye!r}; use 'left' or 'right'")


#=========== 4x4 matrix helpers (column vectors, row-major storage) ============

def translation(x, y, z):
    m = np.identity(4)
    m[:3, 3] = (x, y, z)
    return m

def perspective(fovy, aspect, znear=ZNEAR, zfar=ZFAR):
    "OpenGL style perspective projection.  fovy is in radians."
    f = 1.0 / math.tan(fovy / 2.0)
    return np.array([
        [f / aspect, 0,                            0,                                  0],
        [0,          f,                            0,                                  0],
        [0,          0, (zfar + znear) / (znear - zfar), 2 * zfar * znear / (znear - zfar)],
        [0,          0,                           -1,                                  0],
    ])

def quat_to_matrix(x, y, z, w):
    """Convert a unit quaternion to a 4x4 rotation matrix."""
    m = np.identity(4)
    m[:3, :3] = [
       [1 - 2*(y*y + z*z),     2*(x*y - w*z),     2*(x*z + w*y)],
       [    2*(x*y + w*z), 1 - 2*(x*x + z*z),     2*(y*z - w*x)],
       [    2*(x*z - w*y),     2*(y*z + w*x), 1 - 2*(x*x + y*y)]
    ]
    return m

def quat_inverse(q):
    x, y, z, w = q
    n = x*x + y*y + z*z + w*w
    return (-x / n, -y / n, -z / n, w / n)


@dataclass
class RiftEyeArgs:
    viewport_position:     tuple
    viewport_size:         tuple
    modelview_offset:      np.ndarray
    projection_offset:     np.ndarray
    strabismus_correction: np.ndarray
    distortion:            Optional[object] = None   # LookupTexture or DistortionMesh, once created


def framebuffer_size(eye_size, distortion_scale):
    "Offscreen scene buffer size, enlarged so the distorted edge still has pixels behind it."
    return tuple(int(v * distortion_scale) for v in eye_size)


def build_eye_args(hmd_info, stereo_config, strabismus_correction=(0.0, 0.0, 0.0, 1.0), swap_eyes=False):
    """Build the {'left': RiftEyeArgs, 'right': RiftEyeArgs} setup for a headset.

    strabismus_correction is an (x, y, z, w) quaternion applied to the left
        eye, with its inverse applied to the right.
    swap_eyes puts the left eye on the right half of the panel instead.
        Which half is which depends on the display, so check it there.
    """
    eye_size = (hmd_info.h_resolution // 2, hmd_info.v_resolution)
    halves   = {'left': (0, 0), 'right': (eye_size[0], 0)}
    if swap_eyes:
        halves = {'left': halves['right'], 'right': halves['left']}

    ipd_shift  = stereo_config.ipd / 2.0
    proj_shift = stereo_config.projection_center_offset
    correction = {
        'left' : quat_to_matrix(*strabismus_correction),
        'right': quat_to_matrix(*quat_inverse(strabismus_correction)),
    }

    return {
        eye: RiftEyeArgs(
            viewport_position     = halves[eye],
            viewport_size         = eye_size,
            modelview_offset      = translation(sign * ipd_shift, 0, 0),
            projection_offset     = translation(sign * proj_shift, 0, 0),
            strabismus_correction = correction[eye],
        )
        for eye, sign in (('left', 1.0), ('right', -1.0))
    }


def eye_projection(stereo_config, eye_args):
    "Full projection matrix for one eye: the shared perspective, then the lens center shift."
    width, height = eye_args.viewport_size
    base = perspective(stereo_config.y_fov_radians, width / height, ZNEAR, ZFAR)
    return eye_args.projection_offset @ base
