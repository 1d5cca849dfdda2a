"""Lens distortion correction for the Rift.

The Rift's lenses apply a strong pincushion distortion to whatever is on
the panel.  To cancel it we pre-warp the rendered image with the opposite
(barrel) distortion, either per pixel via a lookup texture or per vertex via
a warped mesh.  Both are built once at startup from the same helper.

Three 2D coordinate spaces are used throughout:

    texture     [0, 1]^2
    screen      [-1, 1]^2  (one eye's half of the panel, NDC style)
    rift        screen shifted by the per-eye lens offset and with y scaled
                by the eye aspect, so the lens axis is at the origin and the
                radial polynomial applies directly.
"""
import numpy as np

from HmdInfo  import StereoConfig
from RiftEyes import check_eye

# Search tolerance in rift space units, and the hard cap on bisection steps.
# From a bracket of [0, 2r] the search needs about log2(2r / 1e-6) steps, so
# well under 30 for any radius on the panel.
BISECTION_TOLERANCE      = 1e-6
MAX_BISECTION_ITERATIONS = 64

# Primitive restart marker in the mesh index buffer (max uint32).
RESTART_INDEX = 0xFFFFFFFF

DEBUG = False


class DistortionConvergenceError(RuntimeError):
    """The inverse distortion search did not converge.

    Means the coefficients don't describe a monotonically increasing
        distortion over the radius asked for.
    """


def texture_to_screen(v):
    return np.asarray(v, dtype=np.float64) * 2.0 - 1.0

def screen_to_texture(v):
    return (np.asarray(v, dtype=np.float64) + 1.0) / 2.0


class RiftDistortionHelper(object):
    """Maps points between the undistorted (rendered) and distorted (as seen
        through the lens) images for one HMD.

    k           4 radial polynomial coefficients, already pre-multiplied by
                the post distortion scale (see from_hmd_info()).
    lens_offset horizontal lens center displacement in rift space.  Negated
                for the left eye.
    eye_aspect  width / height of one eye's half of the screen.

    Every vector function takes either a single 2-vector or an array of
        shape (..., 2).
    """

    def __init__(self, k, lens_offset, eye_aspect):
        self.k           = tuple(float(v) for v in k)
        self.lens_offset = float(lens_offset)
        self.eye_aspect  = float(eye_aspect)

        if len(self.k) != 4:
            raise ValueError(f"Expected 4 distortion coefficients, got {len(self.k)}")

    @classmethod
    def from_hmd_info(cls, hmd_info, stereo_config=None):
        """Derive the helper from a device profile.

        The profile's K values are chosen such that they always give a scale
            > 1.0, i.e. they shrink the image, and the stock pipeline scales it
            back up after distorting.  We fold that post-distortion scale into
            the coefficients instead.
        """
        if stereo_config is None:
            stereo_config = StereoConfig(hmd_info)

        post_distortion_scale = 1.0 / stereo_config.distortion_scale
        k = [kv * post_distortion_scale for kv in hmd_info.distortion_k]

        return cls(k,
                   lens_offset = stereo_config.x_center_offset,
                   eye_aspect  = hmd_info.h_screen_size / 2.0 / hmd_info.v_screen_size)

    #=========== Coordinate spaces ============

    def get_lens_offset(self, eye):
        check_eye(eye)
        return -self.lens_offset if eye == 'left' else self.lens_offset

    def screen_to_rift(self, v, eye):
        v = np.asarray(v, dtype=np.float64)
        return np.stack([v[..., 0] + self.get_lens_offset(eye),
                         v[..., 1] / self.eye_aspect], axis=-1)

    def rift_to_screen(self, v, eye):
        v = np.asarray(v, dtype=np.float64)
        return np.stack([v[..., 0] - self.get_lens_offset(eye),
                         v[..., 1] * self.eye_aspect], axis=-1)

    def texture_to_rift(self, v, eye):
        return self.screen_to_rift(texture_to_screen(v), eye)

    def rift_to_texture(self, v, eye):
        return screen_to_texture(self.rift_to_screen(v, eye))

    #=========== Distortion model ============

    def undistortion_scale_for_radius_squared(self, rsq):
        k0, k1, k2, k3 = self.k
        return k0 + rsq * (k1 + rsq * (k2 + rsq * k3))

    def undistortion_scale_for_radius(self, r):
        return self.undistortion_scale_for_radius_squared(r * r)

    def undistortion_scale(self, v):
        v = np.asarray(v, dtype=np.float64)
        return self.undistortion_scale_for_radius_squared(np.sum(v * v, axis=-1))

    def undistorted_position(self, v):
        v = np.asarray(v, dtype=np.float64)
        return v * np.expand_dims(self.undistortion_scale(v), -1)

    def texture_lookup_value(self, tex_coord, eye):
        "Texture coordinate to sample from for the given (distorted) output texture coordinate."
        rift_pos = self.texture_to_rift(tex_coord, eye)
        return self.rift_to_texture(self.undistorted_position(rift_pos), eye)

    def distortion_scale_for_radius(self, r_target):
        """Find the scale which pre-warps a point at radius r_target so the
            lens bends it back out to r_target.

        Bisects for r_source such that r_source * scale(r_source^2) == r_target,
            then returns 1/scale(r_source^2).

        Raises DistortionConvergenceError if the search hasn't converged
            after MAX_BISECTION_ITERATIONS steps.
        """
        r_target = float(r_target)
        lo, hi   = 0.0, r_target * 2.0

        for iteration in range(MAX_BISECTION_ITERATIONS):
            r_source = (hi - lo) / 2.0 + lo
            scale    = self.undistortion_scale_for_radius_squared(r_source * r_source)
            r_result = scale * r_source
            if abs(r_result - r_target) < BISECTION_TOLERANCE:
                if DEBUG:
                    print(f"DEBUG: r={r_target:.6f} converged in {iteration+1} steps")
                return 1.0 / scale
            if r_result < r_target:
                lo = r_source
            else:
                hi = r_source

        raise DistortionConvergenceError(
            f"Inverse distortion did not converge for radius {r_target} "
            f"after {MAX_BISECTION_ITERATIONS} steps; coefficients {self.k} "
            f"are not monotonic over [0, {2*r_target}]")

    def find_distorted_vertex_position(self, source, eye):
        "Screen space position at which to draw what belongs at screen space point source."
        rift     = self.screen_to_rift(source, eye)
        r_target = np.linalg.norm(rift, axis=-1)
        scale    = np.array([self.distortion_scale_for_radius(r) for r in r_target.ravel()])
        result   = rift * np.expand_dims(scale.reshape(r_target.shape), -1)
        return self.rift_to_screen(result, eye)

    #=========== Generators ============

    def create_lookup_data(self, size, eye):
        """Build the per-pixel remap for one eye.

        size is (width, height).  Returns float32 array of shape (height, width, 2)
            where [y, x] is the undistorted texture coordinate to sample for
            output pixel (x, y).  Row 0 is texture v ~ 0.
        """
        width, height = _check_resolution(size, 1, 'Lookup texture size')
        check_eye(eye)

        # Texture coordinates are at the center of the pixel.
        ys, xs    = np.indices((height, width), dtype=np.float64)
        tex_coord = np.stack([(xs + 0.5) / width, (ys + 0.5) / height], axis=-1)

        return np.ascontiguousarray(self.texture_lookup_value(tex_coord, eye), dtype=np.float32)

    def create_mesh_data(self, resolution, eye):
        """Build the pre-warped triangle strip mesh for one eye.

        resolution is (columns, rows).

        Returns (vertices, indices):
            vertices   float32 (rows*columns, 4) of (pos.x, pos.y, tex.u, tex.v)
            indices    uint32, one strip per row pair, each followed by RESTART_INDEX
        """
        columns, rows = _check_resolution(resolution, 2, 'Distortion mesh resolution')
        check_eye(eye)

        vertices = np.empty((rows * columns, 4), dtype=np.float32)
        for y in range(rows):
            for x in range(columns):
                # Corners land exactly on 0 and 1 here, unlike the pixel centers above.
                tex_coord = np.array([x / (columns - 1), y / (rows - 1)])
                pos       = self.find_distorted_vertex_position(texture_to_screen(tex_coord), eye)
                vertices[y * columns + x] = (pos[0], pos[1], tex_coord[0], tex_coord[1])

        indices = []
        for y in range(rows - 1):
            row_start      = y * columns
            next_row_start = row_start + columns
            for x in range(columns):
                indices.append(next_row_start + x)
                indices.append(row_start + x)
            indices.append(RESTART_INDEX)

        return vertices, np.array(indices, dtype=np.uint32)


def _check_resolution(size, minimum, what):
    if len(size) != 2:
        raise ValueError(f"{what} must be (width, height), got {size!r}")
    width, height = size
    if int(width) != width or int(height) != height or width < minimum or height < minimum:
        raise ValueError(f"{what} must be two integers >= {minimum}, got {size!r}")
    return int(width), int(height)


def save_lookup_image(data, path):
    """Write a lookup grid from create_lookup_data() as an RGB image for inspection.

    R = u, G = v, clipped to [0, 1].  Flipped so texture v=0 is at the bottom
        of the image, the way GL samples it.
    """
    from PIL import Image

    rgb = np.zeros(data.shape[:2] + (3,), dtype=np.uint8)
    rgb[..., :2] = np.round(np.clip(data, 0.0, 1.0) * 255.0)
    Image.fromarray(np.ascontiguousarray(rgb[::-1])).save(path)


# Example usage
if __name__ == "__main__":
    import os
    import sys

    from HmdInfo import default_dk1_hmd_info

    out_dir = sys.argv[1] if len(sys.argv) > 1 else '.'

    helper = RiftDistortionHelper.from_hmd_info(default_dk1_hmd_info())
    print(f"K: {helper.k}")
    print(f"Lens offset: {helper.lens_offset:.4f}  Eye aspect: {helper.eye_aspect:.4f}")

    for eye in ('left', 'right'):
        lookup = helper.create_lookup_data((512, 512), eye)
        path   = os.path.join(out_dir, f"lookup_{eye}.png")
        save_lookup_image(lookup, path)
        print(f"Saved {path}")

        vertices, indices = helper.create_mesh_data((64, 64), eye)
        print(f"{eye} mesh: {len(vertices)} vertices, {len(indices)} indices, "
              f"x range {vertices[:, 0].min():.3f}..{vertices[:, 0].max():.3f}")
