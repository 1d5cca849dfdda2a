"""HMD device profile and the stereo setup values derived from it.

The profile itself comes from whatever enumerated the device (or from a
JSON file, or the DK1 defaults when there is no device).  StereoConfig
turns it into the numbers the renderer and the distortion helper need.
"""
import json
import math

from dataclasses import dataclass, fields, asdict


@dataclass
class HMDInfo:
    """Physical description of the headset.  Sizes are in meters."""

    h_resolution:             int   = 1280
    v_resolution:             int   = 800
    h_screen_size:            float = 0.14976
    v_screen_size:            float = 0.09360
    v_screen_center:          float = 0.04680
    eye_to_screen_distance:   float = 0.04100
    lens_separation_distance: float = 0.06350
    interpupillary_distance:  float = 0.06400
    distortion_k:             tuple = (1.0, 0.22, 0.24, 0.0)
    chroma_ab_correction:     tuple = (0.996, -0.004, 1.014, 0.0)
    desktop_x:                int   = 100
    desktop_y:                int   = 100
    display_device_name:      str   = ''

    @classmethod
    def from_dict(cls, d):
        "Keys missing from d keep their DK1 defaults.  Unknown keys are ignored."
        known  = {f.name for f in fields(cls)}
        kwargs = {key: val for key, val in d.items() if key in known}
        for key in ('distortion_k', 'chroma_ab_correction'):
            if key in kwargs:
                kwargs[key] = tuple(float(v) for v in kwargs[key])
                if len(kwargs[key]) != 4:
                    raise ValueError(f"{key} needs 4 values, got {len(kwargs[key])}")
        return cls(**kwargs)

    def to_dict(self):
        d = asdict(self)
        d['distortion_k']         = list(self.distortion_k)
        d['chroma_ab_correction'] = list(self.chroma_ab_correction)
        return d

    @classmethod
    def load(cls, path):
        with open(path, 'r') as fl:
            return cls.from_dict(json.load(fl))

    def save(self, path):
        with open(path, 'w') as fl:
            json.dump(self.to_dict(), fl, indent=4)


def default_dk1_hmd_info():
    "The Rift DK1 profile, used when no headset is attached."
    return HMDInfo()


class StereoConfig(object):
    """Derived stereo rendering parameters for an HMDInfo.

    distortion_fit is the point in screen space (-1..1 per eye) which should
        still be visible after distortion; the default is the left edge.
        (0, 0) means "no fit" and gives a distortion scale of 1.
    """

    def __init__(self, hmd_info, ipd=None, distortion_fit=(-1.0, 0.0)):
        self.hmd            = hmd_info
        self.ipd            = hmd_info.interpupillary_distance if ipd is None else ipd
        self.distortion_fit = distortion_fit

        # Per-eye aspect, from the pixel grid of half the panel.
        self.stereo_aspect = 0.5 * hmd_info.h_resolution / hmd_info.v_resolution

        # Distance from the center of each eye's half of the screen to its
        #  lens center, in viewport units.  Positive shifts toward the nose.
        lens_offset             = hmd_info.lens_separation_distance * 0.5
        lens_shift              = hmd_info.h_screen_size * 0.25 - lens_offset
        self.x_center_offset    = 4.0 * lens_shift / hmd_info.h_screen_size

        view_center                   = hmd_info.h_screen_size * 0.25
        eye_projection_shift          = view_center - hmd_info.lens_separation_distance * 0.5
        self.projection_center_offset = 4.0 * eye_projection_shift / hmd_info.h_screen_size

        self.distortion_scale = self._fit_distortion_scale()

        perceived_half_screen = (hmd_info.v_screen_size / 2) * self.distortion_scale
        self.y_fov_radians    = 2.0 * math.atan(perceived_half_screen / hmd_info.eye_to_screen_distance)

    def distortion_fn(self, r):
        "Radius after the raw (profile) radial distortion."
        k0, k1, k2, k3 = self.hmd.distortion_k
        rsq = r * r
        return r * (k0 + rsq * (k1 + rsq * (k2 + rsq * k3)))

    def _fit_distortion_scale(self):
        fit_x, fit_y = self.distortion_fit
        if abs(fit_x) < 0.0001 and abs(fit_y) < 0.0001:
            return 1.0

        # Fit point into distortion-centered coordinates.
        dx         = fit_x - self.x_center_offset
        dy         = fit_y / self.stereo_aspect
        fit_radius = math.sqrt(dx * dx + dy * dy)
        return self.distortion_fn(fit_radius) / fit_radius
