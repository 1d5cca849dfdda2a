import Calibration

from HmdInfo        import StereoConfig, default_dk1_hmd_info
from RiftDistortion import RiftDistortionHelper
from RiftEyes       import EYES, build_eye_args, eye_projection, framebuffer_size


class RiftSetup(object):
    """One-time stereo and distortion setup for a headset.

    Construction is pure math (profile -> stereo config -> distortion helper
        -> per-eye args), so it can run before there is a GL context.

    Init chain: init() with a current GL context builds the distortion
        resource for each eye and stores it on eyes[eye].distortion.
        These are static; nothing is regenerated per frame.
    """
    def __init__(self, hmd_info=None, ipd=None, calibration_path=None, swap_eyes=False):
        if hmd_info is None:
            print("No HMD profile given, using DK1 defaults")
            hmd_info = default_dk1_hmd_info()

        self.hmd_info      = hmd_info
        self.stereo_config = StereoConfig(hmd_info, ipd=ipd)
        self.helper        = RiftDistortionHelper.from_hmd_info(hmd_info, self.stereo_config)

        strabismus_correction = Calibration.get_strabismus_correction(calibration_path)
        self.eyes = build_eye_args(hmd_info, self.stereo_config, strabismus_correction, swap_eyes)

        self.projection = {eye: eye_projection(self.stereo_config, self.eyes[eye]) for eye in EYES}

        eye_size = self.eyes['left'].viewport_size
        self.framebuffer_size = framebuffer_size(eye_size, self.stereo_config.distortion_scale)

    def display_placement(self):
        "((x, y), (width, height)) of the HMD's monitor, for placing a fullscreen window on it."
        from RiftMonitor import rift_position_and_size
        return rift_position_and_size(self.hmd_info)

    def init(self, technique='texture', size=(512, 512), resolution=(64, 64)):
        """See RiftGL.create_distortion_resources() for the arguments.  Returns self.eyes."""
        from RiftGL import create_distortion_resources
        resources = create_distortion_resources(self.helper, technique, size, resolution)
        for eye in EYES:
            self.eyes[eye].distortion = resources[eye]
        return self.eyes

    def close(self):
        for eye in EYES:
            if self.eyes[eye].distortion is not None:
                self.eyes[eye].distortion.close()
                self.eyes[eye].distortion = None
