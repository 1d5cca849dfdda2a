import numpy as np
import pytest

from numpy.testing  import assert_allclose
from PIL            import Image
from HmdInfo        import StereoConfig, default_dk1_hmd_info
from RiftDistortion import (RiftDistortionHelper, DistortionConvergenceError, RESTART_INDEX,
                            texture_to_screen, screen_to_texture, save_lookup_image)

# Furthest a screen corner gets from either lens center, in rift space, for the DK1.
R_MAX = 1.8


def grid_points(lo, hi, n=11):
    xs, ys = np.meshgrid(np.linspace(lo, hi, n), np.linspace(lo, hi, n))
    return np.stack([xs.ravel(), ys.ravel()], axis=-1)


#=========== Coordinate spaces ============

def test_texture_screen_round_trip():
    t = grid_points(0.0, 1.0)
    assert_allclose(screen_to_texture(texture_to_screen(t)), t, atol=1e-12)

def test_texture_to_screen_corners():
    assert_allclose(texture_to_screen((0.0, 0.0)), (-1.0, -1.0))
    assert_allclose(texture_to_screen((1.0, 0.5)), ( 1.0,  0.0))

@pytest.mark.parametrize('eye', ['left', 'right'])
def test_screen_rift_round_trip(dk1_helper, eye):
    s = grid_points(-1.0, 1.0)
    assert_allclose(dk1_helper.rift_to_screen(dk1_helper.screen_to_rift(s, eye), eye), s, atol=1e-12)

def test_screen_to_rift_applies_offset_and_aspect():
    helper = RiftDistortionHelper((1, 0, 0, 0), lens_offset=0.25, eye_aspect=0.5)
    assert_allclose(helper.screen_to_rift((0.5, 0.5), 'left'),  (0.25, 1.0))
    assert_allclose(helper.screen_to_rift((0.5, 0.5), 'right'), (0.75, 1.0))

def test_lens_offset_sign(dk1_helper):
    assert dk1_helper.get_lens_offset('left')  == -dk1_helper.lens_offset
    assert dk1_helper.get_lens_offset('right') ==  dk1_helper.lens_offset

def test_texture_to_rift_is_composition(dk1_helper):
    t = grid_points(0.0, 1.0, 5)
    expected = dk1_helper.screen_to_rift(texture_to_screen(t), 'right')
    assert_allclose(dk1_helper.texture_to_rift(t, 'right'), expected, atol=0)

def test_unknown_eye_rejected(dk1_helper):
    with pytest.raises(ValueError):
        dk1_helper.screen_to_rift((0, 0), 'center')
    with pytest.raises(ValueError):
        dk1_helper.create_lookup_data((4, 4), 0)


#=========== Distortion model ============

def test_needs_four_coefficients():
    with pytest.raises(ValueError):
        RiftDistortionHelper((1, 0.2, 0.1), 0.1, 0.8)

def test_undistortion_scale_polynomial():
    helper = RiftDistortionHelper((1.0, 0.5, 0.25, 0.125), 0.0, 1.0)
    rsq    = 2.0
    assert helper.undistortion_scale_for_radius_squared(rsq) == pytest.approx(1 + 0.5*2 + 0.25*4 + 0.125*8)
    assert helper.undistortion_scale_for_radius(np.sqrt(rsq)) == pytest.approx(4.0)
    assert helper.undistortion_scale((1.0, 1.0)) == pytest.approx(4.0)
    assert_allclose(helper.undistorted_position((1.0, 1.0)), (4.0, 4.0))

def test_forward_scale_monotonic_for_dk1(dk1_helper):
    r     = np.linspace(0.0, R_MAX, 2001)
    scale = dk1_helper.undistortion_scale_for_radius(r)
    assert np.all(np.diff(scale) >= 0.0)
    assert np.all(np.diff(r * scale) > 0.0)

def test_inverse_scale_lands_on_target_radius(dk1_helper):
    for r_target in np.linspace(0.0, R_MAX, 37):
        s        = dk1_helper.distortion_scale_for_radius(r_target)
        r_source = r_target * s
        r_seen   = r_source * dk1_helper.undistortion_scale_for_radius(r_source)
        assert r_seen == pytest.approx(r_target, abs=1e-5)

def test_inverse_scale_meets_bisection_tolerance(dk1_helper, monkeypatch):
    forward = dk1_helper.undistortion_scale_for_radius_squared
    tried   = []

    def recording(r2):
        tried.append(r2)
        return forward(r2)

    monkeypatch.setattr(dk1_helper, 'undistortion_scale_for_radius_squared', recording)
    for r_target in np.linspace(0.0, R_MAX, 37):
        del tried[:]
        dk1_helper.distortion_scale_for_radius(r_target)
        r_source = np.sqrt(tried[-1])
        assert abs(r_source * forward(r_source * r_source) - r_target) < 1e-6

def test_inverse_scale_at_center_is_inverse_k0(dk1_helper):
    assert dk1_helper.distortion_scale_for_radius(0.0) == pytest.approx(1.0 / dk1_helper.k[0])

def test_inverse_scale_falls_off_with_radius(dk1_helper):
    scales = [dk1_helper.distortion_scale_for_radius(r) for r in (0.2, 0.6, 1.0, 1.4)]
    assert scales == sorted(scales, reverse=True)

def test_non_monotonic_coefficients_fail_loudly():
    # r * (1 - 2 r^2) peaks at ~0.27, so 0.5 is unreachable.
    helper = RiftDistortionHelper((1.0, -2.0, 0.0, 0.0), 0.0, 1.0)
    with pytest.raises(DistortionConvergenceError):
        helper.distortion_scale_for_radius(0.5)

def test_identity_coefficients(identity_helper):
    r = np.linspace(0.0, R_MAX, 50)
    assert_allclose(identity_helper.undistortion_scale_for_radius(r), 1.0)
    for eye in ('left', 'right'):
        for p in grid_points(-1.0, 1.0, 5):
            assert_allclose(identity_helper.find_distorted_vertex_position(p, eye), p, atol=1e-12)

def test_lens_center_is_a_fixed_point(dk1_helper):
    center = (-dk1_helper.get_lens_offset('left'), 0.0)
    assert_allclose(dk1_helper.find_distorted_vertex_position(center, 'left'), center, atol=1e-12)

def test_distorted_vertex_position_batched(dk1_helper):
    points = np.array([[0.3, 0.2], [-0.9, 0.7], [1.0, 1.0]])
    for eye in ('left', 'right'):
        single = [dk1_helper.find_distorted_vertex_position(p, eye) for p in points]
        assert_allclose(dk1_helper.find_distorted_vertex_position(points, eye), single, atol=1e-12)
        grid = points.reshape(3, 1, 2)
        assert dk1_helper.find_distorted_vertex_position(grid, eye).shape == (3, 1, 2)
    assert dk1_helper.find_distorted_vertex_position((0.3, 0.2), 'left').shape == (2,)

@pytest.mark.parametrize('p', [(0.3, 0.2), (-0.9, 0.7), (0.0, -1.0), (1.0, 1.0)])
def test_eye_symmetry(dk1_helper, p):
    left  = dk1_helper.find_distorted_vertex_position(p, 'left')
    right = dk1_helper.find_distorted_vertex_position((-p[0], p[1]), 'right')
    assert_allclose(right, (-left[0], left[1]), atol=1e-12)

def test_from_hmd_info_premultiplies_coefficients():
    hmd    = default_dk1_hmd_info()
    stereo = StereoConfig(hmd)
    helper = RiftDistortionHelper.from_hmd_info(hmd)
    assert_allclose(helper.k, np.array(hmd.distortion_k) / stereo.distortion_scale)
    assert helper.lens_offset == pytest.approx(stereo.x_center_offset)
    assert helper.eye_aspect  == pytest.approx(0.14976 / 2 / 0.0936)


#=========== Lookup texture ============

def test_lookup_identity_is_pixel_centers(identity_helper):
    data = identity_helper.create_lookup_data((4, 4), 'left')
    assert data.shape == (4, 4, 2)
    assert data.dtype == np.float32
    for y in range(4):
        for x in range(4):
            assert_allclose(data[y, x], ((x + 0.5) / 4, (y + 0.5) / 4), atol=1e-6)

def test_lookup_is_row_major_width_by_height(dk1_helper):
    data = dk1_helper.create_lookup_data((8, 3), 'right')
    assert data.shape == (3, 8, 2)
    assert data.flags.c_contiguous
    assert_allclose(data[2, 5], dk1_helper.texture_lookup_value(((5.5) / 8, (2.5) / 3), 'right'), atol=1e-6)

def test_lookup_eyes_mirror(dk1_helper):
    left  = dk1_helper.create_lookup_data((16, 16), 'left')
    right = dk1_helper.create_lookup_data((16, 16), 'right')
    assert_allclose(right[:, ::-1, 0], 1.0 - left[:, :, 0], atol=1e-5)
    assert_allclose(right[:, ::-1, 1], left[:, :, 1], atol=1e-5)

@pytest.mark.parametrize('size', [(0, 4), (4, 0), (-1, 2), (2.5, 4), (4,)])
def test_lookup_rejects_bad_size(dk1_helper, size):
    with pytest.raises(ValueError):
        dk1_helper.create_lookup_data(size, 'left')

def test_lookup_single_texel(identity_helper):
    data = identity_helper.create_lookup_data((1, 1), 'right')
    assert_allclose(data[0, 0], (0.5, 0.5), atol=1e-6)

def test_save_lookup_image(tmp_path, identity_helper):
    data = identity_helper.create_lookup_data((4, 2), 'left')
    path = tmp_path / 'lookup.png'
    save_lookup_image(data, path)
    with Image.open(path) as img:
        assert img.size == (4, 2)
        rgb = np.array(img.convert('RGB'))
    # Bottom row of the image is texture v ~ 0.
    assert tuple(rgb[-1, 0]) == (round(0.125 * 255), round(0.25 * 255), 0)
    assert tuple(rgb[0, 3])  == (round(0.875 * 255), round(0.75 * 255), 0)


#=========== Distortion mesh ============

def test_mesh_identity_2x2(identity_helper):
    vertices, indices = identity_helper.create_mesh_data((2, 2), 'left')
    assert vertices.shape == (4, 4)
    assert vertices.dtype == np.float32
    assert_allclose(vertices[:, :2], [(-1, -1), (1, -1), (-1, 1), (1, 1)], atol=1e-6)
    assert_allclose(vertices[:, 2:], [( 0,  0), (1,  0), ( 0, 1), (1, 1)], atol=0)
    assert indices.dtype == np.uint32
    assert list(indices) == [2, 0, 3, 1, RESTART_INDEX]
    assert list(indices).count(RESTART_INDEX) == 1

def test_mesh_index_layout(dk1_helper):
    columns, rows = 5, 4
    vertices, indices = dk1_helper.create_mesh_data((columns, rows), 'right')
    assert len(vertices) == columns * rows
    assert len(indices)  == (rows - 1) * (2 * columns + 1)
    assert list(indices).count(RESTART_INDEX) == rows - 1
    first_strip = list(indices[:2 * columns + 1])
    assert first_strip == [5, 0, 6, 1, 7, 2, 8, 3, 9, 4, RESTART_INDEX]
    assert indices[indices != RESTART_INDEX].max() == columns * rows - 1

def test_mesh_vertices_use_bisection_path(dk1_helper):
    vertices, _ = dk1_helper.create_mesh_data((3, 3), 'left')
    for i, (x, y) in enumerate([(x, y) for y in range(3) for x in range(3)]):
        tex = np.array([x / 2, y / 2])
        assert_allclose(vertices[i, 2:], tex)
        expected = dk1_helper.find_distorted_vertex_position(tex * 2 - 1, 'left')
        assert_allclose(vertices[i, :2], expected, rtol=1e-6, atol=1e-6)

def test_mesh_pulls_corners_inward(dk1_helper):
    # Pre-warp is barrel shaped: the far corners end up closer to the lens center.
    vertices, _ = dk1_helper.create_mesh_data((2, 2), 'left')
    center = np.array([-dk1_helper.get_lens_offset('left'), 0.0])
    for pos, tex in zip(vertices[:, :2], vertices[:, 2:]):
        original = tex * 2 - 1
        assert np.linalg.norm(pos - center) < np.linalg.norm(original - center)

@pytest.mark.parametrize('resolution', [(1, 4), (4, 1), (0, 0), (3.5, 3)])
def test_mesh_rejects_bad_resolution(dk1_helper, resolution):
    with pytest.raises(ValueError):
        dk1_helper.create_mesh_data(resolution, 'left')
