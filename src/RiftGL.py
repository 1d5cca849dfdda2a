import ctypes
import numpy as np

from OpenGL.GL      import *
from RiftDistortion import RESTART_INDEX
from RiftEyes       import EYES


class LookupTexture(object):
    """Uploads a distortion lookup grid as a 2 channel float GL texture.

    ALLOCATION: Creates and owns a GL texture.

    Init chain: Call init() with a current GL context (or pass init=True).
                Returns the texture handle.

    Runtime: bind(unit) before drawing the warp pass.  The sampler is linear
             and mirrors at the edges, so slightly out of range lookups near
             the corners don't wrap around to the far side.
    """
    def __init__(self, helper, eye, size=(512, 512), init=False):
        self.helper  = helper
        self.eye     = eye
        self.size    = size
        self.texture = None

        if init:
            self.init()

    def init(self):
        """Generate the lookup grid and create the texture. Returns texture handle."""
        width, height = self.size
        data = self.helper.create_lookup_data(self.size, self.eye)

        self.texture = glGenTextures(1)
        glBindTexture(GL_TEXTURE_2D, self.texture)
        glPixelStorei(GL_UNPACK_ALIGNMENT, 1)
        glTexImage2D(GL_TEXTURE_2D, 0, GL_RG32F, width, height, 0, GL_RG, GL_FLOAT, data)
        glTexParameteri(GL_TEXTURE_2D, GL_TEXTURE_MAG_FILTER, GL_LINEAR)
        glTexParameteri(GL_TEXTURE_2D, GL_TEXTURE_MIN_FILTER, GL_LINEAR)
        glTexParameteri(GL_TEXTURE_2D, GL_TEXTURE_WRAP_S, GL_MIRRORED_REPEAT)
        glTexParameteri(GL_TEXTURE_2D, GL_TEXTURE_WRAP_T, GL_MIRRORED_REPEAT)
        glBindTexture(GL_TEXTURE_2D, 0)

        return self.texture

    def bind(self, unit=1):
        if self.texture is None:
            raise RuntimeError("Must call init() before bind()")
        glActiveTexture(GL_TEXTURE0 + unit)
        glBindTexture(GL_TEXTURE_2D, self.texture)
        glActiveTexture(GL_TEXTURE0)

    def close(self):
        if self.texture is not None:
            glDeleteTextures([self.texture])
            self.texture = None


class DistortionMesh(object):
    """Uploads a pre-warped distortion mesh and draws it as triangle strips.

    ALLOCATION: Creates and owns a vertex buffer and an index buffer.

    Init chain: Call init() with a current GL context (or pass init=True).

    Runtime: draw() with the undistorted scene bound to GL_TEXTURE_2D.

    resolution (columns, rows) trades accuracy against vertex count; tens of
        cells per axis is plenty since the warp is smooth.
    """

    STRIDE = 16    # (pos.x, pos.y, tex.u, tex.v) float32

    def __init__(self, helper, eye, resolution=(64, 64), init=False):
        self.helper      = helper
        self.eye         = eye
        self.resolution  = resolution
        self.vbo         = None
        self.ibo         = None
        self.index_count = 0

        if init:
            self.init()

    def init(self):
        """Generate the mesh and create the buffers. Returns (vbo, ibo)."""
        vertices, indices = self.helper.create_mesh_data(self.resolution, self.eye)
        self.index_count  = len(indices)

        self.vbo = glGenBuffers(1)
        glBindBuffer(GL_ARRAY_BUFFER, self.vbo)
        glBufferData(GL_ARRAY_BUFFER, vertices.nbytes, vertices, GL_STATIC_DRAW)
        glBindBuffer(GL_ARRAY_BUFFER, 0)

        self.ibo = glGenBuffers(1)
        glBindBuffer(GL_ELEMENT_ARRAY_BUFFER, self.ibo)
        glBufferData(GL_ELEMENT_ARRAY_BUFFER, indices.nbytes, indices, GL_STATIC_DRAW)
        glBindBuffer(GL_ELEMENT_ARRAY_BUFFER, 0)

        return self.vbo, self.ibo

    def draw(self):
        if self.vbo is None:
            raise RuntimeError("Must call init() before draw()")

        glBindBuffer(GL_ARRAY_BUFFER, self.vbo)
        glBindBuffer(GL_ELEMENT_ARRAY_BUFFER, self.ibo)

        glEnableClientState(GL_VERTEX_ARRAY)
        glEnableClientState(GL_TEXTURE_COORD_ARRAY)
        glVertexPointer(2, GL_FLOAT, self.STRIDE, ctypes.c_void_p(0))
        glTexCoordPointer(2, GL_FLOAT, self.STRIDE, ctypes.c_void_p(8))

        glEnable(GL_PRIMITIVE_RESTART)
        glPrimitiveRestartIndex(RESTART_INDEX)
        glDrawElements(GL_TRIANGLE_STRIP, self.index_count, GL_UNSIGNED_INT, ctypes.c_void_p(0))
        glDisable(GL_PRIMITIVE_RESTART)

        glDisableClientState(GL_TEXTURE_COORD_ARRAY)
        glDisableClientState(GL_VERTEX_ARRAY)

        glBindBuffer(GL_ELEMENT_ARRAY_BUFFER, 0)
        glBindBuffer(GL_ARRAY_BUFFER, 0)

    def close(self):
        if self.vbo is not None:
            glDeleteBuffers(2, np.array([self.vbo, self.ibo], dtype=np.uint32))
            self.vbo = self.ibo = None


def create_distortion_resources(helper, technique='texture', size=(512, 512), resolution=(64, 64)):
    """Build and upload the distortion resource for both eyes.

    technique is 'texture' (per pixel lookup, size is its resolution) or
        'mesh' (warped grid, resolution is (columns, rows)).

    Returns {'left': resource, 'right': resource}.
    """
    if technique == 'texture':
        return {eye: LookupTexture(helper, eye, size, init=True) for eye in EYES}
    elif technique == 'mesh':
        return {eye: DistortionMesh(helper, eye, resolution, init=True) for eye in EYES}
    else:
        raise ValueError(f"Unknown distortion technique {technique!r}. Use 'texture' or 'mesh'.")
