import pytest

from RiftDistortion import RiftDistortionHelper
from HmdInfo        import default_dk1_hmd_info

IDENTITY_K = (1.0, 0.0, 0.0, 0.0)


@pytest.fixture
def dk1_helper():
    return RiftDistortionHelper.from_hmd_info(default_dk1_hmd_info())

@pytest.fixture
def identity_helper():
    "No distortion, but a real lens offset and aspect so the space conversions still matter."
    return RiftDistortionHelper(IDENTITY_K, lens_offset=0.152, eye_aspect=0.8)


class GLRecorder(object):
    """Stands in for the OpenGL entry points a module imported with `from OpenGL.GL import *`.

    Every call is appended to .calls as (name, args).  glGen* return fresh handles.
    """
    FUNCTIONS = (
        'glActiveTexture', 'glBindBuffer', 'glBindTexture', 'glBufferData',
        'glDeleteBuffers', 'glDeleteTextures', 'glDisable', 'glDisableClientState',
        'glDrawElements', 'glEnable', 'glEnableClientState', 'glPixelStorei',
        'glPrimitiveRestartIndex', 'glTexCoordPointer', 'glTexImage2D',
        'glTexParameteri', 'glVertexPointer',
    )

    def __init__(self):
        self.calls       = []
        self.next_handle = 1

    def install(self, monkeypatch, module):
        for name in self.FUNCTIONS:
            monkeypatch.setattr(module, name, self._recorder(name))
        monkeypatch.setattr(module, 'glGenTextures', self._generator('glGenTextures'))
        monkeypatch.setattr(module, 'glGenBuffers',  self._generator('glGenBuffers'))

    def _recorder(self, name):
        def call(*args):
            self.calls.append((name, args))
        return call

    def _generator(self, name):
        def call(count):
            handle = self.next_handle
            self.next_handle += 1
            self.calls.append((name, (count,)))
            return handle
        return call

    def named(self, name):
        return [args for call, args in self.calls if call == name]


@pytest.fixture
def gl_recorder():
    return GLRecorder()
