"""Per-user calibration, kept in a small JSON document.

Currently that is just the strabismus correction: a rotation applied to
the left eye's view (and its inverse to the right's) for users whose eyes
don't converge where the headset assumes.

The document lives in ~/.cache/riftwarp/profile.json (or ~/.riftwarp/ if
there is no ~/.cache), or wherever $RIFTWARP_CONFIG points.  That default
is worked out once, on first use; set_config_file() overrides it, and every
call also accepts an explicit path= which wins over both.
"""
import os

from FileUtils import InfoFile

STRABISMUS_KEY = 'StrabismusCorrection'
IDENTITY       = (0.0, 0.0, 0.0, 1.0)

_config_file = None


def default_config_file():
    env = os.environ.get('RIFTWARP_CONFIG')
    if env:
        return env

    homedir = os.environ.get('HOME')
    if homedir and os.path.isdir(homedir):
        cachedir = f"{homedir}/.cache"
        if os.path.isdir(cachedir):
            statedir = f"{cachedir}/riftwarp"
        else:
            statedir = f"{homedir}/.riftwarp"
    else:
        statedir = os.path.realpath(f"{__file__}/../../state")

    return f"{statedir}/profile.json"

def config_file():
    "Path of the calibration document.  Decided on the first call, then fixed."
    global _config_file
    if _config_file is None:
        _config_file = default_config_file()
    return _config_file

def set_config_file(path):
    "Use path for all later calibration reads and writes (None re-derives the default)."
    global _config_file
    _config_file = path


def _open(path, create=False):
    path = path or config_file()
    if create:
        statedir = os.path.dirname(path)
        if statedir and not os.path.exists(statedir):
            print(f"Creating {statedir}")
            os.makedirs(statedir)
    return InfoFile(path)

def parse_quaternion(node):
    "(x, y, z, w) from a {'x':..,'y':..,'z':..,'w':..} dict; missing parts are identity."
    return (float(node.get('x', 0)),
            float(node.get('y', 0)),
            float(node.get('z', 0)),
            float(node.get('w', 1)))

def get_strabismus_correction(path=None):
    node = _open(path).get(STRABISMUS_KEY)
    if node is None:
        return IDENTITY
    if not isinstance(node, dict):
        print(f"WARNING: {STRABISMUS_KEY} should be an object with x, y, z, w; ignoring {node!r}")
        return IDENTITY
    return parse_quaternion(node)

def set_strabismus_correction(q, path=None):
    "Stores q (x, y, z, w), leaving any other settings in the document alone."
    x, y, z, w = (float(v) for v in q)
    db = _open(path, create=True)
    db[STRABISMUS_KEY] = {'x': x, 'y': y, 'z': z, 'w': w}
    db.flush()
