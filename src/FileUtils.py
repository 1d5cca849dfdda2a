import json
import os


def file_exists(path):
    "Returns true if path refers to any existing object (including a dead symlink)"
    try:
        os.lstat(path)
        return True
    except OSError:
        return False

def temp_filename_for(path):
    "Sibling of path to write into before renaming over it."
    head, tail = os.path.split(path)
    return os.path.join(head, f".{tail}.{os.getpid()}.tmp")


class InfoFile(object):

    """An InfoFile is just a dictionary stored in a file (as JSON).

    Made only for small files written out in plain text form, in whole.

    Access and change this through [] and .get ; don't access
        .items directly.

    No changes are saved until flush() is called.  Revert()
        abandons any changes.

    No locking is performed here, so care should be taken to
        lock at a higher level.

    If the file doesn't exist, it will be created on the first
        flush().  If it exists but can't be parsed, a warning is
        printed and it is treated as empty (and will be overwritten
        by the next flush()).

    As a convenience, you can create one of these with filename=None,
        and it will just present an in-memory version of same.
    """
    def __init__(self, filename):
        self.filename = filename
        self.items    = None    # Not loaded yet.

    def __iter__(self):
        self.load()
        return iter(self.items)

    def __contains__(self, key):
        self.load()
        return key in self.items

    def __setitem__(self, key, val):
        self.load()
        self.items[key] = val
        self.dirty = True

    def __getitem__(self, key):
        self.load()
        return self.items[key]

    def __delitem__(self, key):
        self.load()
        del self.items[key]
        self.dirty = True

    def get(self, key, default=None):
        self.load()
        return self.items.get(key, default)

    def revert(self):
        if self.items is not None:
            self.items = None
            del self.dirty  # N/A ; throw exception if we try to use it.

    def load(self):
        "Loads from our file.  Does nothing if already loaded."
        if self.items is None:
            items = {}
            if self.filename and file_exists(self.filename):
                try:
                    with open(self.filename, 'r') as fl:
                        items = json.load(fl)
                except ValueError as e:
                    print(f"WARNING: Failed to parse config {self.filename}: {e}")
                    items = {}
                if not isinstance(items, dict):
                    print(f"WARNING: {self.filename} doesn't hold a JSON object; ignoring it")
                    items = {}
            self.items = items
            self.dirty = False

    def flush(self, verify=True):
        "Returns True if anything was done, False if there were no changes to flush."

        if self.filename and self.items is not None and self.dirty:

            tempname = temp_filename_for(self.filename)
            with open(tempname, 'w') as fl:
                json.dump(self.items, fl, indent=3)
                fl.write('\n')
            if verify:
                with open(tempname, 'r') as fl:
                    items = json.load(fl)
                assert items == self.items
            os.replace(tempname, self.filename)
            self.dirty = False

            return True
        else:
            return False
