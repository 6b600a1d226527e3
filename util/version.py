''' This gets the package version into python-land: from `git describe`,
    else the VERSION file, else the installed distribution metadata.
'''

__version__ = None

import subprocess, os, os.path

DIST_NAME = 'index_decode'


def get_project_path():
    '''Return the absolute path of the top-level project, assumed to be the
       parent of the directory containing this script.'''
    path = os.path.abspath(os.path.expanduser(__file__))
    return os.path.dirname(os.path.dirname(path))


def call_git_describe():
    try:
        out = subprocess.check_output(['git', 'describe', '--tags', '--always', '--dirty'],
                                      cwd=get_project_path(), stderr=subprocess.DEVNULL)
    except (OSError, subprocess.CalledProcessError):
        return None
    return out.decode('utf-8').strip() or None


def release_file():
    return os.path.join(get_project_path(), 'VERSION')


def read_release_version():
    try:
        with open(release_file(), 'rt') as inf:
            return inf.readlines()[0].strip()
    except (IOError, IndexError):
        return None


def read_dist_version():
    from importlib.metadata import version, PackageNotFoundError
    try:
        return version(DIST_NAME)
    except PackageNotFoundError:
        return None


def get_version():
    global __version__
    if __version__ is None:
        __version__ = call_git_describe() or read_release_version() or read_dist_version()
        if __version__ is None:
            raise ValueError("Cannot find the version number!")
    return __version__


if __name__ == "__main__":
    print(get_version())
