'''Quick methods for dealing with tab-text files, gzipped files, temp
directories, and SAM/BAM/CRAM file modes.
'''

import contextlib
import os, os.path
import gzip
import tempfile
import shutil
import logging

log = logging.getLogger(__name__)

STDIO = '-'

# file extension -> pysam mode suffix
ALIGNMENT_FORMATS = {
    'sam': '',
    'bam': 'b',
    'cram': 'c',
}

COMPRESSION_LEVELS = tuple(range(10))


def get_project_path():
    '''Return the absolute path of the top-level project, assumed to be the
       parent of the directory containing this script.'''
    path = os.path.abspath(os.path.expanduser(__file__))
    return os.path.dirname(os.path.dirname(path))


def get_test_path():
    '''Return absolute path of "test" directory'''
    return os.path.join(get_project_path(), 'test')


def get_test_input_path(testClassInstance=None):
    '''Return the path to the directory containing input files for the specified
       test class
    '''
    if testClassInstance is not None:
        return os.path.join(get_test_path(), 'input', type(testClassInstance).__name__)
    else:
        return os.path.join(get_test_path(), 'input')


def check_paths(read=(), write=()):
    '''Check that we can read and write the specified files, throw an exception if not.  Useful for checking
    error conditions early in the execution of a command.  Each arg can be a filename or list of filenames;
    "-" (stdin/stdout) and None are skipped.
    '''
    read, write = ([f for f in ([x] if isinstance(x, str) else list(x)) if f and f != STDIO]
                   for x in (read, write))
    assert not (set(read) & set(write))

    for fname in read:
        with open(fname):
            pass

    for fname in write:
        if not os.path.exists(fname):
            with open(fname, 'w'):
                pass
            os.unlink(fname)
        else:
            if not (os.path.isfile(fname) and os.access(fname, os.W_OK)):
                raise PermissionError('Cannot write ' + fname)


def mkstempfname(suffix='', prefix='tmp', directory=None, text=False):
    ''' Securely ask for a temp file by filename only: mkstemp returns an open
        file handle, so close it first then return the name part only.
    '''
    fd, fn = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=directory, text=text)
    os.close(fd)
    return fn


@contextlib.contextmanager
def tmp_dir(*args, **kwargs):
    """Create and return a temporary directory, which is cleaned up on context exit
    unless keep_tmp() is True."""
    name = tempfile.mkdtemp(*args, **kwargs)
    try:
        yield name
    finally:
        if keep_tmp():
            log.debug('keeping tempdir ' + name)
        else:
            shutil.rmtree(name)


def keep_tmp():
    """Whether to preserve temporary directories and files (useful during debugging).
    Return True if the environment variable INDEX_DECODE_TMP_DIRKEEP is set.
    """
    return 'INDEX_DECODE_TMP_DIRKEEP' in os.environ


def open_or_gzopen(fname, *opts, **kwopts):
    return fname.endswith('.gz') and gzip.open(fname, *opts, **kwopts) or open(fname, *opts, **kwopts)


# ===============================
# ***  SAM/BAM/CRAM file modes  ***
# ===============================


def alignment_format(fname, fmt=None, default='bam'):
    ''' Work out which of sam, bam, or cram a file is, from an explicit
        format name or else the file extension.  stdin/stdout and unknown
        extensions get the default.
    '''
    if fmt:
        fmt = fmt.lower()
        if fmt not in ALIGNMENT_FORMATS:
            raise ValueError('unknown alignment file format: %s (expected one of %s)' %
                             (fmt, ', '.join(sorted(ALIGNMENT_FORMATS))))
        return fmt
    if fname and fname != STDIO:
        ext = os.path.splitext(fname)[1].lstrip('.').lower()
        if ext in ALIGNMENT_FORMATS:
            return ext
    return default


def alignment_read_mode(fname, fmt=None):
    ''' pysam mode string for reading.  Without an explicit format, htslib
        sniffs the file contents, so plain 'r' is enough.
    '''
    if not fmt:
        return 'r'
    return 'r' + ALIGNMENT_FORMATS[alignment_format(fname, fmt)]


def alignment_write_mode(fname, fmt=None):
    ''' pysam mode string for writing. '''
    return 'w' + ALIGNMENT_FORMATS[alignment_format(fname, fmt)]


def alignment_write_options(fname, fmt=None, compression_level=None):
    ''' htslib format options (pysam's format_options) for writing.  The
        compression level only applies to bam and cram output.
    '''
    if compression_level is None or alignment_format(fname, fmt) == 'sam':
        return []
    if compression_level not in COMPRESSION_LEVELS:
        raise ValueError('compression level must be between %d and %d, not %s' %
                         (COMPRESSION_LEVELS[0], COMPRESSION_LEVELS[-1], compression_level))
    return ['level=%d' % compression_level]
