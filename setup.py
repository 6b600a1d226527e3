from setuptools import setup
import util.version

def read_file(fname):
    with open(fname, 'rt') as inf:
        return list(x.rstrip('\n\r') for x in inf if x.strip() and not x.startswith('#'))

setup(
    name='index_decode',
    version=util.version.get_version(),
    license='BSD-style Software License',
    install_requires=read_file('requirements.txt'),
    description='Barcode index decoding for multiplexed SAM/BAM/CRAM reads',
    py_modules=['decode', 'errors'],
    packages=['util'],
    include_package_data=True,
    platforms='any',
    python_requires='>=3.8',
    extras_require={
        'test': read_file('requirements-tests.txt'),
    },
)
