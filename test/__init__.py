'''utilities for tests'''

# built-ins
import filecmp
import os
import unittest

# third-party
import pytest
import pysam

# intra-project
import util.file


def assert_equal_contents(testCase, filename1, filename2):
    'Assert contents of two files are equal for a unittest.TestCase'
    testCase.assertTrue(filecmp.cmp(filename1, filename2, shallow=False))


def read_sam_records(filename):
    ''' All records of a SAM/BAM/CRAM file as SAM text lines, without header '''
    with pysam.AlignmentFile(filename, 'r', check_sq=False) as inf:
        return [read.to_string() for read in inf]


def assert_equal_bam_reads(testCase, bam_filename1, bam_filename2):
    ''' Assert that two alignment files hold the same records, in order.

        Headers are not compared since they can be variable.
    '''
    testCase.assertEqual(read_sam_records(bam_filename1), read_sam_records(bam_filename2))


@pytest.mark.usefixtures('tmpdir_class')
class TestCaseWithTmp(unittest.TestCase):
    'Base class for tests that use tempDir'

    def assertEqualContents(self, f1, f2):
        assert_equal_contents(self, f1, f2)

    def assertEqualBamReads(self, f1, f2):
        assert_equal_bam_reads(self, f1, f2)

    def input(self, fname):
        '''Return the full filename for a file in the test input directory for this test class'''
        return os.path.join(util.file.get_test_input_path(self), fname)

    def inputs(self, *fnames):
        '''Return the full filenames for files in the test input directory for this test class'''
        return [self.input(fname) for fname in fnames]

    def assertEqualSamHeaders(self, tested_samfile, expected_samfile, ignore_tags=None):
        '''
            Compare the headers of two alignment files line type by line type.
            ignore_tags maps a header line type (e.g. 'PG') to the tags whose
            values may differ (e.g. ['VN', 'CL']).
        '''
        ignore_tags = ignore_tags or {}

        def _header(fname):
            with pysam.AlignmentFile(fname, 'r', check_sq=False) as inf:
                header = inf.header.to_dict()
            for line_type, tags in ignore_tags.items():
                records = header.get(line_type, [])
                for record in (records if isinstance(records, list) else [records]):
                    for tag in tags:
                        record.pop(tag, None)
            return header

        test_header = _header(tested_samfile)
        expected_header = _header(expected_samfile)
        self.assertEqual(sorted(test_header.keys()), sorted(expected_header.keys()))
        for line_type in expected_header:
            self.assertEqual(test_header[line_type], expected_header[line_type],
                             msg="@{} header lines differ".format(line_type))
