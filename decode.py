#!/usr/bin/env python3
"""
Index decoding: assign each read to one of a known set of barcodes, allowing
for sequencing errors, and tag it with a barcode-specific read group.
Per-barcode metrics are optionally written alongside.
"""

__commands__ = []

import argparse
import collections
import copy
import logging

import pysam

import util.barcodes
import util.cmd
import util.file
import util.version
from errors import InvalidBamHeaderError, LengthMismatchError, MateOrderError

log = logging.getLogger(__name__)

PROGRAM_NAME = 'index_decode'

defaults = {
    'barcode_tag_name': 'BC',
    'quality_tag_name': 'QT',
    'convert_low_quality': False,
    'max_low_quality_to_convert': 15,
    'max_no_calls': 2,
    'max_mismatches': 1,
    'min_mismatch_delta': 1,
    'change_read_name': False,
}
option_list = (
    'barcode_tag_name', 'quality_tag_name', 'convert_low_quality', 'max_low_quality_to_convert',
    'max_no_calls', 'max_mismatches', 'min_mismatch_delta', 'change_read_name'
)
option_help = {
    'barcode_tag_name': 'Tag holding the barcode read.',
    'quality_tag_name': 'Tag holding the barcode base qualities.',
    'convert_low_quality': 'Convert low quality bases in the barcode read to N before matching.',
    'max_low_quality_to_convert': 'Highest Phred quality converted to N by --convert_low_quality (0 means the default).',
    'max_no_calls': 'Maximum no-calls in a barcode read before it is considered unmatchable.',
    'max_mismatches': 'Maximum mismatches for a barcode to be considered a match.',
    'min_mismatch_delta': '''Minimum difference between the number of mismatches against the best
                             and second best barcodes for a barcode to be considered a match.''',
    'change_read_name': 'Append #<barcode name> to each read name.',
}

# read group tags taken from the barcode definition, for real barcodes only
BARCODE_READ_GROUP_FIELDS = {
    'LB': 'library',
    'SM': 'sample',
    'DS': 'description',
}


# ==========================
# ***  header rewriting  ***
# ==========================


def barcode_read_group(read_group, entry, is_sentinel=False):
    ''' A copy of read_group for reads assigned to one barcode.  ID and PU
        get a #<barcode name> suffix; LB, SM and DS take the barcode's
        library, sample and description unless this is the unmatched
        sentinel.  Tags absent from the original stay absent.
    '''
    new_rg = {}
    for tag, value in read_group.items():
        if tag in ('ID', 'PU'):
            value = '%s#%s' % (value, entry.name)
        elif tag in BARCODE_READ_GROUP_FIELDS and not is_sentinel:
            value = getattr(entry, BARCODE_READ_GROUP_FIELDS[tag])
        new_rg[tag] = value
    return new_rg


def expand_read_groups(read_groups, barcodes):
    ''' Replace every read group with one read group per barcode table entry,
        the unmatched sentinel first.
    '''
    expanded = []
    for rg in read_groups:
        if 'ID' not in rg:
            raise InvalidBamHeaderError('read group without an ID: %s' % rg)
        for entry in barcodes.entries():
            expanded.append(barcode_read_group(rg, entry, barcodes.is_sentinel(entry)))
    return expanded


def program_record(programs, command_line=None):
    pg_ids = set(pg.get('ID') for pg in programs)
    pg_id = PROGRAM_NAME
    n = 0
    while pg_id in pg_ids:
        n += 1
        pg_id = '%s.%d' % (PROGRAM_NAME, n)

    pg = {'ID': pg_id, 'PN': PROGRAM_NAME, 'VN': util.version.get_version()}
    if programs and 'ID' in programs[-1]:
        pg['PP'] = programs[-1]['ID']
    if command_line:
        pg['CL'] = command_line
    return pg


def decode_header(header, barcodes, command_line=None):
    ''' Build the output header from an input header dict (as returned by
        pysam.AlignmentHeader.to_dict()).  The input is left untouched.
    '''
    new_header = {}
    for record_type, records in header.items():
        if record_type == 'RG':
            new_header['RG'] = expand_read_groups(records, barcodes)
        else:
            new_header[record_type] = copy.deepcopy(records)

    if 'RG' in header:
        log.info("expanded %d read groups into %d", len(header['RG']), len(new_header['RG']))
    else:
        log.warning("input header has no read groups; decoded reads will reference undeclared read groups")

    programs = new_header.get('PG', [])
    new_header['PG'] = programs + [program_record(programs, command_line)]
    return new_header


# ==========================
# ***  record processing ***
# ==========================


class BarcodeDecoder(object):
    ''' Matches the barcode of each read against a barcode table, counts the
        outcome in the table, and tags the read (and its mate) with the
        barcode's read group.

        Paired reads must be immediately followed by their mate.  Mates
        inherit the first read's assignment and are never matched or
        counted themselves.
    '''

    def __init__(self, barcodes,
                 barcode_tag_name=defaults['barcode_tag_name'],
                 quality_tag_name=defaults['quality_tag_name'],
                 convert_low_quality=defaults['convert_low_quality'],
                 max_low_quality_to_convert=defaults['max_low_quality_to_convert'],
                 max_no_calls=defaults['max_no_calls'],
                 max_mismatches=defaults['max_mismatches'],
                 min_mismatch_delta=defaults['min_mismatch_delta'],
                 change_read_name=defaults['change_read_name']):
        self.barcodes = barcodes
        self.barcode_tag_name = barcode_tag_name
        self.quality_tag_name = quality_tag_name
        self.convert_low_quality = convert_low_quality
        # 0 selects the default threshold
        self.max_low_quality_to_convert = max_low_quality_to_convert or defaults['max_low_quality_to_convert']
        self.max_no_calls = max_no_calls
        self.max_mismatches = max_mismatches
        self.min_mismatch_delta = min_mismatch_delta
        self.change_read_name = change_read_name
        self.stats = collections.Counter()

    def observed_barcode(self, read):
        observed = read.get_tag(self.barcode_tag_name)
        if self.convert_low_quality and read.has_tag(self.quality_tag_name):
            try:
                observed = util.barcodes.convert_low_quality(
                    observed, read.get_tag(self.quality_tag_name), self.max_low_quality_to_convert)
            except LengthMismatchError as e:
                self.stats['quality_length_mismatch'] += 1
                log.warning("%s: %s; matching the unconverted barcode", read.query_name, e)
        return observed[:self.barcodes.tag_len]

    def decode_barcode(self, read):
        ''' Match the read's barcode and count it.  Returns the matched entry
            (the sentinel if unmatched), or None if the read has no barcode tag.
        '''
        if not read.has_tag(self.barcode_tag_name):
            self.stats['no_barcode'] += 1
            return None

        observed = self.observed_barcode(read)
        entry = util.barcodes.find_best_match(observed, self.barcodes,
                                              self.max_no_calls, self.max_mismatches, self.min_mismatch_delta)
        self.barcodes.record_match(entry, observed, not read.is_qcfail)
        if self.barcodes.is_sentinel(entry):
            self.stats['unmatched'] += 1
        log.debug("%s: %s -> %s", read.query_name, observed, entry.name)
        return entry

    def tag_read(self, read, entry):
        rg = read.get_tag('RG') if read.has_tag('RG') else ''
        read.set_tag('RG', '%s#%s' % (rg, entry.name), value_type='Z')
        if self.change_read_name:
            read.query_name = '%s#%s' % (read.query_name, entry.name)

    @staticmethod
    def check_mate(name, mate):
        if mate is None:
            raise MateOrderError("paired read %s is the last record: its mate is missing "
                                 "(mates must be adjacent in the input)" % name)
        if not mate.is_paired:
            raise MateOrderError("paired read %s is followed by unpaired read %s "
                                 "(mates must be adjacent in the input)" % (name, mate.query_name))
        if mate.query_name != name:
            raise MateOrderError("paired read %s is followed by %s instead of its mate "
                                 "(mates must be adjacent in the input)" % (name, mate.query_name))

    def process(self, reads, outf):
        ''' Decode, tag and write every read.  outf is anything with a
            write(read) method, normally a pysam.AlignmentFile.  Returns the
            number of records written.
        '''
        reads = iter(reads)
        for read in reads:
            name = read.query_name
            entry = self.decode_barcode(read)
            if entry is not None:
                self.tag_read(read, entry)
            outf.write(read)
            self.stats['records'] += 1

            if read.is_paired:
                mate = next(reads, None)
                self.check_mate(name, mate)
                if entry is not None:
                    self.tag_read(mate, entry)
                outf.write(mate)
                self.stats['records'] += 1
                self.stats['pairs'] += 1
        return self.stats['records']

    def log_summary(self):
        log.info("wrote %d records (%d pairs); %d without a %s tag, %d unmatched",
                 self.stats['records'], self.stats['pairs'], self.stats['no_barcode'],
                 self.barcode_tag_name, self.stats['unmatched'])
        if self.stats['quality_length_mismatch']:
            log.warning("%d barcodes had a quality string of a different length and were not converted",
                        self.stats['quality_length_mismatch'])


# ==========================
# ***       metrics      ***
# ==========================


def metrics_file_lines(barcodes,
                       barcode_tag_name=defaults['barcode_tag_name'],
                       max_mismatches=defaults['max_mismatches'],
                       min_mismatch_delta=defaults['min_mismatch_delta'],
                       max_no_calls=defaults['max_no_calls']):
    ''' Render the metrics file for the current state of a barcode table:
        a parameter comment block, the column header, one row per barcode
        and a final row for unmatched reads.
    '''
    params = (('BARCODE_TAG_NAME', barcode_tag_name),
              ('MAX_MISMATCHES', max_mismatches),
              ('MIN_MISMATCH_DELTA', min_mismatch_delta),
              ('MAX_NO_CALLS', max_no_calls))
    lines = ['##', '# ' + ''.join('%s=%s ' % p for p in params), '##', '#', '', '##']
    lines.extend(util.barcodes.BarcodeMetrics(barcodes).lines())
    return lines


def write_metrics(outMetrics, barcodes, **params):
    with open(outMetrics, 'wt') as outf:
        for line in metrics_file_lines(barcodes, **params):
            outf.write(line + '\n')
    log.info("wrote metrics for %d barcodes to %s", len(barcodes), outMetrics)


# ==========================
# ***       decode       ***
# ==========================


def decode(inBam, barcodeFile, outBam='-', outMetrics=None,
           barcode_tag_name=defaults['barcode_tag_name'],
           quality_tag_name=defaults['quality_tag_name'],
           convert_low_quality=defaults['convert_low_quality'],
           max_low_quality_to_convert=defaults['max_low_quality_to_convert'],
           max_no_calls=defaults['max_no_calls'],
           max_mismatches=defaults['max_mismatches'],
           min_mismatch_delta=defaults['min_mismatch_delta'],
           change_read_name=defaults['change_read_name'],
           input_fmt=None, output_fmt=None, compression_level=None):
    ''' Decode barcodes: assign each read to the best matching barcode in
        barcodeFile, allowing a limited number of mismatches and no-calls.
        Each read gets the read group <RG>#<barcode name> (unmatched reads
        get <RG>#0), the header gets one read group per barcode for every
        input read group, and per-barcode metrics are optionally written.
        Paired reads must be immediately followed by their mates.
    '''
    thresholds = (('max_low_quality_to_convert', max_low_quality_to_convert),
                  ('max_no_calls', max_no_calls),
                  ('max_mismatches', max_mismatches),
                  ('min_mismatch_delta', min_mismatch_delta))
    for opt, value in thresholds:
        util.cmd.check_input(value >= 0, '%s must be non-negative' % opt)
    util.cmd.check_input(compression_level is None or compression_level in util.file.COMPRESSION_LEVELS,
                         'compression_level must be between 0 and 9')
    util.file.check_paths(read=[inBam, barcodeFile], write=[outBam, outMetrics])

    barcodes = util.barcodes.load_barcode_file(barcodeFile)
    decoder = BarcodeDecoder(barcodes,
                             barcode_tag_name=barcode_tag_name,
                             quality_tag_name=quality_tag_name,
                             convert_low_quality=convert_low_quality,
                             max_low_quality_to_convert=max_low_quality_to_convert,
                             max_no_calls=max_no_calls,
                             max_mismatches=max_mismatches,
                             min_mismatch_delta=min_mismatch_delta,
                             change_read_name=change_read_name)

    with pysam.AlignmentFile(inBam, util.file.alignment_read_mode(inBam, input_fmt), check_sq=False) as inb:
        header = decode_header(inb.header.to_dict(), barcodes, util.cmd.command_line())
        out_mode = util.file.alignment_write_mode(outBam, output_fmt)
        out_options = util.file.alignment_write_options(outBam, output_fmt, compression_level)
        with pysam.AlignmentFile(outBam, out_mode, header=header, format_options=out_options) as outf:
            decoder.process(inb, outf)
    decoder.log_summary()

    if outMetrics:
        write_metrics(outMetrics, barcodes,
                      barcode_tag_name=barcode_tag_name,
                      max_mismatches=max_mismatches,
                      min_mismatch_delta=min_mismatch_delta,
                      max_no_calls=max_no_calls)
    return 0


def parser_decode(parser=argparse.ArgumentParser()):
    parser.add_argument('inBam', help='Input reads: SAM, BAM or CRAM ("-" for stdin).')
    parser.add_argument('barcodeFile',
                        help='''Barcode definitions: tab-separated text with one header line and
                                five columns: sequence, name, library, sample, description.''')
    parser.add_argument('outBam', nargs='?', default='-',
                        help='Output reads ("-" for stdout, the default, written as BAM).')
    parser.add_argument('--outMetrics', default=None, help='Output per-barcode metrics file.')
    for opt in option_list:
        default = defaults[opt]
        if isinstance(default, bool):
            parser.add_argument('--' + opt, action='store_true', default=default, help=option_help[opt])
        else:
            parser.add_argument('--' + opt,
                                type=type(default),
                                default=default,
                                help=option_help[opt] + ' (default: %(default)s)')
    parser.add_argument('--input_fmt', choices=sorted(util.file.ALIGNMENT_FORMATS), default=None,
                        help='Input format (default: detected from the file contents).')
    parser.add_argument('--output_fmt', choices=sorted(util.file.ALIGNMENT_FORMATS), default=None,
                        help='Output format (default: from the output file extension, else bam).')
    parser.add_argument('--compression_level', type=int, choices=util.file.COMPRESSION_LEVELS, default=None,
                        help='Compression level of bam or cram output, 0 to 9 (default: htslib default).')
    util.cmd.common_args(parser, (('loglevel', None), ('version', None)))
    util.cmd.attach_main(parser, decode, split_args=True)
    return parser


__commands__.append(('decode', parser_decode))


# =======================
def full_parser():
    return util.cmd.make_parser(__commands__, __doc__)


if __name__ == '__main__':
    util.cmd.main_argparse(__commands__, __doc__)
