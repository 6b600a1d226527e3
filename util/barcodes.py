'''Barcode tables, mismatch-tolerant barcode matching, and per-barcode
decoding metrics.

A barcode table holds the barcodes listed in a definition file plus one
"unmatched" sentinel entry whose sequence is all no-calls.  Reads that cannot
be confidently assigned to a real barcode are counted against the sentinel.
'''

import logging

import util.file
from errors import FormatError, LengthMismatchError

log = logging.getLogger(__name__)

NO_CALLS = 'Nn.'
NO_CALL = 'N'
VALID_BASES = set('ACGTN')

SENTINEL_NAME = '0'

DEFINITION_FIELDS = ('sequence', 'name', 'library', 'sample', 'description')


# ========================
# ***  barcode table   ***
# ========================


class BarcodeEntry(object):
    ''' One row of a barcode definition file, plus the live counters
        accumulated while decoding.
    '''

    def __init__(self, sequence, name, library='', sample='', description=''):
        self.sequence = sequence
        self.name = name
        self.library = library
        self.sample = sample
        self.description = description
        self.reads = 0
        self.pf_reads = 0
        self.perfect_matches = 0
        self.pf_perfect_matches = 0
        self.one_mismatch_matches = 0
        self.pf_one_mismatch_matches = 0

    def __repr__(self):
        return 'BarcodeEntry(%r, %r)' % (self.sequence, self.name)


class BarcodeTable(object):
    ''' An ordered collection of barcode entries and the unmatched sentinel.

        The sentinel is kept apart from the real barcodes; entries() lists it
        first, non_sentinel_entries() leaves it out.
    '''

    def __init__(self, barcodes=None):
        self.barcodes = list(barcodes or [])
        self.tag_len = len(self.barcodes[0].sequence) if self.barcodes else 0
        for bc in self.barcodes:
            if len(bc.sequence) != self.tag_len:
                raise FormatError("Tag '%s' is a different length to the previous tag" % bc.sequence)
        self.sentinel = BarcodeEntry(NO_CALL * self.tag_len, SENTINEL_NAME)

    @classmethod
    def load(cls, lines):
        ''' Parse barcode definitions from an iterable of text lines.  The
            first line is a header and is ignored.
        '''
        lines = iter(lines)
        try:
            next(lines)
        except StopIteration:
            raise FormatError('problem reading barcode file: no header line')

        barcodes = []
        tag_len = None
        for line_num, line in enumerate(lines, start=2):
            line = line.rstrip('\r\n')
            if not line.strip():
                continue
            row = line.split('\t')
            if len(row) != len(DEFINITION_FIELDS):
                raise FormatError('line %d: expected %d tab-separated fields, found %d' %
                                  (line_num, len(DEFINITION_FIELDS), len(row)))
            sequence = normalize_barcode(row[0], line_num)
            if tag_len is None:
                tag_len = len(sequence)
            elif len(sequence) != tag_len:
                raise FormatError("line %d: Tag '%s' is a different length to the previous tag" %
                                  (line_num, sequence))
            barcodes.append(BarcodeEntry(sequence, *row[1:]))

        if not barcodes:
            log.warning('barcode definitions contain no barcodes; every read will be unmatched')
        return cls(barcodes)

    def entries(self):
        return [self.sentinel] + self.barcodes

    def non_sentinel_entries(self):
        return list(self.barcodes)

    def is_sentinel(self, entry):
        return entry is self.sentinel

    def __len__(self):
        return len(self.barcodes)

    def record_match(self, entry, observed, is_pass_filter):
        ''' Count one read against entry.  This is the only place counters
            change.
        '''
        n = count_mismatches(entry.sequence, observed)

        entry.reads += 1
        if is_pass_filter:
            entry.pf_reads += 1

        if n == 0:
            entry.perfect_matches += 1
            if is_pass_filter:
                entry.pf_perfect_matches += 1
        elif n == 1:
            entry.one_mismatch_matches += 1
            if is_pass_filter:
                entry.pf_one_mismatch_matches += 1


def normalize_barcode(barcode, line_num=None):
    ''' Upper-case a barcode sequence and check that it only uses ACGTN. '''
    where = 'line %d: ' % line_num if line_num else ''
    normalized = barcode.strip().upper()
    if not normalized:
        raise FormatError(where + 'empty barcode sequence')
    invalid_chars = set(normalized) - VALID_BASES
    if invalid_chars:
        raise FormatError('%sbarcode %s contains invalid characters: %s' %
                          (where, barcode, ''.join(sorted(invalid_chars))))
    return normalized


def load_barcode_file(barcode_file):
    ''' Read a (possibly gzipped) tab-separated barcode definition file. '''
    with util.file.open_or_gzopen(barcode_file, 'rt') as inf:
        table = BarcodeTable.load(inf)
    log.info("loaded %d barcodes of length %d from %s", len(table), table.tag_len, barcode_file)
    return table


# ========================
# ***     matching     ***
# ========================


def is_no_call(base):
    return base in NO_CALLS


def count_no_calls(seq):
    return sum(1 for b in seq if is_no_call(b))


def count_mismatches(tag, barcode):
    ''' Number of positions where tag and barcode disagree.  A no-call on
        either side never counts.  Positions past the end of the shorter
        string count as mismatches.
    '''
    n = abs(len(tag) - len(barcode))
    for t, b in zip(tag, barcode):
        if t != b and not is_no_call(t) and not is_no_call(b):
            n += 1
    return n


def convert_low_quality(barcode, quality, threshold):
    ''' Return barcode with every base whose Phred quality is <= threshold
        replaced by N.  quality is a Phred+33 string; if it is None the barcode
        is returned unchanged.
    '''
    if quality is None:
        return barcode
    if len(barcode) != len(quality):
        raise LengthMismatchError('barcode %s and quality %s are different lengths' % (barcode, quality))
    return ''.join(NO_CALL if ord(q) - 33 <= threshold else b for b, q in zip(barcode, quality))


def find_best_match(observed, table, max_no_calls, max_mismatches, min_mismatch_delta):
    ''' Return the barcode entry best matching the observed sequence, or the
        table's sentinel if no barcode is a confident match.

        The first barcode (in table order) with the fewest mismatches wins a
        tie, but the tie leaves a zero gap to the runner-up and so is rejected
        whenever min_mismatch_delta > 0.
    '''
    best_match = None
    nm_best = table.tag_len
    nm_second_best = table.tag_len

    for bc in table.non_sentinel_entries():
        n = count_mismatches(bc.sequence, observed)
        if n < nm_best:
            if best_match is not None:
                nm_second_best = nm_best
            nm_best = n
            best_match = bc
        elif n < nm_second_best:
            nm_second_best = n

    matched = (best_match is not None and
               count_no_calls(observed) <= max_no_calls and
               nm_best <= max_mismatches and
               nm_second_best - nm_best >= min_mismatch_delta)

    if matched:
        return best_match
    return table.sentinel


# ========================
# ***     metrics      ***
# ========================

METRICS_COLUMNS = (
    'BARCODE', 'BARCODE_NAME', 'LIBRARY_NAME', 'SAMPLE_NAME', 'DESCRIPTION',
    'READS', 'PF_READS', 'PERFECT_MATCHES', 'PF_PERFECT_MATCHES',
    'ONE_MISMATCH_MATCHES', 'PF_ONE_MISMATCH_MATCHES',
    'PCT_MATCHES', 'RATIO_THIS_BARCODE_TO_BEST_BARCODE_PCT',
    'PF_PCT_MATCHES', 'PF_RATIO_THIS_BARCODE_TO_BEST_BARCODE_PCT',
    'PF_NORMALIZED_MATCHES',
)


def _ratio(numerator, denominator):
    return numerator / float(denominator) if denominator else 0


class MetricsRow(object):
    ''' One rendered row of the metrics table. '''

    def __init__(self, entry, metrics, name=None, perfect_matches=None, pf_perfect_matches=None,
                 total_pf_reads_assigned=None):
        self.barcode = entry.sequence
        self.barcode_name = entry.name if name is None else name
        self.library_name = entry.library
        self.sample_name = entry.sample
        self.description = entry.description
        self.reads = entry.reads
        self.pf_reads = entry.pf_reads
        self.perfect_matches = entry.perfect_matches if perfect_matches is None else perfect_matches
        self.pf_perfect_matches = entry.pf_perfect_matches if pf_perfect_matches is None else pf_perfect_matches
        self.one_mismatch_matches = entry.one_mismatch_matches
        self.pf_one_mismatch_matches = entry.pf_one_mismatch_matches

        if total_pf_reads_assigned is None:
            total_pf_reads_assigned = metrics.total_pf_reads_assigned
        self.pct_matches = _ratio(entry.reads, metrics.total_reads)
        self.ratio_to_best = _ratio(entry.reads, metrics.max_reads)
        self.pf_pct_matches = _ratio(entry.pf_reads, metrics.total_pf_reads)
        self.pf_ratio_to_best = _ratio(entry.pf_reads, metrics.max_pf_reads)
        self.pf_normalized_matches = _ratio(entry.pf_reads * metrics.barcode_count, total_pf_reads_assigned)

    def values(self):
        return (self.barcode, self.barcode_name, self.library_name, self.sample_name, self.description,
                self.reads, self.pf_reads, self.perfect_matches, self.pf_perfect_matches,
                self.one_mismatch_matches, self.pf_one_mismatch_matches,
                self.pct_matches, self.ratio_to_best, self.pf_pct_matches, self.pf_ratio_to_best,
                self.pf_normalized_matches)

    def format(self):
        return '\t'.join(['%s'] * 5 + ['%d'] * 6 + ['%f'] * 5) % self.values()


class BarcodeMetrics(object):
    ''' Aggregate metrics computed from the current counters of a barcode
        table.  Totals include the sentinel; maxima, the assigned PF total and
        the barcode count only cover real barcodes.  Nothing here modifies the
        table.
    '''

    def __init__(self, table):
        self.table = table
        barcodes = table.non_sentinel_entries()
        self.barcode_count = len(barcodes)
        self.total_pf_reads_assigned = sum(bc.pf_reads for bc in barcodes)
        self.total_reads = table.sentinel.reads + sum(bc.reads for bc in barcodes)
        self.total_pf_reads = table.sentinel.pf_reads + self.total_pf_reads_assigned
        self.max_reads = max([bc.reads for bc in barcodes] or [0])
        self.max_pf_reads = max([bc.pf_reads for bc in barcodes] or [0])

    def rows(self):
        ''' One row per real barcode in table order, then the sentinel row. '''
        for bc in self.table.non_sentinel_entries():
            yield MetricsRow(bc, self)
        yield MetricsRow(self.table.sentinel, self, name='', perfect_matches=0, pf_perfect_matches=0,
                         total_pf_reads_assigned=0)

    def lines(self):
        yield '\t'.join(METRICS_COLUMNS)
        for row in self.rows():
            yield row.format()
