#!/usr/bin/env python

class FormatError(ValueError):
    '''Indicates a malformed or inconsistent barcode definition file.'''

    def __init__(self, reason):
        super(FormatError, self).__init__(reason)

class LengthMismatchError(ValueError):
    '''Indicates that a barcode and its quality string differ in length.'''
    pass

class MateOrderError(ValueError):
    '''Indicates that a paired read was not immediately followed by its mate'''
    pass

class InvalidBamHeaderError(ValueError):
    '''Indicates a malformed or otherwise unusable bam file header'''
    pass
