'''Command-line plumbing shared by the root scripts: each script lists its
subcommands in __commands__ as (name, parser_function) pairs and hands them
to main_argparse().
'''

import os.path
import sys
import logging
import argparse
import importlib
import inspect
import collections

import util.version

__version__ = util.version.get_version()

log = logging.getLogger()

# parser attributes that are plumbing, not arguments of the command function
CONTROL_ARGS = ('loglevel', 'version', 'func_main', 'command')


def setup_logger(log_level):
    loglevel = getattr(logging, log_level.upper(), None)
    assert loglevel, "unrecognized log level: %s" % log_level
    log.setLevel(loglevel)
    h = logging.StreamHandler()
    h.setFormatter(logging.Formatter("%(asctime)s - %(module)s:%(lineno)d:%(funcName)s - %(levelname)s - %(message)s"))
    log.addHandler(h)


def script_name():
    return os.path.basename(sys.argv[0]).rsplit('.', 1)[0]


def command_line():
    ''' The invocation of the running script, as one string. '''
    return ' '.join([script_name()] + sys.argv[1:])


def common_args(parser, arglist=(('loglevel', None), ('version', None))):
    for k, v in arglist:
        if k == 'loglevel':
            parser.add_argument("--loglevel",
                                dest="loglevel",
                                help="Verboseness of output.  [default: %(default)s]",
                                default=v or 'INFO',
                                choices=('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'))
        elif k == 'version':
            parser.add_argument('--version', '-V', action='version', version=v or __version__)
        else:
            raise Exception("unrecognized argument %s" % k)
    return parser


def main_command(mainfunc):
    ''' Wrap a function taking keyword arguments so that it can be called
        with an argparse.Namespace instead.
    '''

    def _main(args):
        kwargs = dict((k, v) for k, v in vars(args).items() if k not in CONTROL_ARGS)
        return mainfunc(**kwargs)

    _main.__doc__ = mainfunc.__doc__
    return _main


def attach_main(parser, cmd_main, split_args=False):
    if split_args:
        cmd_main = main_command(cmd_main)
    parser.description = cmd_main.__doc__
    parser.set_defaults(func_main=cmd_main)
    return parser


def make_parser(commands, description):
    ''' Build one parser with a subcommand per (name, parser_function) pair.
        A single command named None gets a plain parser with no subcommands.
    '''
    if len(commands) == 1 and commands[0][0] is None:
        parser = commands[0][1](argparse.ArgumentParser())
        parser.set_defaults(command='')
        return parser

    parser = argparse.ArgumentParser(description=description, usage='%(prog)s subcommand')
    parser.add_argument('--version', '-V', action='version', version=__version__, help=argparse.SUPPRESS)
    subparsers = parser.add_subparsers(title='subcommands', dest='command')
    for cmd_name, cmd_parser in commands:
        p = subparsers.add_parser(cmd_name, help=cmd_parser.__doc__,
                                  formatter_class=argparse.ArgumentDefaultsHelpFormatter)
        cmd_parser(p)
    return parser


def main_argparse(commands, description):
    parser = make_parser(commands, description)

    # with no arguments, print help
    if len(sys.argv) == 1:
        parser.parse_args(['--help'])
    elif len(sys.argv) == 2 and (len(commands) > 1 or commands[0][0] is not None):
        parser.parse_args([sys.argv[1], '--help'])
    args = parser.parse_args()

    setup_logger(getattr(args, 'loglevel', 'DEBUG'))
    log.info("software version: %s, python version: %s", __version__, sys.version)
    log.info("command: %s", command_line())

    ret = args.func_main(args)
    return 0 if ret is None else ret


class BadInputError(RuntimeError):
    '''Indicates that an invalid input was given to a command'''

    def __init__(self, reason):
        super(BadInputError, self).__init__(reason)


def check_input(condition, error_msg):
    if not condition:
        raise BadInputError(error_msg)


def parse_cmd(module, cmd, args):
    """Parse arguments `args` to command `cmd` from module `module`."""
    if isinstance(module, str):
        module = importlib.import_module(module)
    assert inspect.ismodule(module)
    parser_fn = dict(getattr(module, '__commands__'))[cmd]
    return parser_fn(argparse.ArgumentParser()).parse_args(list(map(str, args)))


CmdRunInfo = collections.namedtuple('CmdRunInfo', ['result', 'args_parsed'])


def run_cmd(module, cmd, args):
    """Parse args with the command's own parser, then run the command.

    Returns a CmdRunInfo with the command's return value and the parsed args.
    """
    log.info('Calling command %s with args %s', cmd, args)
    args_parsed = parse_cmd(module, cmd, args)
    result = args_parsed.func_main(args_parsed)
    return CmdRunInfo(result=result, args_parsed=args_parsed)
