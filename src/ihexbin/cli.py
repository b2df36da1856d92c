# Copyright (c) 2013-2025, Andrea Zoppi
# All rights reserved.
#
# Redistribution and use in source and binary forms, with or without
# modification, are permitted provided that the following conditions are met:
#
# 1. Redistributions of source code must retain the above copyright notice,
#    this list of conditions and the following disclaimer.
#
# 2. Redistributions in binary form must reproduce the above copyright
#    notice, this list of conditions and the following disclaimer in the
#    documentation and/or other materials provided with the distribution.
#
# THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS"
# AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE
# IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE
# ARE DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE
# LIABLE FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR
# CONSEQUENTIAL DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF
# SUBSTITUTE GOODS OR SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS
# INTERRUPTION) HOWEVER CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN
# CONTRACT, STRICT LIABILITY, OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE)
# ARISING IN ANY WAY OUT OF THE USE OF THIS SOFTWARE, EVEN IF ADVISED OF THE
# POSSIBILITY OF SUCH DAMAGE.

"""
Module that contains the command line app.

Why does this file exist, and why not put this in __main__?

  You might be tempted to import things from __main__ later, but that will cause
  problems: the code will get executed twice:

  - When you run `python -m ihexbin` python will execute
    ``__main__.py`` as a script. That means there won't be any
    ``ihexbin.__main__`` in ``sys.modules``.
  - When you import __main__ it will get executed again (as a module) because
    there's no ``ihexbin.__main__`` in ``sys.modules``.

  Also see (1) from https://click.palletsprojects.com/en/stable/setuptools/#setuptools-integration
"""

import io
import logging

import click

from . import __version__
from .binary import AddressError
from .binary import BinaryReader
from .binary import DecodeError
from .records import IhexReader

FILE_PATH_IN = click.Path(dir_okay=False, allow_dash=True)
FILE_PATH_OUT = click.Path(dir_okay=False, allow_dash=True, writable=True)

_logger = logging.getLogger(__name__)


def print_version(ctx, _, value):

    if not value or ctx.resilient_parsing:
        return

    click.echo(f'ihex2bin from Python ihexbin {__version__!s}')
    ctx.exit()


def setup_logging(verbose: bool) -> None:

    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format='%(levelname)s: %(message)s',
    )


# ============================================================================

@click.command()
@click.option('-v', '--verbose', is_flag=True, help="""
    Prints debug messages onto the standard error.
""")
@click.option('-V', '--version', is_flag=True, is_eager=True,
              expose_value=False, callback=print_version, help="""
    Prints the package version number.
""")
@click.argument('infile', type=FILE_PATH_IN)
@click.argument('outfile', type=FILE_PATH_OUT)
def main(
    verbose: bool,
    infile: str,
    outfile: str,
) -> None:
    r"""Converts an Intel HEX file into a binary file.

    ``INFILE`` is the path of the input Intel HEX file.
    Set to ``-`` to read from standard input.

    ``OUTFILE`` is the path of the output binary file.
    Set to ``-`` to write to standard output.

    The binary image starts from the base address stated by the first
    Extended Address record, if any. Holes are filled with zeros.
    """

    setup_logging(verbose)

    try:
        input_stream = click.open_file(infile, 'rb')
    except OSError as exc:
        raise click.FileError(infile, hint=exc.strerror or str(exc))

    with input_stream:
        try:
            output_stream = click.open_file(outfile, 'wb')
        except OSError as exc:
            raise click.FileError(outfile, hint=exc.strerror or str(exc))

        reader = BinaryReader(IhexReader(input_stream))
        view = memoryview(bytearray(io.DEFAULT_BUFFER_SIZE))

        try:
            with output_stream:
                while True:
                    try:
                        size = reader.fill(view)
                    except (DecodeError, AddressError) as exc:
                        raise click.ClickException(str(exc))
                    except OSError as exc:
                        raise click.ClickException(f'cannot read {infile!r}: {exc!s}')

                    output_stream.write(view[:size])
                    if size < len(view):
                        break

        except OSError as exc:
            raise click.ClickException(f'cannot write {outfile!r}: {exc!s}')

    _logger.debug('%d bytes written', reader.read_bytes)
    if reader.start_address is not None:
        _logger.debug('start address: %r', reader.start_address)
