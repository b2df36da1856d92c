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

r"""Binary stream conversion.

This module rebuilds the binary image described by a sequence of Intel HEX
records, as a plain byte stream.

The first Extended Address record, found before any byte is emitted, fixes
the *base address* of the image.
Any following Extended Address records move the current address *relative*
to that base, so that the output always starts from the base address.
Holes between data records are filled with zeros.
"""

import io
import logging
from typing import IO
from typing import Any
from typing import Iterable
from typing import Iterator
from typing import NamedTuple
from typing import Optional
from typing import Union

from .records import AnyBytes
from .records import IhexReader
from .records import IhexRecord
from .records import ProducerError

try:
    from typing import TypeAlias
except ImportError:  # pragma: no cover
    TypeAlias = Any  # Python < 3.10

_logger = logging.getLogger(__name__)


class DecodeError(ValueError):
    r"""Record decoding error.

    Raised by :meth:`BinaryReader.fill` when the record producer fails.

    Attributes:
        error (:class:`ihexbin.records.ProducerError`):
            The wrapped producer error, also chained as ``__cause__``.
    """

    def __init__(self, error: ProducerError):

        super().__init__(f'error reading hex file: {error!s}')
        self.error: ProducerError = error


class AddressError(ValueError):
    r"""Address sequence error.

    Raised by :meth:`BinaryReader.fill` when a record would move backwards,
    either with data placed behind the already emitted bytes, or with an
    Extended Address below the base address.
    """


class SegmentStartAddress(NamedTuple):
    r"""Start address in *segment:offset* form."""

    cs: int
    r"""Code Segment register value."""

    ip: int
    r"""Instruction Pointer register value."""

    @property
    def linear(self) -> int:
        r"""int: Equivalent 20-bit linear address."""

        return (self.cs << 4) + self.ip


class LinearStartAddress(NamedTuple):
    r"""Start address as a flat 32-bit address."""

    address: int


StartAddress: TypeAlias = Union[SegmentStartAddress, LinearStartAddress]


class BinaryReader(io.RawIOBase):
    r"""Intel HEX to binary stream reader.

    It pulls records from `records` as needed to fill the buffers provided
    to :meth:`fill`, resuming partially consumed records on the next call.

    The object is also a readable raw :mod:`io` stream, so that
    :meth:`read`, :meth:`readall`, and :meth:`readinto` work as usual.

    Args:
        records (iterable of :class:`ihexbin.records.IhexRecord`):
            Record producer, e.g. a :class:`ihexbin.records.IhexReader`.
            It may raise :class:`ihexbin.records.ProducerError` while
            iterating.

    Examples:
        >>> from ihexbin.binary import BinaryReader
        >>> from ihexbin.records import IhexReader
        >>> buffer = b'''
        ...     :020000040800F2
        ...     :04000000F0FF0010FD
        ...     :04000600ABCD00007E
        ...     :0400000508000000EF
        ...     :00000001FF
        ... '''
        >>> reader = BinaryReader(IhexReader(buffer))
        >>> reader.read()
        b'\xf0\xff\x00\x10\x00\x00\xab\xcd\x00\x00'
        >>> reader.start_address
        LinearStartAddress(address=134217728)
    """

    def __init__(self, records: Iterable[IhexRecord]):

        super().__init__()

        self._records: Iterator[IhexRecord] = iter(records)
        self._record: Optional[IhexRecord] = None
        self._record_pos: int = 0
        self._base_address: int = 0
        self._address: int = 0
        self._read_bytes: int = 0
        self._start_address: Optional[StartAddress] = None
        self._terminated: bool = False

    @classmethod
    def from_stream(cls, stream: Union[AnyBytes, IO]) -> 'BinaryReader':
        r"""Creates a reader parsing Intel HEX text.

        Args:
            stream (bytes IO, text IO, or buffer):
                Intel HEX text source.

        Returns:
            :class:`BinaryReader`: Binary reader object.
        """

        return cls(IhexReader(stream))

    @property
    def address(self) -> int:
        r"""int: Current address offset, relative to :attr:`base_address`."""

        return self._address

    @property
    def base_address(self) -> int:
        r"""int: Base address, fixed by the first Extended Address record."""

        return self._base_address

    @property
    def read_bytes(self) -> int:
        r"""int: Total number of bytes emitted so far."""

        return self._read_bytes

    @property
    def start_address(self) -> Optional[StartAddress]:
        r"""Start address.

        The most recent start address found so far, as either
        :class:`SegmentStartAddress` or :class:`LinearStartAddress`.
        ``None`` if no start address record has been processed yet.
        """

        return self._start_address

    @property
    def terminated(self) -> bool:
        r"""bool: Record stream exhausted or End Of File reached."""

        return self._terminated

    def _update_address(self, address: int) -> None:

        if self._base_address == 0 and self._read_bytes == 0:
            _logger.debug('base address fixed at 0x%08X', address)
            self._base_address = address
        else:
            if address < self._base_address:
                raise AddressError(f'extended address 0x{address:08X} '
                                   f'below base address 0x{self._base_address:08X}')
            self._address = address - self._base_address

    def _next_record(self) -> Optional[IhexRecord]:

        try:
            return next(self._records)
        except StopIteration:
            return None
        except ProducerError as exc:
            raise DecodeError(exc) from exc

    def fill(self, buffer: Union[bytearray, memoryview]) -> int:
        r"""Fills a buffer with binary data.

        Records are pulled from the producer until `buffer` is full, or the
        record stream ends.
        A short count is returned only once, when the record stream ends
        (exhaustion or *End Of File*); any further call returns zero.

        Args:
            buffer (writable bytes-like):
                Buffer to fill, of any size.

        Returns:
            int: Number of bytes written into `buffer`.

        Raises:
            DecodeError: The record producer failed.
            AddressError: Records moving backwards.
        """

        view = memoryview(buffer).cast('B')
        size = len(view)
        offset = 0

        while offset < size and not self._terminated:
            record = self._record

            if record is None:
                record = self._next_record()
                if record is None:
                    _logger.debug('record stream exhausted after %d bytes', self._read_bytes)
                    self._terminated = True
                    break
                self._record = record
                self._record_pos = 0

            tag = record.tag

            if tag.is_data():
                record_address = self._address + record.address
                pending_address = record_address + self._record_pos

                if pending_address < self._read_bytes:
                    raise AddressError(f'data record at 0x{pending_address:08X} '
                                       f'behind 0x{self._read_bytes:08X}')

                gap = pending_address - self._read_bytes
                if gap:
                    chunk_size = min(gap, size - offset)
                    view[offset:(offset + chunk_size)] = bytes(chunk_size)
                    offset += chunk_size
                    self._read_bytes += chunk_size
                    if chunk_size < gap:
                        break

                data = record.data
                chunk_size = min(len(data) - self._record_pos, size - offset)
                if chunk_size:
                    start = self._record_pos
                    view[offset:(offset + chunk_size)] = data[start:(start + chunk_size)]
                    offset += chunk_size
                    self._read_bytes += chunk_size
                    self._record_pos += chunk_size

                if self._record_pos >= len(data):
                    self._record = None

            elif tag.is_extension():
                self._update_address(record.extension_address())
                self._record = None

            elif tag == tag.START_SEGMENT_ADDRESS:
                value = record.data_to_int()
                self._start_address = SegmentStartAddress(value >> 16, value & 0xFFFF)
                _logger.debug('start address %r', self._start_address)
                self._record = None

            elif tag == tag.START_LINEAR_ADDRESS:
                self._start_address = LinearStartAddress(record.data_to_int())
                _logger.debug('start address %r', self._start_address)
                self._record = None

            else:  # elif tag.is_eof():
                _logger.debug('end of file after %d bytes', self._read_bytes)
                self._terminated = True
                self._record = None

        return offset

    def readable(self) -> bool:

        return True

    def readinto(self, buffer: Union[bytearray, memoryview]) -> int:

        return self.fill(buffer)

    def seekable(self) -> bool:

        return False

    def writable(self) -> bool:

        return False


def convert(
    records: Iterable[IhexRecord],
    stream: IO,
    buffer_size: int = io.DEFAULT_BUFFER_SIZE,
) -> BinaryReader:
    r"""Converts records into a binary stream.

    It drains a :class:`BinaryReader` wrapping `records`, writing the binary
    data onto `stream` one chunk at a time.

    Args:
        records (iterable of :class:`ihexbin.records.IhexRecord`):
            Record producer.

        stream (bytes IO):
            Output binary stream.

        buffer_size (int):
            Size of each chunk, in bytes.

    Returns:
        :class:`BinaryReader`: The drained reader, telling the
        :attr:`BinaryReader.start_address` and the
        :attr:`BinaryReader.read_bytes`.

    Raises:
        ValueError: Invalid buffer size.
        DecodeError: The record producer failed.
        AddressError: Records moving backwards.

    Examples:
        >>> import io
        >>> from ihexbin.binary import convert
        >>> from ihexbin.records import IhexReader
        >>> stream = io.BytesIO()
        >>> reader = convert(IhexReader(b':03000200616263D5'), stream)
        >>> stream.getvalue()
        b'\x00\x00abc'
    """

    buffer_size = buffer_size.__index__()
    if buffer_size < 1:
        raise ValueError('invalid buffer size')

    reader = BinaryReader(records)
    buffer = bytearray(buffer_size)
    view = memoryview(buffer)

    while True:
        size = reader.fill(view)
        stream.write(view[:size])
        if size < buffer_size:
            break

    return reader
