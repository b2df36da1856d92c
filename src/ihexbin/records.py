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


r"""Intel HEX records.

This module provides the record object model of the Intel HEX format, the
line parser, and the lazy record reader feeding :class:`ihexbin.binary.BinaryReader`.

See Also:
    `<https://en.wikipedia.org/wiki/Intel_HEX>`_
"""

import binascii
import enum
import io
import logging
from typing import IO
from typing import Any
from typing import Iterable
from typing import Iterator
from typing import Optional
from typing import Tuple
from typing import Type
from typing import Union

from bytesparse import Memory

try:
    from typing import TypeAlias
except ImportError:  # pragma: no cover
    TypeAlias = Any  # Python < 3.10

AnyBytes: TypeAlias = Union[bytes, bytearray, memoryview]

_logger = logging.getLogger(__name__)


class ProducerError(ValueError):
    r"""Record production error.

    Raised by :class:`IhexReader` when a line cannot be turned into a valid
    record, for example because of a syntax error or a wrong checksum.

    The underlying exception is chained as ``__cause__``.

    Attributes:
        row (int):
            Line number of the offending line, starting from 1.

        line (bytes):
            Raw offending line.
    """

    def __init__(self, message: str, row: int = 0, line: AnyBytes = b''):

        if row > 0:
            message = f'{message} at line {row}'
        super().__init__(message)
        self.row: int = row
        self.line: AnyBytes = line


class IhexTag(enum.IntEnum):
    r"""Intel HEX tag."""

    DATA = 0
    r"""Binary data."""

    END_OF_FILE = 1
    r"""End Of File."""

    EXTENDED_SEGMENT_ADDRESS = 2
    r"""Extended Segment Address."""

    START_SEGMENT_ADDRESS = 3
    r"""Start Segment Address."""

    EXTENDED_LINEAR_ADDRESS = 4
    r"""Extended Linear Address."""

    START_LINEAR_ADDRESS = 5
    r"""Start Linear Address."""

    def is_data(self) -> bool:

        return self == self.DATA

    def is_eof(self) -> bool:
        r"""Tells whether this is an End Of File record tag.

        Returns:
            bool: This is an End Of File record tag.

        Examples:
            >>> from ihexbin.records import IhexTag
            >>> IhexTag.END_OF_FILE.is_eof()
            True
            >>> IhexTag.DATA.is_eof()
            False
        """

        return self == self.END_OF_FILE

    def is_extension(self) -> bool:
        r"""Tells whether this is an Extended Address record tag.

        Extended Address records set the *base address* of the following
        data records, either with *segment* (20-bit) or *linear* (32-bit)
        granularity.

        Returns:
            bool: This is an Extended Address record tag.

        Examples:
            >>> from ihexbin.records import IhexTag
            >>> IhexTag.EXTENDED_LINEAR_ADDRESS.is_extension()
            True
            >>> IhexTag.EXTENDED_SEGMENT_ADDRESS.is_extension()
            True
            >>> IhexTag.DATA.is_extension()
            False
        """

        return ((self == self.EXTENDED_SEGMENT_ADDRESS) or
                (self == self.EXTENDED_LINEAR_ADDRESS))

    def is_file_termination(self) -> bool:

        return self.is_eof()

    def is_start(self) -> bool:
        r"""Tells whether this is a Start Address record tag.

        Returns:
            bool: This is a Start Address record tag.

        Examples:
            >>> from ihexbin.records import IhexTag
            >>> IhexTag.START_LINEAR_ADDRESS.is_start()
            True
            >>> IhexTag.START_SEGMENT_ADDRESS.is_start()
            True
            >>> IhexTag.DATA.is_start()
            False
        """

        return ((self == self.START_SEGMENT_ADDRESS) or
                (self == self.START_LINEAR_ADDRESS))


class IhexRecord:
    r"""Intel HEX record object.

    A record is a single line of an Intel HEX file, carrying either some
    binary data at a 16-bit *offset*, or some *meta* information such as an
    address extension, a start address, or the end of file marker.

    Attributes:
        tag (:class:`IhexTag`):
            The *nature* of the record.

        address (int):
            The 16-bit *offset* field; meaningful for *data* records only.

        data (bytes):
            Record payload. Data records carry their binary data; address
            records carry their value as big-endian bytes.

        checksum (int):
            Record checksum. If not provided, it is computed from the other
            fields.

    Examples:
        >>> from ihexbin.records import IhexRecord, IhexTag
        >>> record = IhexRecord(IhexTag.DATA, address=2, data=b'abc')
        >>> record.count, hex(record.checksum)
        (3, '0xd5')
    """

    Tag: Type[IhexTag] = IhexTag

    def __init__(
        self,
        tag: IhexTag,
        address: int = 0,
        data: AnyBytes = b'',
        checksum: Optional[int] = None,
    ):

        self.tag: IhexTag = tag
        self.address: int = address
        self.data: bytes = bytes(data)
        self.checksum: int = self.compute_checksum() if checksum is None else checksum

    def __eq__(self, other: Any) -> bool:

        if not isinstance(other, IhexRecord):
            return NotImplemented

        return (self.tag == other.tag and
                self.address == other.address and
                self.data == other.data and
                self.checksum == other.checksum)

    @property
    def count(self) -> int:
        r"""int: Number of data bytes."""

        return len(self.data)

    def compute_checksum(self) -> int:
        r"""Computes the checksum field value.

        The checksum is the two's complement of the least significant byte of
        the sum of all the other record bytes: count, address (high and low),
        tag, and data.

        Returns:
            int: Computed checksum value.
        """

        total = len(self.data) + (self.address >> 8) + self.address
        total += int(self.tag) + sum(self.data)
        return -total & 0xFF

    def data_to_int(self) -> int:

        return int.from_bytes(self.data, byteorder='big')

    def extension_address(self) -> int:
        r"""Computes the base address of an Extended Address record.

        Returns:
            int: 32-bit base address.

        Raises:
            ValueError: Not an Extended Address record.

        Examples:
            >>> from ihexbin.records import IhexRecord
            >>> record = IhexRecord.parse(b':020000040800F2')
            >>> hex(record.extension_address())
            '0x8000000'
        """

        if self.tag == IhexTag.EXTENDED_LINEAR_ADDRESS:
            return self.data_to_int() << 16

        if self.tag == IhexTag.EXTENDED_SEGMENT_ADDRESS:
            return self.data_to_int() << 4

        raise ValueError('not an extension record')

    @classmethod
    def parse(cls, line: AnyBytes, validate: bool = True) -> 'IhexRecord':
        r"""Parses a record from a line of bytes.

        Surrounding whitespace is ignored. The line must start with the ``:``
        record mark, followed by hexadecimal digit pairs only.

        Args:
            line (bytes):
                Line to parse.

            validate (bool):
                Calls :meth:`validate` on the parsed record.

        Returns:
            :class:`IhexRecord`: Parsed record.

        Raises:
            ValueError: Syntax error, wrong count, unknown tag, or invalid
            record.

        Examples:
            >>> from ihexbin.records import IhexRecord
            >>> IhexRecord.parse(b':00000001FF\r\n').tag
            <IhexTag.END_OF_FILE: 1>
            >>> IhexRecord.parse(b'::00000001FF\r\n')
            Traceback (most recent call last):
                ...
            ValueError: syntax error
        """

        line = bytes(line).strip()
        if not line.startswith(b':'):
            raise ValueError('syntax error')

        try:
            raw = binascii.unhexlify(line[1:])
        except binascii.Error as exc:
            raise ValueError('syntax error') from exc

        if len(raw) < 5:
            raise ValueError('syntax error')

        data = raw[4:-1]
        if raw[0] != len(data):
            raise ValueError('wrong count')

        record = cls(cls.Tag(raw[3]),
                     address=int.from_bytes(raw[1:3], byteorder='big'),
                     data=data,
                     checksum=raw[-1])
        if validate:
            record.validate()
        return record

    def validate(self) -> 'IhexRecord':
        r"""Validates consistency of attribute values.

        Returns:
            :class:`IhexRecord`: *self*.

        Raises:
            ValueError: Some attributes are out of range, the data size does
            not suit the tag, or the checksum is wrong.
        """

        if not 0 <= self.address <= 0xFFFF:
            raise ValueError('address overflow')

        size = len(self.data)
        if size > 0xFF:
            raise ValueError('data size overflow')

        tag = self.Tag(self.tag)
        if tag.is_extension() and size != 2:
            raise ValueError('extension data size overflow')

        if tag.is_start() and size != 4:
            raise ValueError('start address data size overflow')

        if tag.is_eof() and size:
            raise ValueError('unexpected data')

        if self.checksum != self.compute_checksum():
            raise ValueError('wrong checksum')

        return self


class IhexReader:
    r"""Lazy Intel HEX record reader.

    It parses one line at a time from the wrapped `stream`, yielding one
    :class:`IhexRecord` per non-empty line.
    Reading stops after the *End Of File* record, ignoring anything beyond.

    Any parsing or validation failure is raised as :class:`ProducerError`,
    which tells the offending line number.

    Args:
        stream (bytes IO, text IO, or buffer):
            Stream or byte buffer to read records from.

    Examples:
        >>> from ihexbin.records import IhexReader
        >>> buffer = b'''
        ...     :020000040800F2
        ...     :0400000508000000EF
        ...     :00000001FF
        ... '''
        >>> [record.tag.name for record in IhexReader(buffer)]
        ['EXTENDED_LINEAR_ADDRESS', 'START_LINEAR_ADDRESS', 'END_OF_FILE']
    """

    Record: Type[IhexRecord] = IhexRecord
    r"""Record type to parse lines with."""

    def __init__(self, stream: Union[AnyBytes, IO]):

        if isinstance(stream, (bytes, bytearray, memoryview)):
            stream = io.BytesIO(stream)

        self._lines: Iterator[Union[bytes, str]] = iter(stream)
        self._done: bool = False
        self.row: int = 0

    def __iter__(self) -> 'IhexReader':

        return self

    def __next__(self) -> IhexRecord:

        if self._done:
            raise StopIteration

        for line in self._lines:
            self.row += 1

            try:
                if isinstance(line, str):
                    line = line.encode('ascii')

                if not line.strip():
                    continue

                record = self.Record.parse(line)

            except ValueError as exc:
                raise ProducerError(str(exc), row=self.row, line=line) from exc

            if record.tag.is_file_termination():
                _logger.debug('end of file record at line %d', self.row)
                self._done = True

            return record

        self._done = True
        raise StopIteration


def load_memory(
    records: Iterable[IhexRecord],
) -> Tuple[Memory, Optional[int]]:
    r"""Loads records into a sparse memory image, with absolute addressing.

    This is a separate view of the records, not used by
    :class:`ihexbin.binary.BinaryReader` nor by the command line tool.
    Here each Extended Address record *replaces* the previous base address,
    and data is placed at its absolute address, leaving holes where no data
    is provided. The converter instead fixes its base address with the first
    Extended Address record and fills holes with zeros.

    Records after *End Of File* are ignored.

    Args:
        records (iterable of :class:`IhexRecord`):
            Records to load, e.g. an :class:`IhexReader`.

    Returns:
        (:class:`bytesparse.Memory`, int): Memory image, and start address
        (``None`` if not provided).

    Examples:
        >>> from ihexbin.records import IhexReader, load_memory
        >>> buffer = b'''
        ...     :03DA7A0061626383
        ...     :040000050000CAFE2F
        ...     :00000001FF
        ... '''
        >>> memory, startaddr = load_memory(IhexReader(buffer))
        >>> memory.start, memory.to_bytes()
        (55930, b'abc')
        >>> hex(startaddr)
        '0xcafe'
    """

    memory = Memory()
    extension = 0
    startaddr = None

    for record in records:
        tag = record.tag

        if tag.is_data():
            memory.write(record.address + extension, record.data)

        elif tag.is_extension():
            extension = record.extension_address()

        elif tag.is_start():
            startaddr = record.data_to_int()

        elif tag.is_file_termination():
            break

    return memory, startaddr
