import io
from typing import cast as _cast

import pytest
from bytesparse import Memory

from ihexbin.records import IhexReader
from ihexbin.records import IhexRecord
from ihexbin.records import IhexTag
from ihexbin.records import ProducerError
from ihexbin.records import load_memory

DATA = IhexTag.DATA
EOF = IhexTag.END_OF_FILE
ESA = IhexTag.EXTENDED_SEGMENT_ADDRESS
SSA = IhexTag.START_SEGMENT_ADDRESS
ELA = IhexTag.EXTENDED_LINEAR_ADDRESS
SLA = IhexTag.START_LINEAR_ADDRESS

# https://en.wikipedia.org/wiki/Intel_HEX#Record_types
WIKIPEDIA_LINES = [
    b':0B0010006164647265737320676170A7\r\n',
    b':00000001FF\r\n',
    b':020000021200EA\r\n',
    b':0400000300003800C1\r\n',
    b':020000040800F2\r\n',
    b':04000005000000CD2A\r\n',
]


class TestIhexTag:

    def test_enum(self):
        assert IhexTag.DATA == 0
        assert IhexTag.END_OF_FILE == 1
        assert IhexTag.EXTENDED_SEGMENT_ADDRESS == 2
        assert IhexTag.START_SEGMENT_ADDRESS == 3
        assert IhexTag.EXTENDED_LINEAR_ADDRESS == 4
        assert IhexTag.START_LINEAR_ADDRESS == 5

    def test_is_data(self):
        assert [tag.is_data() for tag in IhexTag] == [True] + [False] * 5

    def test_is_eof(self):
        assert [tag.is_eof() for tag in IhexTag] == [False, True, False, False, False, False]

    def test_is_extension(self):
        assert DATA.is_extension() is False
        assert EOF.is_extension() is False
        assert ESA.is_extension() is True
        assert SSA.is_extension() is False
        assert ELA.is_extension() is True
        assert SLA.is_extension() is False

    def test_is_file_termination(self):
        for tag in IhexTag:
            assert tag.is_file_termination() is tag.is_eof()

    def test_is_start(self):
        assert DATA.is_start() is False
        assert EOF.is_start() is False
        assert ESA.is_start() is False
        assert SSA.is_start() is True
        assert ELA.is_start() is False
        assert SLA.is_start() is True


class TestIhexRecord:

    def test___init__(self):
        record = IhexRecord(DATA, address=0x1234, data=bytearray(b'xyz'))
        assert record.tag == DATA
        assert record.address == 0x1234
        assert record.data == b'xyz'
        assert isinstance(record.data, bytes)
        assert record.count == 3
        assert record.checksum == record.compute_checksum()

        record = IhexRecord(DATA, address=0x1234, data=b'xyz', checksum=0xA5)
        assert record.checksum == 0xA5

    def test___eq__(self):
        record = IhexRecord(DATA, address=0x1234, data=b'xyz', checksum=0xA5)
        assert record == IhexRecord(DATA, address=0x1234, data=b'xyz', checksum=0xA5)
        assert record != IhexRecord(DATA, address=0x1234, data=b'xyw', checksum=0xA5)
        assert record != IhexRecord(DATA, address=0x1234, data=b'xyz', checksum=0xA6)
        assert record != IhexRecord(DATA, address=0x1235, data=b'xyz', checksum=0xA5)
        assert record != IhexRecord(SLA, address=0x1234, data=b'xyz', checksum=0xA5)
        assert record != object()

    def test_compute_checksum(self):
        expected = [0xA7, 0xFF, 0xEA, 0xC1, 0xF2, 0x2A]
        for checksum, line in zip(expected, WIKIPEDIA_LINES):
            record = IhexRecord.parse(line)
            assert record.compute_checksum() == checksum

    def test_data_to_int(self):
        record = IhexRecord(SLA, data=b'\x12\x34\x56\x78')
        assert record.data_to_int() == 0x12345678

    def test_extension_address(self):
        record = IhexRecord(ELA, data=b'\xAB\xCD')
        assert record.extension_address() == 0xABCD0000

        record = IhexRecord(ESA, data=b'\xAB\xCD')
        assert record.extension_address() == 0x000ABCD0

    def test_extension_address_raises(self):
        for tag in (DATA, EOF, SSA, SLA):
            record = IhexRecord(tag, data=b'\xAB\xCD')
            with pytest.raises(ValueError, match='not an extension record'):
                record.extension_address()

    def test_parse(self):
        lines = [
            b':0000000000\r\n',
            b':FFFFFF00' + (b'FF' * 0xFF) + b'02\r\n',
            b':00FFFF0101\r\n',
            b':02FFFF02FFFF00\r\n',
            b':04000003FFFFFFFFFD\r\n',
            b':020000040000FA\r\n',
            b':04FFFF0500000000F9\r\n',
        ]
        records = [
            IhexRecord(DATA, address=0x0000, checksum=0x00, data=b''),
            IhexRecord(DATA, address=0xFFFF, checksum=0x02, data=(b'\xFF' * 0xFF)),
            IhexRecord(EOF, address=0xFFFF, checksum=0x01, data=b''),
            IhexRecord(ESA, address=0xFFFF, checksum=0x00, data=b'\xFF\xFF'),
            IhexRecord(SSA, address=0x0000, checksum=0xFD, data=b'\xFF\xFF\xFF\xFF'),
            IhexRecord(ELA, address=0x0000, checksum=0xFA, data=b'\x00\x00'),
            IhexRecord(SLA, address=0xFFFF, checksum=0xF9, data=b'\x00\x00\x00\x00'),
        ]
        for line, expected in zip(lines, records):
            assert IhexRecord.parse(line) == expected

    def test_parse_whitespace(self):
        expected = IhexRecord(DATA, data=b'\xFF\xFF')
        assert IhexRecord.parse(b' \t:02000000FFFF00 \r\n') == expected
        assert IhexRecord.parse(bytearray(b':02000000ffff00')) == expected
        assert IhexRecord.parse(memoryview(b':02000000FFFF00')) == expected

    def test_parse_raises_syntax(self):
        lines = [
            b'',
            b':',
            b'::02000000FFFF00\r\n',
            b':..000000FFFF00\r\n',
            b':02....00FFFF00\r\n',
            b':020000..FFFF00\r\n',
            b':02000000....00\r\n',
            b':00000000..\r\n',
            b':02000000FFFF0\r\n',
            b':02000000FF FF00\r\n',
            b':00000001FF;junk\r\n',
            b':00000001\r\n',
            b'02000000FFFF00\r\n',
        ]
        for line in lines:
            with pytest.raises(ValueError, match='syntax error'):
                IhexRecord.parse(line)

    def test_parse_raises_checksum(self):
        with pytest.raises(ValueError, match='wrong checksum'):
            IhexRecord.parse(b':00000001FE\r\n')

        record = IhexRecord.parse(b':00000001FE\r\n', validate=False)
        assert record.checksum == 0xFE

    def test_parse_raises_count(self):
        with pytest.raises(ValueError, match='wrong count'):
            IhexRecord.parse(b':03000000FFFFFF\r\n')

        with pytest.raises(ValueError, match='wrong count'):
            IhexRecord.parse(b':01000000FFFF01\r\n')

    def test_parse_raises_tag(self):
        with pytest.raises(ValueError, match='is not a valid IhexTag'):
            IhexRecord.parse(b':00000006FA\r\n')

    def test_parse_wikipedia(self):
        records = [
            IhexRecord(DATA, address=0x0010, checksum=0xA7,
                       data=b'\x61\x64\x64\x72\x65\x73\x73\x20\x67\x61\x70'),
            IhexRecord(EOF, address=0x0000, checksum=0xFF, data=b''),
            IhexRecord(ESA, address=0x0000, checksum=0xEA, data=b'\x12\x00'),
            IhexRecord(SSA, address=0x0000, checksum=0xC1, data=b'\x00\x00\x38\x00'),
            IhexRecord(ELA, address=0x0000, checksum=0xF2, data=b'\x08\x00'),
            IhexRecord(SLA, address=0x0000, checksum=0x2A, data=b'\x00\x00\x00\xCD'),
        ]
        for line, expected in zip(WIKIPEDIA_LINES, records):
            assert IhexRecord.parse(line) == expected

    def test_validate_raises(self):
        matches = [
            'address overflow',
            'address overflow',
            'data size overflow',
            'extension data size overflow',
            'extension data size overflow',
            'start address data size overflow',
            'start address data size overflow',
            'unexpected data',
            'wrong checksum',
            'is not a valid IhexTag',
        ]
        records = [
            IhexRecord(DATA, address=-1),
            IhexRecord(DATA, address=0x10000),
            IhexRecord(DATA, data=(b'x' * 0x100)),
            IhexRecord(ESA, data=b'000'),
            IhexRecord(ELA, data=b'0'),
            IhexRecord(SSA, data=b'000'),
            IhexRecord(SLA, data=b'00000'),
            IhexRecord(EOF, data=b'0'),
            IhexRecord(DATA, data=b'abc', checksum=0),
            IhexRecord(_cast(IhexTag, 6), checksum=0),
        ]
        for match, record in zip(matches, records):
            with pytest.raises(ValueError, match=match):
                record.validate()

    def test_validate_returns_self(self):
        record = IhexRecord(DATA, address=0x1234, data=b'abc')
        assert record.validate() is record


class TestIhexReader:

    def test_bytes(self):
        buffer = b''.join(WIKIPEDIA_LINES[2:] + WIKIPEDIA_LINES[:2])
        tags = [record.tag for record in IhexReader(buffer)]
        assert tags == [ESA, SSA, ELA, SLA, DATA, EOF]

    def test_binary_stream(self):
        stream = io.BytesIO(b''.join(WIKIPEDIA_LINES[4:]))
        records = list(IhexReader(stream))
        assert [record.tag for record in records] == [ELA, SLA]

    def test_text_stream(self):
        stream = io.StringIO(''.join(line.decode() for line in WIKIPEDIA_LINES[2:]))
        records = list(IhexReader(stream))
        assert [record.tag for record in records] == [ESA, SSA, ELA, SLA]

    def test_empty(self):
        assert list(IhexReader(b'')) == []

    def test_skips_blank_lines(self):
        buffer = b'\n  \r\n:020000040800F2\n\t\n:00000001FF\n'
        reader = IhexReader(buffer)
        assert next(reader).tag == ELA
        assert reader.row == 3
        assert next(reader).tag == EOF
        assert reader.row == 5
        assert list(reader) == []

    def test_stops_after_end_of_file(self):
        buffer = b':00000001FF\n:020000040800F2\ngarbage\n'
        reader = IhexReader(buffer)
        assert next(reader).tag == EOF
        with pytest.raises(StopIteration):
            next(reader)
        with pytest.raises(StopIteration):
            next(reader)
        assert reader.row == 1

    def test_raises_producer_error(self):
        buffer = b':020000040800F2\n:00000001FE\n'
        reader = IhexReader(buffer)
        assert next(reader).tag == ELA

        with pytest.raises(ProducerError, match='wrong checksum at line 2') as info:
            next(reader)
        assert info.value.row == 2
        assert info.value.line == b':00000001FE\n'
        assert isinstance(info.value.__cause__, ValueError)

    def test_raises_producer_error_syntax(self):
        with pytest.raises(ProducerError, match='syntax error at line 1'):
            next(IhexReader(b'hello\n'))

    def test_raises_producer_error_non_ascii(self):
        with pytest.raises(ProducerError, match='at line 1'):
            next(IhexReader(io.StringIO(':0000000é00\n')))

    def test_custom_record_type(self):

        class LoaderRecord(IhexRecord):

            def validate(self):
                if self.tag.is_start():
                    raise ValueError('start address not allowed')
                return super().validate()

        class LoaderReader(IhexReader):
            Record = LoaderRecord

        reader = LoaderReader(b':020000040800F2\n:0400000508000000EF\n')
        assert isinstance(next(reader), LoaderRecord)
        with pytest.raises(ProducerError, match='start address not allowed at line 2'):
            next(reader)


def test_producer_error():
    error = ProducerError('syntax error')
    assert str(error) == 'syntax error'
    assert error.row == 0
    assert error.line == b''
    assert isinstance(error, ValueError)

    error = ProducerError('syntax error', row=7, line=b'x')
    assert str(error) == 'syntax error at line 7'
    assert error.row == 7
    assert error.line == b'x'


def blocks_of(memory):
    return [tuple(block) for block in memory.to_blocks()]


def test_load_memory():
    buffer = (
        b':020000040800F2\n'
        b':02000000F0FF0F\n'
        b':020000040801F1\n'
        b':02000000F0FF0F\n'
        b':04000005000000CD2A\n'
        b':00000001FF\n'
    )
    memory, startaddr = load_memory(IhexReader(buffer))
    assert isinstance(memory, Memory)
    assert blocks_of(memory) == [
        (0x08000000, b'\xF0\xFF'),
        (0x08010000, b'\xF0\xFF'),
    ]
    assert startaddr == 0xCD


def test_load_memory_segment():
    records = [
        IhexRecord(ESA, data=b'\x12\x00'),
        IhexRecord(DATA, address=0x0010, data=b'abc'),
        IhexRecord(SSA, data=b'\x00\x00\x38\x00'),
    ]
    memory, startaddr = load_memory(records)
    assert blocks_of(memory) == [(0x12010, b'abc')]
    assert startaddr == 0x3800


def test_load_memory_stops_at_end_of_file():
    records = [
        IhexRecord(DATA, data=b'abc'),
        IhexRecord(EOF),
        IhexRecord(DATA, address=3, data=b'xyz'),
    ]
    memory, startaddr = load_memory(records)
    assert blocks_of(memory) == [(0, b'abc')]
    assert memory.to_bytes() == b'abc'
    assert startaddr is None
