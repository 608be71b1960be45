"""Sequential reader for the TLS-style binary structures used by CT logs."""

from enum import Enum
from typing import Union


class Endianness(Enum):
    BIG = "big"
    LITTLE = "little"


class DataType(Enum):
    UINT = "uint"
    BYTES = "bytes"


class BinaryReader:
    """Read fixed-width unsigned integers and byte strings from a buffer."""

    def __init__(self, data: bytes, endianness: Endianness = Endianness.BIG):
        self._data = memoryview(data)
        self._pos = 0
        self._byteorder = endianness.value

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def has_bytes(self, count: int) -> bool:
        return self.remaining >= count

    def _take(self, count: int) -> memoryview:
        if count < 0:
            raise ValueError(f"Cannot read a negative length ({count})")
        if not self.has_bytes(count):
            raise ValueError(
                f"Truncated data: need {count} bytes at offset {self._pos}, "
                f"have {self.remaining}"
            )
        chunk = self._data[self._pos:self._pos + count]
        self._pos += count
        return chunk

    def read(self, data_type: DataType, length: int) -> Union[int, bytes]:
        """
        Read `length` bytes as the given type.

        UINT returns an int decoded with the reader's endianness,
        BYTES returns a copy of the raw bytes.
        """
        chunk = self._take(length)
        if data_type is DataType.UINT:
            return int.from_bytes(chunk, self._byteorder)
        return chunk.tobytes()

    def read_uint(self, length: int) -> int:
        chunk = self._take(length)
        return int.from_bytes(chunk, self._byteorder)

    def read_bytes(self, length: int) -> bytes:
        return self._take(length).tobytes()

    def read_vector(self, length_prefix: int) -> bytes:
        """Read an opaque vector preceded by a `length_prefix`-byte length."""
        return self.read_bytes(self.read_uint(length_prefix))

    def skip(self, count: int) -> None:
        self._take(count)
