"""
Per-log query capabilities.

Both clients expose the same three coroutines used by the pollers:
``get_tree_size()``, ``get_entries(start, end)`` with ``end`` exclusive,
and ``close()``.
"""

import base64
import logging
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union, cast

import httpx

from .binary_reader import BinaryReader, DataType, Endianness
from .config import DEFAULT_TIMEOUT, DEFAULT_USER_AGENT
from .errors import LogQueryError
from .httpx_transport import SharedTransportView
from .models import EntryType, LogKind, LogMeta, RawEntry, SignedTreeHead, TiledCheckpoint

logger = logging.getLogger(__name__)


class LogClient(Protocol):
    log_meta: LogMeta

    async def get_tree_size(self) -> int:
        ...

    async def get_entries(self, start: int, end: int) -> List[RawEntry]:
        ...

    async def close(self) -> None:
        ...


class _HttpLogClient:
    """
    Common httpx plumbing for both log flavours.

    A transport passed in stays open when the client is closed; its owner
    closes it.
    """

    def __init__(
        self,
        log_meta: LogMeta,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.log_meta = log_meta
        self.timeout = timeout
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self._client = httpx.AsyncClient(
            base_url=log_meta.url,
            timeout=self.timeout,
            headers={"User-Agent": self.user_agent},
            transport=SharedTransportView(transport) if transport is not None else None,
        )

    async def __aenter__(self):
        """Async context manager entry"""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        await self.close()

    async def close(self):
        """Close the HTTP client"""
        await self._client.aclose()

    @staticmethod
    def _check_range(start: int, end: int) -> None:
        if start < 0 or end < start:
            raise ValueError(f"Invalid entry range [{start}, {end})")


class ClassicLogClient(_HttpLogClient):
    """Client for RFC 6962 CT logs"""

    async def get_sth(self) -> SignedTreeHead:
        """Get Signed Tree Head"""
        response = await self._client.get("/ct/v1/get-sth")
        response.raise_for_status()
        data = cast(Dict[str, Any], response.json())
        try:
            return SignedTreeHead(
                tree_size=int(data["tree_size"]),
                timestamp=int(data["timestamp"]),
                sha256_root_hash=str(data["sha256_root_hash"]),
                tree_head_signature=str(data["tree_head_signature"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise LogQueryError(self.log_meta.url, f"malformed STH: {e}") from e

    async def get_tree_size(self) -> int:
        """Fetch the current tree size (number of entries in the log)"""
        sth = await self.get_sth()
        return sth.tree_size

    async def _get_entries_page(self, first: int, last: int) -> List[Dict[str, str]]:
        """One get-entries call; `last` is inclusive as on the wire."""
        params = {"start": first, "end": last}
        response = await self._client.get("/ct/v1/get-entries", params=params)
        response.raise_for_status()
        data = cast(Dict[str, Any], response.json())
        entries = data.get("entries")
        if not isinstance(entries, list):
            raise LogQueryError(self.log_meta.url, "get-entries response has no entry list")
        return cast(List[Dict[str, str]], entries)

    async def get_entries(self, start: int, end: int) -> List[RawEntry]:
        """
        Retrieve entries [start, end).

        Logs may answer with fewer entries than asked for, so this keeps
        requesting until the whole range is in hand.
        """
        self._check_range(start, end)
        entries: List[RawEntry] = []
        current = start
        while current < end:
            page = await self._get_entries_page(current, end - 1)
            if not page:
                raise LogQueryError(
                    self.log_meta.url, f"no entries returned for range [{current}, {end})"
                )
            for entry_data in page[: end - current]:
                entries.append(self._parse_classic_entry(current, entry_data))
                current += 1
        return entries

    def _parse_classic_entry(self, index: int, entry_data: Dict[str, str]) -> RawEntry:
        """
        Split a get-entries item into a RawEntry.

        An item whose structure cannot be read still yields an entry, with
        no certificate, so indexes stay aligned with the log.
        """
        timestamp = 0
        entry_type = EntryType.X509_ENTRY
        try:
            leaf_input = base64.b64decode(entry_data["leaf_input"])

            # MerkleTreeLeaf: version(1) + leaf_type(1) + timestamp(8) + entry_type(2) + ...
            reader = BinaryReader(leaf_input, Endianness.BIG)

            version = reader.read(DataType.UINT, 1)
            if version != 0:
                raise ValueError(f"Invalid MerkleTreeLeaf version: {version}")

            leaf_type = reader.read(DataType.UINT, 1)
            if leaf_type != 0:
                raise ValueError(f"Invalid leaf_type: {leaf_type}")

            timestamp = reader.read_uint(8)
            entry_type = EntryType(reader.read_uint(2))

            if entry_type == EntryType.X509_ENTRY:
                cert_data = reader.read_vector(3)
            else:
                # For precerts the certificate lives in extra_data (PreCertEntry.LeafCert)
                extra_data = base64.b64decode(entry_data["extra_data"])
                cert_data = BinaryReader(extra_data, Endianness.BIG).read_vector(3)

        except (KeyError, ValueError, TypeError) as e:
            logger.debug(f"Unreadable entry {index} from {self.log_meta.url}: {e}")
            return RawEntry(
                index=index, timestamp=timestamp, entry_type=entry_type,
                log_url=self.log_meta.url,
            )

        return RawEntry(
            index=index,
            timestamp=timestamp,
            entry_type=entry_type,
            log_url=self.log_meta.url,
            cert_data=cert_data,
        )


class TiledLogClient(_HttpLogClient):
    """Client for static/tiled CT logs"""

    TILE_SIZE = 256

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._tree_size = 0

    async def fetch_checkpoint(self) -> TiledCheckpoint:
        """Fetch the checkpoint from a tiled CT log"""
        response = await self._client.get("/checkpoint")
        response.raise_for_status()

        lines = response.text.strip().split("\n")
        if len(lines) < 3:
            raise LogQueryError(
                self.log_meta.url,
                f"Invalid checkpoint format: expected at least 3 lines, got {len(lines)}",
            )
        try:
            size = int(lines[1])
        except ValueError as e:
            raise LogQueryError(self.log_meta.url, f"Invalid checkpoint size: {lines[1]!r}") from e

        return TiledCheckpoint(origin=lines[0], size=size, hash=lines[2])

    async def get_tree_size(self) -> int:
        """Fetch the current tree size (number of entries in the log)"""
        checkpoint = await self.fetch_checkpoint()
        self._tree_size = checkpoint.size
        return checkpoint.size

    async def fetch_tile(
        self, tile_index: int, partial_width: Optional[int] = None
    ) -> List[Tuple[int, EntryType, Optional[bytes]]]:
        """
        Fetch a data tile.

        Args:
            tile_index: The index of the tile to fetch
            partial_width: If specified, fetch a partial tile with this width (1-255)
        """
        tile_path = self._encode_tile_path(tile_index)

        if partial_width is not None:
            if not (1 <= partial_width < self.TILE_SIZE):
                raise ValueError(
                    f"Partial tile width must be between 1 and 255, got {partial_width}"
                )
            tile_path = f"{tile_path}.p/{partial_width}"

        response = await self._client.get(f"/tile/data/{tile_path}")
        response.raise_for_status()

        return self._parse_tile_data(response.content)

    @staticmethod
    def _encode_tile_path(index: int) -> str:
        """
        Encode a tile index into the proper path format.
        Example: 1234567 -> x001/x234/567
        """
        if index == 0:
            return "000"

        groups = []
        n = index
        while n > 0:
            groups.append(n % 1000)
            n //= 1000

        groups.reverse()

        parts = [f"x{g:03d}" for g in groups[:-1]] + [f"{groups[-1]:03d}"]
        return "/".join(parts)

    def _parse_tile_data(self, data: bytes) -> List[Tuple[int, EntryType, Optional[bytes]]]:
        """Parse binary tile data into (timestamp, entry_type, certificate) leaves"""
        reader = BinaryReader(data, Endianness.BIG)
        leaves: List[Tuple[int, EntryType, Optional[bytes]]] = []

        try:
            while reader.remaining >= 10:  # Minimum header size
                timestamp = reader.read_uint(8)
                entry_type_val = reader.read_uint(2)

                if entry_type_val == EntryType.X509_ENTRY:
                    cert_data = reader.read_vector(3)
                    reader.read_vector(2)  # extensions
                elif entry_type_val == EntryType.PRECERT_ENTRY:
                    reader.skip(32)  # issuer key hash
                    reader.read_vector(3)  # TBSCertificate
                    reader.read_vector(2)  # extensions
                    cert_data = reader.read_vector(3)  # pre_certificate
                else:
                    raise ValueError(f"Unknown entry type: {entry_type_val}")

                reader.read_vector(2)  # chain fingerprints
                leaves.append((timestamp, EntryType(entry_type_val), cert_data))

            if reader.remaining:
                raise ValueError(f"{reader.remaining} trailing bytes")
        except ValueError as e:
            raise LogQueryError(
                self.log_meta.url, f"Malformed tile after {len(leaves)} leaves: {e}"
            ) from e

        return leaves

    async def get_entries(self, start: int, end: int) -> List[RawEntry]:
        """Retrieve entries [start, end) by reading the tiles that cover them."""
        self._check_range(start, end)
        if start == end:
            return []
        if end > self._tree_size:
            await self.get_tree_size()
        if end > self._tree_size:
            raise LogQueryError(
                self.log_meta.url,
                f"range end {end} is beyond the checkpoint size {self._tree_size}",
            )

        entries: List[RawEntry] = []
        first_tile = start // self.TILE_SIZE
        last_tile = (end - 1) // self.TILE_SIZE
        for tile_idx in range(first_tile, last_tile + 1):
            tile_start = tile_idx * self.TILE_SIZE
            width = None
            if tile_start + self.TILE_SIZE > self._tree_size:
                width = self._tree_size - tile_start

            leaves = await self.fetch_tile(tile_idx, partial_width=width)
            for i, (timestamp, entry_type, cert_data) in enumerate(leaves):
                entry_index = tile_start + i
                if entry_index < start:
                    continue
                if entry_index >= end:
                    break
                entries.append(
                    RawEntry(
                        index=entry_index,
                        timestamp=timestamp,
                        entry_type=entry_type,
                        log_url=self.log_meta.url,
                        cert_data=cert_data,
                    )
                )

        if len(entries) != end - start:
            raise LogQueryError(
                self.log_meta.url,
                f"tiles held {len(entries)} of {end - start} entries for [{start}, {end})",
            )
        return entries


def create_client(
    log_meta: LogMeta,
    timeout: float = DEFAULT_TIMEOUT,
    user_agent: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Union[ClassicLogClient, TiledLogClient]:
    """Build the client matching the log's kind."""
    if log_meta.kind == LogKind.TILED:
        return TiledLogClient(log_meta, timeout=timeout, user_agent=user_agent, transport=transport)
    return ClassicLogClient(log_meta, timeout=timeout, user_agent=user_agent, transport=transport)
