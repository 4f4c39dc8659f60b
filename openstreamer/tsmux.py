"""Reassembly of aligned 188-byte MPEG-TS packets from arbitrary chunks."""

from __future__ import annotations

TS_PACKET_SIZE = 188
TS_SYNC_BYTE = 0x47


class TSAligner:
    """Carries partial data across chunks and yields aligned TS packets.

    Bytes before a sync byte are dropped, and a packet whose successor does
    not start with a sync byte is treated as misaligned and shifted by one.
    """

    def __init__(self) -> None:
        self._carry = bytearray()

    @property
    def pending(self) -> bytes:
        """Bytes held back until more data arrives."""
        return bytes(self._carry)

    def feed(self, chunk: bytes) -> list[bytes]:
        """Append ``chunk`` and return every complete aligned packet."""
        carry = self._carry
        carry += chunk
        packets: list[bytes] = []
        while len(carry) >= TS_PACKET_SIZE:
            if carry[0] != TS_SYNC_BYTE:
                idx = carry.find(TS_SYNC_BYTE)
                if idx < 0:
                    del carry[: len(carry) - (TS_PACKET_SIZE - 1)]
                    break
                del carry[:idx]
                if len(carry) < TS_PACKET_SIZE:
                    break
            if len(carry) >= 2 * TS_PACKET_SIZE and carry[TS_PACKET_SIZE] != TS_SYNC_BYTE:
                del carry[:1]
                continue
            packets.append(bytes(carry[:TS_PACKET_SIZE]))
            del carry[:TS_PACKET_SIZE]
        return packets

    def reset(self) -> None:
        """Discard any carried bytes, e.g. after a source switch."""
        self._carry.clear()