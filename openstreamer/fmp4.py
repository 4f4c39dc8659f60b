"""H.264 / AAC bitstream helpers and fragmented MP4 (ISO BMFF) box writers."""

from __future__ import annotations

import struct
from dataclasses import dataclass

TRACK_ID = 1

NALU_NON_IDR = 1
NALU_IDR = 5
NALU_SPS = 7
NALU_PPS = 8

SYNC_SAMPLE_FLAGS = 0x02000000
NON_SYNC_SAMPLE_FLAGS = 0x00010000

AAC_LC_OBJECT_TYPE = 2

ADTS_SAMPLE_RATES = (
    96000, 88200, 64000, 48000, 44100, 32000,
    24000, 22050, 16000, 12000, 11025, 8000, 7350,
)

_START_CODE_3 = b"\x00\x00\x01"
_START_CODE_4 = b"\x00\x00\x00\x01"

_HIGH_PROFILES = frozenset({100, 110, 122, 244, 44, 83, 86, 118, 128, 138, 139, 134, 135})

_UINT32_MAX = 0xFFFFFFFF
_INT32_MIN = -(1 << 31)
_INT32_MAX = (1 << 31) - 1

_MATRIX = struct.pack(">9I", 0x10000, 0, 0, 0, 0x10000, 0, 0, 0, 0x40000000)


# ─── Annex-B helpers ──────────────────────────────────────────────────────


def annexb_4_to_3(data: bytes) -> bytes:
    """Replace 4-byte Annex-B start codes with 3-byte ones."""
    return bytes(data).replace(_START_CODE_4, _START_CODE_3)


def split_annexb_nalus(data: bytes) -> list[bytes]:
    """Split an Annex-B byte stream into NAL units (start codes removed).

    Bytes before the first start code are ignored; trailing zero bytes of
    each unit (the leading zero of a 4-byte start code) are dropped.
    """
    data = bytes(data)
    starts = []
    pos = data.find(_START_CODE_3)
    while pos >= 0:
        starts.append(pos)
        pos = data.find(_START_CODE_3, pos + 3)
    nalus = []
    for idx, start in enumerate(starts):
        end = starts[idx + 1] if idx + 1 < len(starts) else len(data)
        nalu = data[start + 3 : end].rstrip(b"\x00")
        if nalu:
            nalus.append(nalu)
    return nalus


def annexb_to_avcc(data: bytes) -> bytes:
    """Convert an Annex-B access unit to 4-byte length-prefixed NAL units."""
    return b"".join(
        struct.pack(">I", len(nalu)) + nalu for nalu in split_annexb_nalus(data)
    )


def is_h264_idr(annex_b: bytes) -> bool:
    """Report whether an Annex-B H.264 access unit holds an IDR slice."""
    return any(nalu[0] & 0x1F == NALU_IDR for nalu in split_annexb_nalus(annex_b))


# ─── ADTS ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ADTSHeader:
    """Fields of one AAC ADTS frame header."""

    object_type: int
    sampling_frequency_index: int
    channel_config: int
    header_length: int
    payload_length: int

    @property
    def frequency(self) -> int:
        """Sample rate in Hz, or 0 for a reserved frequency index."""
        if self.sampling_frequency_index < len(ADTS_SAMPLE_RATES):
            return ADTS_SAMPLE_RATES[self.sampling_frequency_index]
        return 0

    @property
    def frame_length(self) -> int:
        return self.header_length + self.payload_length


def parse_adts_header(data: bytes) -> ADTSHeader:
    """Decode the ADTS header at the start of ``data``; raise ValueError if invalid."""
    if len(data) < 7:
        raise ValueError("adts: header needs 7 bytes")
    b = data[:7]
    if b[0] != 0xFF or b[1] & 0xF0 != 0xF0:
        raise ValueError("adts: missing sync word")
    protection_absent = b[1] & 0x01
    header_length = 7 if protection_absent else 9
    profile = (b[2] >> 6) & 0x03
    sf_index = (b[2] >> 2) & 0x0F
    channel_config = ((b[2] & 0x01) << 2) | (b[3] >> 6)
    frame_length = ((b[3] & 0x03) << 11) | (b[4] << 3) | (b[5] >> 5)
    if frame_length < header_length:
        raise ValueError(f"adts: frame length {frame_length} shorter than header")
    return ADTSHeader(
        object_type=profile + 1,
        sampling_frequency_index=sf_index,
        channel_config=channel_config,
        header_length=header_length,
        payload_length=frame_length - header_length,
    )


# ─── SPS ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SPSInfo:
    """The parts of an H.264 sequence parameter set needed for packaging."""

    profile: int
    profile_compatibility: int
    level: int
    width: int
    height: int
    chroma_format_idc: int = 1
    bit_depth_luma: int = 8
    bit_depth_chroma: int = 8

    def codec_string(self, sample_entry: str = "avc1") -> str:
        """Return the RFC 6381 codec string, e.g. ``avc1.640028``."""
        return (
            f"{sample_entry}.{self.profile:02x}"
            f"{self.profile_compatibility:02x}{self.level:02x}"
        )


def _unescape_rbsp(payload: bytes) -> bytes:
    out = bytearray()
    zeros = 0
    for byte in payload:
        if zeros >= 2 and byte == 0x03:
            zeros = 0
            continue
        out.append(byte)
        zeros = zeros + 1 if byte == 0 else 0
    return bytes(out)


class _BitReader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0

    def bit(self) -> int:
        if self._pos >= len(self._data) * 8:
            raise ValueError("sps: truncated")
        byte = self._data[self._pos >> 3]
        value = (byte >> (7 - (self._pos & 7))) & 1
        self._pos += 1
        return value

    def bits(self, n: int) -> int:
        value = 0
        for _ in range(n):
            value = (value << 1) | self.bit()
        return value

    def ue(self) -> int:
        zeros = 0
        while self.bit() == 0:
            zeros += 1
            if zeros > 31:
                raise ValueError("sps: invalid exp-Golomb code")
        return (1 << zeros) - 1 + self.bits(zeros)

    def se(self) -> int:
        code = self.ue()
        return (code + 1) // 2 if code & 1 else -(code // 2)


def _skip_scaling_list(reader: _BitReader, size: int) -> None:
    last = next_scale = 8
    for _ in range(size):
        if next_scale != 0:
            next_scale = (last + reader.se() + 256) % 256
        if next_scale != 0:
            last = next_scale


def parse_sps(nalu: bytes) -> SPSInfo:
    """Parse an SPS NAL unit (header byte included); raise ValueError if invalid."""
    if not nalu or nalu[0] & 0x1F != NALU_SPS:
        raise ValueError("sps: not an SPS NAL unit")
    reader = _BitReader(_unescape_rbsp(bytes(nalu[1:])))
    profile = reader.bits(8)
    compatibility = reader.bits(8)
    level = reader.bits(8)
    reader.ue()  # seq_parameter_set_id

    chroma_format_idc = 1
    separate_colour_plane = 0
    depth_luma = depth_chroma = 8
    if profile in _HIGH_PROFILES:
        chroma_format_idc = reader.ue()
        if chroma_format_idc == 3:
            separate_colour_plane = reader.bit()
        depth_luma = reader.ue() + 8
        depth_chroma = reader.ue() + 8
        reader.bit()  # qpprime_y_zero_transform_bypass_flag
        if reader.bit():
            for i in range(8 if chroma_format_idc != 3 else 12):
                if reader.bit():
                    _skip_scaling_list(reader, 16 if i < 6 else 64)

    reader.ue()  # log2_max_frame_num_minus4
    poc_type = reader.ue()
    if poc_type == 0:
        reader.ue()
    elif poc_type == 1:
        reader.bit()
        reader.se()
        reader.se()
        for _ in range(reader.ue()):
            reader.se()
    reader.ue()  # max_num_ref_frames
    reader.bit()  # gaps_in_frame_num_value_allowed_flag
    width_mbs = reader.ue() + 1
    height_units = reader.ue() + 1
    frame_mbs_only = reader.bit()
    if not frame_mbs_only:
        reader.bit()
    reader.bit()  # direct_8x8_inference_flag

    width = width_mbs * 16
    height = (2 - frame_mbs_only) * height_units * 16
    if reader.bit():
        left, right, top, bottom = (reader.ue() for _ in range(4))
        chroma_array_type = 0 if separate_colour_plane else chroma_format_idc
        if chroma_array_type == 0:
            unit_x, unit_y = 1, 2 - frame_mbs_only
        else:
            sub_w = 2 if chroma_array_type in (1, 2) else 1
            sub_h = 2 if chroma_array_type == 1 else 1
            unit_x, unit_y = sub_w, sub_h * (2 - frame_mbs_only)
        width -= unit_x * (left + right)
        height -= unit_y * (top + bottom)

    return SPSInfo(
        profile=profile,
        profile_compatibility=compatibility,
        level=level,
        width=width,
        height=height,
        chroma_format_idc=chroma_format_idc,
        bit_depth_luma=depth_luma,
        bit_depth_chroma=depth_chroma,
    )


# ─── ISO BMFF boxes ───────────────────────────────────────────────────────


def _box(kind: bytes, *parts: bytes) -> bytes:
    payload = b"".join(parts)
    return struct.pack(">I", 8 + len(payload)) + kind + payload


def _full_box(kind: bytes, version: int, flags: int, *parts: bytes) -> bytes:
    return _box(kind, struct.pack(">I", (version << 24) | flags), *parts)


def _language_code(lang: str) -> int:
    code = 0
    for ch in lang:
        code = (code << 5) | (ord(ch) - 0x60)
    return code


def _ftyp() -> bytes:
    return _box(b"ftyp", b"iso6", struct.pack(">I", 0), b"iso6", b"dash", b"cmfc")


def _init_segment(timescale: int, handler: bytes, name: str, media_header: bytes,
                  sample_entry: bytes, width: int, height: int, volume: int) -> bytes:
    mvhd = _full_box(
        b"mvhd", 0, 0,
        struct.pack(">IIII", 0, 0, timescale, 0),
        struct.pack(">IH", 0x10000, 0x100), bytes(10),
        _MATRIX, bytes(24), struct.pack(">I", TRACK_ID + 1),
    )
    tkhd = _full_box(
        b"tkhd", 0, 3,
        struct.pack(">IIIII", 0, 0, TRACK_ID, 0, 0), bytes(8),
        struct.pack(">hhhH", 0, 0, volume, 0), _MATRIX,
        struct.pack(">II", (width & 0xFFFF) << 16, (height & 0xFFFF) << 16),
    )
    mdhd = _full_box(
        b"mdhd", 0, 0,
        struct.pack(">IIIIHH", 0, 0, timescale, 0, _language_code("und"), 0),
    )
    hdlr = _full_box(
        b"hdlr", 0, 0, struct.pack(">I", 0), handler, bytes(12), name.encode() + b"\x00"
    )
    dinf = _box(b"dinf", _full_box(b"dref", 0, 0, struct.pack(">I", 1), _full_box(b"url ", 0, 1)))
    stbl = _box(
        b"stbl",
        _full_box(b"stsd", 0, 0, struct.pack(">I", 1), sample_entry),
        _full_box(b"stts", 0, 0, struct.pack(">I", 0)),
        _full_box(b"stsc", 0, 0, struct.pack(">I", 0)),
        _full_box(b"stsz", 0, 0, struct.pack(">II", 0, 0)),
        _full_box(b"stco", 0, 0, struct.pack(">I", 0)),
    )
    minf = _box(b"minf", media_header, dinf, stbl)
    trak = _box(b"trak", tkhd, _box(b"mdia", mdhd, hdlr, minf))
    mvex = _box(b"mvex", _full_box(b"trex", 0, 0, struct.pack(">IIIII", TRACK_ID, 1, 0, 0, 0)))
    return _ftyp() + _box(b"moov", mvhd, trak, mvex)


def build_video_init(sps_list: list[bytes], pps_list: list[bytes],
                     timescale: int = 90000) -> bytes:
    """Build an H.264 (avc1) init segment; raise ValueError on bad parameter sets."""
    if not sps_list or not pps_list:
        raise ValueError("video init: need at least one SPS and one PPS")
    if timescale <= 0:
        raise ValueError("video init: timescale must be positive")
    info = parse_sps(sps_list[0])

    avcc = bytearray(
        [1, info.profile, info.profile_compatibility, info.level, 0xFF, 0xE0 | len(sps_list)]
    )
    for sps in sps_list:
        avcc += struct.pack(">H", len(sps)) + bytes(sps)
    avcc.append(len(pps_list))
    for pps in pps_list:
        avcc += struct.pack(">H", len(pps)) + bytes(pps)
    if info.profile in _HIGH_PROFILES:
        avcc += bytes([
            0xFC | info.chroma_format_idc,
            0xF8 | (info.bit_depth_luma - 8),
            0xF8 | (info.bit_depth_chroma - 8),
            0,
        ])

    sample_entry = _box(
        b"avc1", bytes(6), struct.pack(">H", 1), bytes(16),
        struct.pack(">HHIIIH", info.width, info.height, 0x480000, 0x480000, 0, 1),
        bytes(32), struct.pack(">Hh", 0x18, -1),
        _box(b"avcC", bytes(avcc)),
    )
    vmhd = _full_box(b"vmhd", 0, 1, struct.pack(">HHHH", 0, 0, 0, 0))
    return _init_segment(timescale, b"vide", "VideoHandler", vmhd, sample_entry,
                         info.width, info.height, 0)


def _descriptor(tag: int, payload: bytes) -> bytes:
    size = len(payload)
    encoded = [size & 0x7F]
    size >>= 7
    while size:
        encoded.insert(0, 0x80 | (size & 0x7F))
        size >>= 7
    return bytes([tag, *encoded]) + payload


def build_audio_init(sample_rate: int, channels: int = 2) -> bytes:
    """Build an AAC-LC (mp4a) init segment; raise ValueError on unsupported input."""
    if sample_rate not in ADTS_SAMPLE_RATES:
        raise ValueError(f"audio init: unsupported AAC sample rate {sample_rate}")
    if not 1 <= channels <= 7:
        raise ValueError(f"audio init: unsupported channel count {channels}")
    index = ADTS_SAMPLE_RATES.index(sample_rate)
    asc = ((AAC_LC_OBJECT_TYPE << 11) | (index << 7) | (channels << 3)).to_bytes(2, "big")

    decoder_config = _descriptor(
        4,
        bytes([0x40, 0x15]) + (0).to_bytes(3, "big") + struct.pack(">II", 0, 0)
        + _descriptor(5, asc),
    )
    es = _descriptor(3, struct.pack(">HB", 0, 0) + decoder_config + _descriptor(6, b"\x02"))
    sample_entry = _box(
        b"mp4a", bytes(6), struct.pack(">H", 1), bytes(8),
        struct.pack(">HHHHI", channels, 16, 0, 0, (sample_rate & 0xFFFF) << 16),
        _full_box(b"esds", 0, 0, es),
    )
    smhd = _full_box(b"smhd", 0, 0, struct.pack(">hH", 0, 0))
    return _init_segment(sample_rate, b"soun", "SoundHandler", smhd, sample_entry,
                         0, 0, 0x100)


@dataclass(frozen=True)
class Sample:
    """One media sample of a fragment."""

    data: bytes
    duration: int
    decode_time: int
    is_sync: bool = True
    composition_time_offset: int = 0

    @property
    def flags(self) -> int:
        return SYNC_SAMPLE_FLAGS if self.is_sync else NON_SYNC_SAMPLE_FLAGS


def build_media_segment(sequence: int, track_id: int, samples: list[Sample]) -> bytes:
    """Build a styp+moof+mdat media segment holding ``samples``.

    The fragment's base decode time is that of the first sample.
    """
    if not samples:
        raise ValueError("media segment: no samples")
    if not 0 <= sequence <= _UINT32_MAX or not 0 < track_id <= _UINT32_MAX:
        raise ValueError("media segment: sequence or track id out of range")
    for sample in samples:
        if not 0 <= sample.duration <= _UINT32_MAX:
            raise ValueError(f"media segment: sample duration {sample.duration} out of range")
        if not _INT32_MIN <= sample.composition_time_offset <= _INT32_MAX:
            raise ValueError("media segment: composition time offset out of range")
        if len(sample.data) > _UINT32_MAX:
            raise ValueError("media segment: sample too large")

    base = samples[0].decode_time
    if base < 0:
        raise ValueError("media segment: negative decode time")
    entries = b"".join(
        struct.pack(">IIIi", s.duration, len(s.data), s.flags, s.composition_time_offset)
        for s in samples
    )
    mfhd = _full_box(b"mfhd", 0, 0, struct.pack(">I", sequence))
    tfhd = _full_box(b"tfhd", 0, 0x020000, struct.pack(">I", track_id))
    tfdt = _full_box(b"tfdt", 1, 0, struct.pack(">Q", base))

    def moof(data_offset: int) -> bytes:
        trun = _full_box(b"trun", 1, 0x000F01,
                         struct.pack(">Ii", len(samples), data_offset), entries)
        return _box(b"moof", mfhd, _box(b"traf", tfhd, tfdt, trun))

    moof_box = moof(len(moof(0)) + 8)
    styp = _box(b"styp", b"msdh", struct.pack(">I", 0), b"msdh", b"msix")
    mdat = _box(b"mdat", *(bytes(s.data) for s in samples))
    return styp + moof_box + mdat