import os

import pytest

from openstreamer.hls import HLSSegmenter, SegmentEntry, hls_codec_string

PACKET = bytes([0x47]) + bytes(187)


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class RecordingMaster:
    def __init__(self):
        self.calls = []

    def on_shard_updated(self, slug, bandwidth, width, height):
        self.calls.append((slug, bandwidth, width, height))


def make(tmp_path, **kw):
    clock = FakeClock()
    seg = HLSSegmenter(tmp_path, tmp_path / "index.m3u8", clock=clock, **kw)
    return seg, clock


def test_codec_string_tiers():
    assert hls_codec_string(1920, 1080) == "avc1.640028"
    assert hls_codec_string(1280, 720) == "avc1.4d401f"
    assert hls_codec_string(640, 360) == "avc1.42e01e"
    assert hls_codec_string(0, 0) == "avc1.42e01e"


def test_target_duration_at_least_seg_sec_plus_one(tmp_path):
    seg, clock = make(tmp_path, seg_sec=4)
    seg.write_ts(PACKET * 3)
    clock.now += 1.0
    seg.flush()
    assert "#EXT-X-TARGETDURATION:5\n" in seg.render_manifest()


def test_keyframe_cut_only_after_seg_sec(tmp_path):
    seg, clock = make(tmp_path, seg_sec=2)
    seg.write_ts(PACKET * 3)
    clock.now += 1.0
    assert seg.on_key_frame() is False
    assert seg.entries == ()
    clock.now += 1.0
    assert seg.on_key_frame() is True
    assert [e.name for e in seg.entries] == ["seg_000001.ts"]


def test_zero_elapsed_uses_segment_seconds(tmp_path):
    seg, _ = make(tmp_path, seg_sec=3)
    seg.write_ts(PACKET * 2)
    assert seg.flush() is True
    assert seg.entries[0].duration == 3.0


def test_flush_without_data_does_nothing(tmp_path):
    seg, _ = make(tmp_path)
    assert seg.flush() is False
    assert seg.segment_count == 0
    assert not (tmp_path / "index.m3u8").exists()


def test_discontinuity_tags_next_segment(tmp_path):
    seg, clock = make(tmp_path)
    seg.write_ts(PACKET * 2)
    clock.now += 1
    seg.mark_discontinuity()
    seg.write_ts(PACKET * 2)
    clock.now += 1
    seg.flush()
    entries = seg.entries
    assert [e.discontinuity for e in entries] == [False, True]
    text = seg.render_manifest()
    assert text.index("#EXT-X-DISCONTINUITY") < text.index("seg_000002.ts")
    assert text.count("#EXT-X-DISCONTINUITY") == 1


def test_failover_generation_change(tmp_path):
    gen = [0]
    seg, clock = make(tmp_path, failover_gen=lambda: gen[0])
    seg.write_ts(PACKET * 2)
    assert seg.tick() is False
    gen[0] = 1
    assert seg.tick() is True
    seg.write_ts(PACKET * 2)
    clock.now += 1
    seg.flush()
    assert [e.discontinuity for e in seg.entries] == [False, True]


def test_ephemeral_trim_and_window(tmp_path):
    seg, clock = make(tmp_path, window=2, history=1, ephemeral=True)
    seg.write_ts(PACKET)
    for _ in range(5):
        seg.write_ts(PACKET)
        clock.now += 1
        assert seg.flush() is True
    names = [e.name for e in seg.entries]
    assert names == ["seg_000003.ts", "seg_000004.ts", "seg_000005.ts"]
    on_disk = sorted(f for f in os.listdir(tmp_path) if f.endswith(".ts"))
    assert on_disk == names
    text = seg.render_manifest()
    assert "#EXT-X-MEDIA-SEQUENCE:3\n" in text
    assert "seg_000003.ts" not in text
    assert "seg_000005.ts" in text


def test_non_ephemeral_keeps_everything(tmp_path):
    seg, clock = make(tmp_path, window=1)
    seg.write_ts(PACKET)
    for _ in range(3):
        seg.write_ts(PACKET)
        clock.now += 1
        seg.flush()
    assert len(seg.entries) == 3
    assert len([f for f in os.listdir(tmp_path) if f.endswith(".ts")]) == 3


def test_abr_master_notified(tmp_path):
    master = RecordingMaster()
    clock = FakeClock()
    seg = HLSSegmenter(
        tmp_path, "", abr_master=master, abr_slug="track_1",
        bandwidth=2_000_000, width=1280, height=720, clock=clock,
    )
    seg.write_ts(PACKET * 2)
    seg.flush()
    assert master.calls == [("track_1", 2_000_000, 1280, 720)]
    assert not (tmp_path / "index.m3u8").exists()


def test_no_manifest_without_path_or_master(tmp_path):
    seg = HLSSegmenter(tmp_path, "", clock=FakeClock())
    seg.write_ts(PACKET * 2)
    assert seg.flush() is True
    assert os.listdir(tmp_path) == ["seg_000001.ts"]


def test_write_failure_drops_entry(tmp_path):
    missing = tmp_path / "missing"
    seg = HLSSegmenter(missing, clock=FakeClock())
    seg.write_ts(PACKET * 2)
    assert seg.flush() is False
    assert seg.entries == ()
    assert seg.pending_bytes == 0


@pytest.mark.parametrize("seg_sec,window,history", [(0, 0, -1), (-5, -1, -3)])
def test_defaults_for_invalid_settings(tmp_path, seg_sec, window, history):
    seg = HLSSegmenter(tmp_path, seg_sec=seg_sec, window=window, history=history)
    assert (seg.seg_sec, seg.window, seg.history) == (2, 12, 0)