# openstreamer

Building blocks for a live streaming server, in plain Python with no
third-party runtime dependencies.

## Modules

- `openstreamer.protocol`: classify ingest URLs with `detect` (returns a
  `Kind`: `RTMP`, `SRT`, `UDP`, `RTSP`, `HLS`, `FILE`, `PUBLISH` or `UNKNOWN`)
  and `is_push_listen`; check raw MPEG-TS with `is_mpegts` and cut it into
  188-byte packets with `split_ts_packets`.
- `openstreamer.tsmux`: `TSAligner` turns arbitrary byte chunks into aligned
  188-byte MPEG-TS packets (`feed`, `reset`, `pending`).
- `openstreamer.transcoder`: build the FFmpeg command line for one ladder
  rendition that reads MPEG-TS on stdin and writes MPEG-TS to stdout
  (`build_ffmpeg_args`, `Profile`, `TranscoderConfig`, `HWAccel`,
  `RenditionTarget`, plus `build_scale_filter`, `normalize_video_encoder`,
  `gop_frames`, `audio_encode_args`).
- `openstreamer.ffmpeg`: run FFmpeg in its own process group with piped stdin
  and stdout and stderr sent to `logging` (`start_ffmpeg`, `FFmpegProcess`
  with `wait`, `close`, `pid`; usable as a context manager).
- `openstreamer.hls`: `HLSSegmenter` collects TS bytes into `seg_NNNNNN.ts`
  files and keeps a sliding `index.m3u8`, with discontinuity tags, keyframe
  cuts, a forced cut after 1.5 × the segment length and optional removal of
  old segments.
- `openstreamer.hls_abr`: `HLSABRMaster` and `render_master_playlist` /
  `write_master_playlist` for the master playlist of an adaptive-bitrate
  ladder.
- `openstreamer.fmp4`: H.264 Annex-B and AAC ADTS parsing (`parse_sps`,
  `parse_adts_header`, `annexb_to_avcc`, `is_h264_idr`, ...) and fragmented
  MP4 writers (`build_video_init`, `build_audio_init`, `build_media_segment`).
- `openstreamer.mpd`: dynamic MPEG-DASH manifests (`build_mpd`,
  `mpd_to_bytes`, `build_segment_timeline`, `TrackWindow`, `VideoTrack`,
  `AudioTrack`).
- `openstreamer.dash`: `DashPackager` takes H.264 access units and AAC frames
  and writes `init_v.mp4`, `init_a.mp4`, `seg_v_NNNNN.m4s`,
  `seg_a_NNNNN.m4s` and an `index.mpd`.
- `openstreamer.store`: `JSONStore` keeps streams, recordings and hooks as
  JSON files, with `streams()`, `recordings()` and `hooks()` repositories;
  missing entries raise `NotFoundError`.

## Install

```
pip install .
```

## Examples

Classify a source URL:

```python
from openstreamer.protocol import Kind, detect, is_push_listen

assert detect("rtmp://server.example.com/live/key") is Kind.RTMP
assert detect("https://cdn.example.com/live/playlist.m3u8") is Kind.HLS
assert is_push_listen("publish://")
```

Build FFmpeg arguments for a 720p rendition and run it:

```python
from openstreamer.ffmpeg import start_ffmpeg
from openstreamer.transcoder import Profile, TranscoderConfig, build_ffmpeg_args

args = build_ffmpeg_args(
    [Profile(width=1280, height=720, bitrate="2000k", codec="h264", preset="veryfast")],
    TranscoderConfig(),
)
with start_ffmpeg("ffmpeg", args) as proc:
    proc.stdin.write(ts_bytes)
```

Segment a TS byte stream into HLS:

```python
from openstreamer.fileutil import reset_output_dir
from openstreamer.hls import HLSSegmenter

reset_output_dir("out/demo")
seg = HLSSegmenter("out/demo", "out/demo/index.m3u8", seg_sec=2, window=6)
seg.write_ts(chunk)   # call repeatedly as data arrives
seg.tick()            # call periodically, e.g. every 50 ms
seg.flush()           # on shutdown
```

Persist stream definitions:

```python
from openstreamer.store import JSONStore, NotFoundError

store = JSONStore("data")
streams = store.streams()
streams.save({"code": "demo", "status": "active"})
print(streams.find_by_code("demo"))
```

## What it does not do

- There is no command-line program and no server: nothing here listens for
  RTMP, RTSP or SRT, serves the written HLS or DASH files over HTTP, or pushes
  to remote destinations. The caller feeds data in and serves the output
  directory itself.
- There is no MPEG-TS demuxer: `DashPackager` expects H.264 access units and
  AAC ADTS frames that have already been taken out of the transport stream.
  H.265 and MP3 are not packaged.
- There is no master MPD for multi-rendition DASH; `DashPackager` can report
  to any object with an `on_shard_updated(packager)` method, but none is
  provided.
- Storage is JSON files only; there is no database backend.

## Tests

```
pip install ".[test]"
pytest
```