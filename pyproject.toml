[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "openstreamer"
version = "0.1.0"
description = "Live streaming building blocks: HLS and MPEG-DASH packaging, FFmpeg argument building and process control, URL protocol detection and a JSON store."
requires-python = ">=3.10"
dependencies = []
keywords = ["hls", "dash", "mpeg-ts", "fmp4", "ffmpeg", "live-streaming", "mpd", "m3u8"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Video",
    "Topic :: Multimedia :: Video :: Conversion",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["openstreamer"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
