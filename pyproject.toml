[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cdsstream"
version = "2.0.0"
description = "Camera streaming control: pipeline layout, dynamic per-viewer stream routing, WebRTC peer bookkeeping and supporting utilities"
requires-python = ">=3.10"
dependencies = []
keywords = ["camera", "streaming", "webrtc", "rtp", "udp", "pipeline"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Video",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["cdsstream"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
