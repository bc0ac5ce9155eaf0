[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sfplayer"
version = "0.1.0"
description = "SoundFont 2 sample-based synthesizer in pure Python"
requires-python = ">=3.10"
dependencies = []
keywords = ["soundfont", "sf2", "synthesizer", "audio", "sampler"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Sound/Audio :: Sound Synthesis",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["sfplayer"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
