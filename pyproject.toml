[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rpcmiddleware"
version = "2.0.0"
description = "Composable RPC middleware: contexts, metadata helpers, retries with backoff, timeouts and message validation."
requires-python = ">=3.10"
dependencies = []
keywords = ["rpc", "middleware", "interceptor", "retry", "backoff", "metadata", "validation", "timeout"]
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
    "Topic :: Software Development :: Libraries",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["rpcmiddleware"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
