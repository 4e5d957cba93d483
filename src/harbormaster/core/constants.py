"""Shared constants for harbormaster.

Centralized constants to avoid duplication and ensure consistency across modules.
"""

from __future__ import annotations

# Engine binary used when no configuration overrides it.
DEFAULT_ENGINE_BINARY = "docker"

# Retry defaults for engine commands.
DEFAULT_RETRY_DELAY_MS = 5000
RETRY_TRUE_ATTEMPTS = 3

# Readiness defaults.
DEFAULT_WAIT_TIMEOUT_MS = 30000
DEFAULT_PROBE_RETRY_DELAY_MS = 1000
DEFAULT_PROBE_REQUEST_TIMEOUT_MS = 2000
DEFAULT_PROBE_TIMEOUT_MS = 30000

# How much history `logs -f` replays when waiting for a readiness pattern.
LOGS_TAIL_LINES = "100000"

# Grace period for in-flight log collection after a stop attempt.
STOP_LOG_GRACE_MS = 1000

# Settle delay before confirming a signal seen after a previous instance ended.
SIGNAL_SETTLE_MS = 100

# Chunk size for reading container log pipes.
LOG_READ_CHUNK_SIZE = 4096

DOCKER_HUB_URL = "https://hub.docker.com"
DOCKER_HUB_REGISTRY = "registry.hub.docker.com"

# Architecture directory name -> engine platform metadata.
DOCKER_ARCHS: dict[str, dict[str, str]] = {
    "linux-arm64": {"arch_dir": "linux-arm64", "arch": "arm64", "os": "linux"},
    "linux-x64": {"arch_dir": "linux-x64", "arch": "amd64", "os": "linux"},
}

# Dockerfile variants an image can be built as.
DOCKERFILE_VARIANTS: dict[str, dict[str, str]] = {
    "alpine": {
        "dockerfile": "Dockerfile.alpine",
        "tag_suffix": "alpine",
        "variant_dir": "alpine",
    },
    "distroless": {
        "dockerfile": "Dockerfile.distroless",
        "tag_suffix": "distroless",
        "variant_dir": "distroless",
    },
}
