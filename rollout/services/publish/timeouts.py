from __future__ import annotations

# gh api calls
GH_TIMEOUT_SECONDS = 60.0

# Idempotent gh read retry policy
GH_READ_RETRY_ATTEMPTS = 3
GH_READ_RETRY_DELAY_SECONDS = 1.0

# npm update / prepublish script
NPM_UPDATE_TIMEOUT_SECONDS = 10 * 60.0

# PR check polling
CHECKS_POLL_INTERVAL_SECONDS = 10.0
EMPTY_POLL_THRESHOLD = 6

# Release workflow polling
WORKFLOWS_POLL_INTERVAL_SECONDS = 15.0
WORKFLOWS_INITIAL_DELAY_SECONDS = 30.0

# Release creation (tag propagation)
RELEASE_CREATE_ATTEMPTS = 3
RELEASE_CREATE_RETRY_DELAY_SECONDS = 3.0
TAG_PROPAGATION_DELAY_SECONDS = 5.0

# Workflow run correlation window around release.created_at
RUN_WINDOW_BEFORE_SECONDS = 30.0
RUN_WINDOW_AFTER_SECONDS = 10 * 60.0
