"""rollout: drive a release branch through prechecks, PR, merge and GitHub release."""

__version__ = "0.3.0"
