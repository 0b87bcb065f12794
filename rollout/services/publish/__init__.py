"""Release publishing pipeline.

Usage:
    from rollout.services.publish import run_publish

    outcome = run_publish(root=Path.cwd(), config=config, console=console, confirm=confirm)
"""

from rollout.services.publish.errors import PublishError
from rollout.services.publish.model import PublishOutcome
from rollout.services.publish.service import PublishService, run_publish

__all__ = ["PublishError", "PublishOutcome", "PublishService", "run_publish"]
