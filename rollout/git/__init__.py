"""Git operations for the repository being published.

Usage:
    from rollout.git import Repository

    repo = Repository(Path.cwd(), console=console, dry_run=False)
    branch = repo.current_branch()
"""

from rollout.git.repository import GitError, Repository, StatusEntry

__all__ = ["GitError", "Repository", "StatusEntry"]
