"""Greengrass edge provisioning service (run once per boot, safe to re-run).

Core design goals:
- Idempotent: an existing valid installation short-circuits the run
- Single status file that supervisors can poll
- Credentials written with strict permissions
- Centralized logging
"""

__all__ = []
