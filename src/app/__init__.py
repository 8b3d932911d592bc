"""
Composition root: wires storage, backups, trial and licensing together.
"""

from .handler import Services, build_services, run_once

__all__ = ["Services", "build_services", "run_once"]
