"""
Persisted models and stores.

Defines the schema of backup snapshots, trial state and license records,
plus the local data store and the S3 backup destination.
"""

from .models import BackupEnvelope, BackupMeta, LicenseActivation, TrialState

__all__ = ["BackupEnvelope", "BackupMeta", "LicenseActivation", "TrialState"]
