from .clock import TrialClock, TrialStatus

__all__ = ["TrialClock", "TrialStatus"]
