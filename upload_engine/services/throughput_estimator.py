"""
Throughput Estimator.
Turns (bytes uploaded, timestamp) samples into a current speed and time remaining.
"""
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ThroughputEstimate:
    speed_bytes_per_second: float
    # None while the speed is unknown
    estimated_seconds_remaining: Optional[float]


class ThroughputEstimator:
    """
    Sampler over the most recent interval, not a lifetime average.
    
    Samples closer than min_interval to the previous accepted sample are
    ignored. The first sample after construction or reset() only seeds the
    window, so a pause never shows up as a speed spike or dip.
    """
    
    def __init__(self, total_bytes: int, min_interval: float = 1.0):
        self.total_bytes = total_bytes
        self.min_interval = min_interval
        self._last_bytes: Optional[int] = None
        self._last_time: Optional[float] = None
        self._speed = 0.0
    
    def reset(self) -> None:
        """Forget the window; call on pause and resume."""
        self._last_bytes = None
        self._last_time = None
        self._speed = 0.0
    
    def record(self, bytes_uploaded: int, timestamp: float) -> Optional[ThroughputEstimate]:
        """
        Feed a sample.
        
        Returns:
            A fresh estimate when the sample closed an interval, else None
        """
        if self._last_time is None:
            self._last_bytes = bytes_uploaded
            self._last_time = timestamp
            return None
        
        elapsed = timestamp - self._last_time
        if elapsed < self.min_interval or elapsed <= 0:
            return None
        
        self._speed = max(bytes_uploaded - self._last_bytes, 0) / elapsed
        self._last_bytes = bytes_uploaded
        self._last_time = timestamp
        return self.estimate(bytes_uploaded)
    
    def estimate(self, bytes_uploaded: int) -> ThroughputEstimate:
        """Current estimate for the given progress."""
        remaining = max(self.total_bytes - bytes_uploaded, 0)
        if remaining == 0:
            eta = 0.0
        elif self._speed > 0:
            eta = remaining / self._speed
        else:
            eta = None
        return ThroughputEstimate(speed_bytes_per_second=self._speed, estimated_seconds_remaining=eta)
