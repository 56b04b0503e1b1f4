"""
clock_sync.py

Round-trip clock synchronization with the vision coprocessor over UDP.

Each sample records four timestamps (nanoseconds):

    T1  local send        T2  remote receive
    T3  remote send       T4  local receive

    delay  = (T4 - T1) - (T3 - T2)
    offset = ((T2 - T1) + (T3 - T4)) / 2

Offset convention:
    offset = remote_time - local_time
    remote_time = local_time + offset

The estimator assumes the network delay is the same in both directions; any
asymmetry shows up as offset error.
"""

import logging
import socket
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from pydantic import BaseModel, StrictInt, ValidationError

import wire

from .exceptions import SyncTimeout

log = logging.getLogger(__name__)

TIME_SYNC_REQUEST = b"TIME_SYNC"
MAX_RESPONSE_SIZE = 2048


class TimeSyncResponse(BaseModel):
    """Reply from the coprocessor. Both times in nanoseconds."""

    t2: StrictInt  # remote receive time
    t3: StrictInt  # remote send time


@dataclass(frozen=True)
class ClockSample:
    t1: int
    t2: int
    t3: int
    t4: int

    @property
    def delay_ns(self) -> int:
        return (self.t4 - self.t1) - (self.t3 - self.t2)

    @property
    def offset_ns(self) -> float:
        return ((self.t2 - self.t1) + (self.t3 - self.t4)) / 2


@dataclass(frozen=True)
class ClockEstimate:
    """
    Averaged result of one synchronization run.

    ``sample_count`` can be lower than ``requested_samples`` when the run was
    aborted or responses were dropped; with zero samples both averages are 0.
    """

    average_offset_ns: float
    average_delay_ns: float
    sample_count: int
    requested_samples: int
    aborted: bool = False

    @property
    def complete(self) -> bool:
        return not self.aborted and self.sample_count == self.requested_samples

    def remote_to_local_ns(self, remote_ns: int) -> float:
        """Convert a coprocessor timestamp into the local time base."""
        return remote_ns - self.average_offset_ns

    def local_to_remote_ns(self, local_ns: int) -> float:
        return local_ns + self.average_offset_ns


def _avg(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def estimate_from_samples(
    samples: Sequence[ClockSample], requested: int, aborted: bool = False
) -> ClockEstimate:
    return ClockEstimate(
        average_offset_ns=_avg([s.offset_ns for s in samples]),
        average_delay_ns=_avg([s.delay_ns for s in samples]),
        sample_count=len(samples),
        requested_samples=requested,
        aborted=aborted,
    )


class ClockSynchronizer:
    """
    Runs a bounded number of UDP time-sync exchanges on the caller's thread.

    A sample that times out aborts the rest of the run; the estimate is then
    built from the samples collected before the timeout.
    """

    def __init__(
        self,
        timeout: float = 1.0,
        pacing: float = 0.05,
        clock: Callable[[], int] = time.monotonic_ns,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            timeout (float): Seconds to wait for each response.
            pacing (float): Seconds to sleep between samples.
            clock: Nanosecond clock used for T1 and T4.
            sleep: Sleep function used for pacing.
        """
        self.timeout = timeout
        self.pacing = pacing
        self._clock = clock
        self._sleep = sleep

    def synchronize(self, host: str, port: int, sample_count: int) -> ClockEstimate:
        """
        Estimate clock offset and round-trip delay to the coprocessor.

        Blocks for at most ``sample_count * (timeout + pacing)`` seconds.

        Args:
            host (str): Coprocessor address.
            port (int): Coprocessor time-sync port.
            sample_count (int): Number of round trips to average.
        Returns:
            ClockEstimate: Averages over the collected samples.
        """
        if sample_count < 1:
            raise ValueError(f"sample_count must be at least 1, got {sample_count}")

        samples: list[ClockSample] = []
        aborted = False
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.settimeout(self.timeout)
            for i in range(sample_count):
                try:
                    sample = self._exchange(sock, (host, port))
                except SyncTimeout as e:
                    log.warning(f"Time sync aborted after {len(samples)} samples: {e}")
                    aborted = True
                    break
                except OSError as e:
                    log.error(f"Time sync aborted after {len(samples)} samples: {e}")
                    aborted = True
                    break

                if sample is not None:
                    samples.append(sample)
                    log.debug(
                        f"Sample {i + 1}/{sample_count}: "
                        f"offset={sample.offset_ns:.0f}ns delay={sample.delay_ns}ns"
                    )
                self._sleep(self.pacing)

        estimate = estimate_from_samples(samples, sample_count, aborted)
        log.info(
            f"Clock sync: offset={estimate.average_offset_ns / 1e6:.3f}ms "
            f"delay={estimate.average_delay_ns / 1e6:.3f}ms "
            f"({estimate.sample_count}/{sample_count} samples)"
        )
        return estimate

    def _exchange(self, sock: socket.socket, address: tuple[str, int]):
        """Run one round trip. Returns None if the response was malformed."""
        t1 = self._clock()
        sock.sendto(TIME_SYNC_REQUEST, address)
        try:
            data, _ = sock.recvfrom(MAX_RESPONSE_SIZE)
        except socket.timeout as e:
            raise SyncTimeout(
                f"No time sync response from {address[0]}:{address[1]} "
                f"within {self.timeout}s"
            ) from e
        t4 = self._clock()

        try:
            response = TimeSyncResponse.model_validate(wire.decode(data))
        except (wire.MalformedPayload, ValidationError) as e:
            log.warning(f"Dropping malformed time sync response: {e}")
            return None
        return ClockSample(t1=t1, t2=response.t2, t3=response.t3, t4=t4)
