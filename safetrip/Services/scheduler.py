# safetrip/Services/scheduler.py
"""
Recurring sweeps.

Three independent jobs, each in its own daemon thread, sharing one clock:

| Job        | Default period | Work                                          |
|------------|----------------|-----------------------------------------------|
| expiry     | 1 h            | expire active sessions past their end date    |
| anomaly    | 15 min         | inactivity + device-offline over active ones  |
| escalation | 30 min         | one-step auto-escalation of unhandled alerts  |

Every selection query matches only rows the job has not moved yet, so an
overlapping run (here or on another replica) re-matching a processed row
finds nothing to do. Inside one process a job never overlaps with itself:
a tick that finds the previous run still going is skipped.

A failing run is logged through the log websocket and the job simply waits
for its next tick.

Example:
    scheduler = Scheduler(SessionLocal, session_manager, anomaly_detector, alert_manager)
    scheduler.start()
    ...
    scheduler.stop()
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from safetrip.Core.clock import Clock, utc_now
from safetrip.Core.config import settings
from safetrip.Core.errors import SafeTripError
from safetrip.Core.log_ws import log_from_thread
from safetrip.Repositories import alert as alert_repo
from safetrip.Repositories import tourist_session as session_repo
from safetrip.Services.alert_manager import AlertLifecycleManager
from safetrip.Services.anomaly_detector import AnomalyDetector
from safetrip.Services.session_manager import SessionManager


@dataclass
class Job:
    name: str
    interval_s: float
    run: Callable[[Session], Any]
    lock: threading.Lock = field(default_factory=threading.Lock)
    thread: Optional[threading.Thread] = None


class Scheduler:
    """
    Owns its clock, its job table and the lifecycle of the job threads.

    Args:
        session_factory: callable returning a new SQLAlchemy Session per run
        sessions / detector / alerts: the services the jobs drive
        clock: shared by every job
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        sessions: SessionManager,
        detector: AnomalyDetector,
        alerts: AlertLifecycleManager,
        clock: Clock = utc_now,
        intervals: Optional[Dict[str, float]] = None
    ):
        self.session_factory = session_factory
        self.sessions = sessions
        self.detector = detector
        self.alerts = alerts
        self.clock = clock

        intervals = intervals or {}
        self.jobs: Dict[str, Job] = {
            "expiry": Job(
                "expiry",
                intervals.get("expiry", settings.EXPIRY_SWEEP_INTERVAL_S),
                self.expire_sessions,
            ),
            "anomaly": Job(
                "anomaly",
                intervals.get("anomaly", settings.ANOMALY_SWEEP_INTERVAL_S),
                self.detect_anomalies,
            ),
            "escalation": Job(
                "escalation",
                intervals.get("escalation", settings.ESCALATION_SWEEP_INTERVAL_S),
                self.escalate_alerts,
            ),
        }
        self._stop_event = threading.Event()

    # ==========================================================
    # LIFECYCLE
    # ==========================================================

    @property
    def running(self) -> bool:
        return any(job.thread is not None and job.thread.is_alive() for job in self.jobs.values())

    def start(self) -> List[threading.Thread]:
        """Start one daemon thread per job. Calling start twice is a no-op."""
        if self.running:
            return [job.thread for job in self.jobs.values()]

        self._stop_event.clear()
        threads = []
        for job in self.jobs.values():
            job.thread = threading.Thread(
                target=self._loop,
                args=(job,),
                daemon=True,
                name=f"Scheduler-{job.name}"
            )
            job.thread.start()
            threads.append(job.thread)

        print(f"[SCHEDULER] 🚀 Started jobs: "
              f"{', '.join(f'{j.name}/{j.interval_s:g}s' for j in self.jobs.values())}")
        return threads

    def stop(self, timeout: float = 5.0) -> None:
        """Signal every job to stop and wait for in-flight runs to finish."""
        self._stop_event.set()
        for job in self.jobs.values():
            if job.thread is not None:
                job.thread.join(timeout=timeout)
                job.thread = None
        print("[SCHEDULER] 🛑 Stopped")

    def _loop(self, job: Job) -> None:
        # wait() returns True once stop() is called
        while not self._stop_event.wait(job.interval_s):
            self.run_job(job.name)

    # ==========================================================
    # EXECUTION
    # ==========================================================

    def run_job(self, name: str) -> Any:
        """
        Run one job now with its own database session.

        Returns:
            The job's result, or None if it failed or was still running.
        """
        job = self.jobs[name]

        if not job.lock.acquire(blocking=False):
            print(f"[SCHEDULER] ⏭️  {name} still running, tick skipped")
            return None

        try:
            DB = self.session_factory()
            try:
                result = job.run(DB)
            finally:
                DB.close()
        except Exception as e:
            log_from_thread(f"[SCHEDULER] ❌ {name} sweep failed: {e}", "error")
            return None
        finally:
            job.lock.release()

        print(f"[SCHEDULER] ✅ {name} sweep: {result}")
        return result

    # ==========================================================
    # JOBS
    # ==========================================================

    def expire_sessions(self, DB: Session) -> int:
        """Expire every active session whose end date has passed."""
        expired = 0
        for session in session_repo.get_sessions_to_expire(DB, self.clock()):
            try:
                self.sessions.expire(DB, session)
            except SafeTripError as e:
                # Already moved by a concurrent run or request
                print(f"[SCHEDULER] Skipped expiry of {session.session_id}: {e.message}")
                continue

            expired += 1

        if expired:
            log_from_thread(f"[SCHEDULER] Expired {expired} session(s)")
        return expired

    def detect_anomalies(self, DB: Session) -> Dict[str, int]:
        return self.detector.run_sweep(DB)

    def escalate_alerts(self, DB: Session) -> Dict[str, int]:
        """One step up the ladder for each alert left unhandled too long."""
        counts = {"escalated": 0, "skipped": 0}
        for alert in alert_repo.get_alerts_needing_escalation(DB, self.clock()):
            try:
                if self.alerts.auto_escalate(DB, alert):
                    counts["escalated"] += 1
                else:
                    counts["skipped"] += 1
            except SafeTripError as e:
                counts["skipped"] += 1
                print(f"[SCHEDULER] Skipped escalation of {alert.alert_id}: {e.message}")

        return counts
