"""
Cooperative periodic task runner.

Hosts the expiry sweep and any opt-in view polling. Tasks are plain callables
keyed by name; a failing task is logged and the loop carries on.
"""

import time
import threading
from typing import Callable, Dict, Optional

from .config import validate_sweep_config
from ..util.logging import logger


tasks: Dict[str, Dict] = {}  # task_name -> {func, interval, last_run}
running = False
shutdown_event = None
_thread: Optional[threading.Thread] = None
_tasks_lock = threading.Lock()


def register_task(name: str, interval_sec: int, func: Callable):
    """
    Register a task to be executed periodically.

    Args:
        name: Unique task identifier; re-registering replaces the task
        interval_sec: How often to run this task in seconds
        func: Function to call (should be fast and not block)
    """
    if not callable(func):
        raise ValueError(f"Task function must be callable: {func}")

    if interval_sec < 1:
        raise ValueError(f"Interval must be >= 1 second: {interval_sec}")

    issues = validate_sweep_config()
    if issues:
        raise ValueError(f"Scheduler configuration invalid: {issues}")

    with _tasks_lock:
        tasks[name] = {
            "func": func,
            "interval": interval_sec,
            "last_run": None
        }

    logger.info(f"Registered heartbeat task '{name}' (every {interval_sec}s)")


def unregister_task(name: str):
    """Remove a task from the registry. Unknown names are ignored."""
    with _tasks_lock:
        removed = tasks.pop(name, None)
    if removed is not None:
        logger.info(f"Unregistered heartbeat task '{name}'")


def list_tasks():
    """Return list of registered task names."""
    with _tasks_lock:
        return list(tasks.keys())


def run_pending():
    """Run every task that is due once. Returns the number of tasks run."""
    with _tasks_lock:
        snapshot = list(tasks.items())

    ran = 0
    for name, task_info in snapshot:
        if should_run_task(name, task_info):
            try:
                run_task(name, task_info)
            except Exception as e:
                # Error isolation - log error but continue loop
                logger.error(f"Heartbeat task '{name}' failed: {e}")
            ran += 1
    return ran


def start(max_cycles: Optional[int] = None, tick_sec: float = 0.1):
    """
    Start the heartbeat loop in the calling thread.

    Runs until ``stop()`` is called, or for ``max_cycles`` iterations when
    given. Uses time.monotonic() for interval timing.
    """
    global running, shutdown_event

    if running:
        raise RuntimeError("Heartbeat already running")

    issues = validate_sweep_config()
    if issues:
        raise ValueError(f"Scheduler configuration invalid: {issues}")

    running = True
    shutdown_event = threading.Event()
    logger.log_operation("heartbeat.start", "success", {"tasks": list_tasks()})

    cycles = 0
    try:
        while running and not shutdown_event.is_set():
            start_time = time.monotonic()
            run_pending()

            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break

            # Cooperative scheduling
            shutdown_event.wait(tick_sec)

            elapsed = time.monotonic() - start_time
            if elapsed > 10.0:
                logger.warning(f"Heartbeat cycle too slow ({elapsed:.1f}s). Exiting.")
                break
    except KeyboardInterrupt:
        logger.info("Heartbeat interrupted by user")
    finally:
        running = False
        logger.log_operation("heartbeat.stop", "success", {"cycles": cycles})


def start_background(tick_sec: float = 0.1) -> threading.Thread:
    """Run the heartbeat loop on a daemon thread (used by the API process)."""
    global _thread

    if _thread is not None and _thread.is_alive():
        return _thread
    _thread = threading.Thread(target=start, kwargs={"tick_sec": tick_sec}, name="heartbeat", daemon=True)
    _thread.start()
    return _thread


def stop():
    """Stop the heartbeat loop gracefully."""
    global running, _thread

    if not running:
        logger.debug("Heartbeat not running")
        return

    running = False
    if shutdown_event:
        shutdown_event.set()

    if _thread is not None and _thread is not threading.current_thread():
        _thread.join(timeout=2.0)
        _thread = None


def should_run_task(name: str, task_info: Dict) -> bool:
    """Check if a task should run this cycle."""
    if task_info["last_run"] is None:
        return True  # Run immediately if never run

    elapsed = time.monotonic() - task_info["last_run"]
    return elapsed >= task_info["interval"]


def run_task(name: str, task_info: Dict):
    """Execute a task and record timing."""
    start_time = time.monotonic()

    try:
        task_info["func"]()
    except Exception as e:
        end_time = time.monotonic()
        # A failed task still waits a full interval before retrying
        task_info["last_run"] = end_time
        logger.log_heartbeat_task(name, start_time, end_time, "failed", {"error": str(e)[:200]})
        raise RuntimeError(f"Task '{name}' failed after {end_time - start_time:.2f}s: {e}")

    end_time = time.monotonic()
    task_info["last_run"] = end_time
    logger.log_heartbeat_task(name, start_time, end_time)


def reset_task(name: str):
    """Reset a task's last_run time to force immediate execution."""
    if name in tasks:
        tasks[name]["last_run"] = None


def get_status():
    """Return current heartbeat status for monitoring."""
    with _tasks_lock:
        snapshot = dict(tasks)
    return {
        "status": "running" if running else "stopped",
        "tasks": {
            name: {
                "interval_sec": info["interval"],
                "last_run": info["last_run"],
                "next_run": info["last_run"] + info["interval"] if info["last_run"] else None
            }
            for name, info in snapshot.items()
        },
    }
