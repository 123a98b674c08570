# run_all.py
# One command for a local demo: HTTP service (+ Kafka ECG consumer) and, optionally,
# an ECG file replayed into Kafka.
#
#   PRODUCER_FILE=data/rest_ecg.csv PRODUCER_FS=250 python run_all.py

import os
import socket
import subprocess
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from hrvstream.config.settings import settings
from hrvstream.utils.logging_utils import get_logger

logger = get_logger(module_name="run_all", logfile_name="run_all.log")

ROOT = Path(__file__).resolve().parent


@dataclass
class Service:
    name: str
    cmd: List[str]
    restart: bool = False
    proc: Optional[subprocess.Popen] = field(default=None, repr=False)

    def launch(self) -> None:
        logger.info("Launching %s: %s", self.name, " ".join(self.cmd))
        self.proc = subprocess.Popen(self.cmd, cwd=str(ROOT), env=os.environ.copy())

    def exit_code(self) -> Optional[int]:
        return None if self.proc is None else self.proc.poll()

    def stop(self, grace_s: float = 3.0) -> None:
        if self.proc is None or self.proc.poll() is not None:
            return
        self.proc.terminate()
        try:
            self.proc.wait(grace_s)
        except subprocess.TimeoutExpired:
            logger.warning("%s ignored SIGTERM, killing pid %d", self.name, self.proc.pid)
            self.proc.kill()


def kafka_reachable(bootstrap: str, timeout_s: float = 30.0) -> bool:
    """Poll the first broker of `bootstrap` until it accepts a TCP connection."""
    broker = bootstrap.split(",")[0].strip()
    host, _, port = broker.rpartition(":") if ":" in broker else (broker, "", "9092")
    address = (host or "localhost", int(port or 9092))

    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        try:
            socket.create_connection(address, timeout=2.0).close()
            return True
        except OSError:
            time.sleep(1.0)
    return False


def build_services(env: Dict[str, str]) -> List[Service]:
    services = [
        Service(
            "api",
            [sys.executable, "-m", "uvicorn", "hrvstream.api.fastapi_app:app",
             "--host", settings.api.host, "--port", str(settings.api.port)],
        )
    ]
    producer_file = env.get("PRODUCER_FILE")
    if producer_file:
        fs = env.get("PRODUCER_FS", str(settings.pipeline.fs))
        services.append(
            Service(
                "producer",
                [sys.executable, "-m", "hrvstream.streaming.ecg_producer", producer_file, "--fs", fs, "--loop"],
                restart=True,
            )
        )
    return services


def main() -> int:
    services = build_services(dict(os.environ))
    try:
        for svc in services:
            if svc.name == "producer" and not kafka_reachable(settings.kafka.bootstrap_servers):
                logger.warning("Kafka at %s not reachable, starting producer anyway",
                               settings.kafka.bootstrap_servers)
            svc.launch()
        print("hrvstream running, CTRL+C to stop")

        while True:
            time.sleep(0.5)
            for svc in services:
                code = svc.exit_code()
                if code is None:
                    continue
                if not svc.restart:
                    logger.error("%s exited with code %d", svc.name, code)
                    return code or 1
                logger.info("%s exited with code %d, relaunching", svc.name, code)
                svc.launch()
    except KeyboardInterrupt:
        return 0
    finally:
        for svc in reversed(services):
            svc.stop()


if __name__ == "__main__":
    sys.exit(main())
