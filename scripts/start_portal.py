#!/usr/bin/env python3
"""
Startup Script for the OAuth Account Portal

Checks that the authorization API is reachable, launches the portal with
uvicorn, waits for its health check and stops it cleanly on Ctrl+C.
"""

import signal
import socket
import subprocess
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

import httpx

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.portal.config import PORTAL_CONFIG, api_base_url
from src.shared.logging_utils import PortalLogger


class PortalLauncher:
    """Runs the portal process with health checks and graceful shutdown"""

    def __init__(self, config: dict = PORTAL_CONFIG):
        self.logger = PortalLogger("SYSTEM")
        self.config = config
        self.port = config["port"]
        self.health_url = f"http://localhost:{self.port}/health"
        self.process: Optional[subprocess.Popen] = None
        self.shutdown_requested = False

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals gracefully"""
        self.logger.log_portal_message(
            "SYSTEM", "SYSTEM",
            "Shutdown Signal Received",
            {"signal": signum, "timestamp": datetime.now().isoformat()}
        )
        self.shutdown_requested = True
        self.stop()
        sys.exit(0)

    def check_port_available(self) -> bool:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            return sock.connect_ex(("localhost", self.port)) != 0

    def check_api(self) -> bool:
        """
        Probe the authorization API.

        Any HTTP answer counts as reachable; only transport failures do not.
        """
        url = api_base_url(self.config)
        try:
            with httpx.Client() as client:
                response = client.get(f"{url}/users/me", timeout=self.config["api_timeout"])
        except httpx.RequestError as e:
            self.logger.log_error("api_unreachable", str(e), {"api_url": url})
            return False

        self.logger.log_portal_message(
            "SYSTEM", "AUTH-API",
            "API Reachable",
            {"api_url": url, "status_code": response.status_code}
        )
        return True

    def wait_for_health_check(self, timeout: int = 30) -> bool:
        """Wait for the portal to respond to health checks"""
        start_time = time.time()

        while time.time() - start_time < timeout:
            try:
                with httpx.Client() as client:
                    response = client.get(self.health_url, timeout=2)
                if response.status_code == 200:
                    self.logger.log_portal_message(
                        "SYSTEM", "PORTAL",
                        "Health Check Passed",
                        {
                            "url": self.health_url,
                            "response_time": f"{time.time() - start_time:.2f}s"
                        }
                    )
                    return True
            except httpx.RequestError:
                pass

            time.sleep(1)

        return False

    def start(self) -> bool:
        """Start the portal with uvicorn"""
        if not self.check_port_available():
            self.logger.log_error("port_in_use", f"Port {self.port} is already in use", {"port": self.port})
            return False

        if not self.check_api():
            print(f"⚠️  Authorization API at {api_base_url(self.config)} is not reachable.")
            print("   The portal will start, but every page will fail until the API is up.")

        self.process = subprocess.Popen([
            sys.executable, "-m", "uvicorn",
            "src.portal.main:app",
            "--host", self.config["host"],
            "--port", str(self.port),
            "--log-level", "info"
        ])

        if self.wait_for_health_check():
            self.logger.log_startup(self.port, {
                "PID": self.process.pid,
                "API": api_base_url(self.config),
            })
            return True

        self.logger.log_error("health_check_failed", "Portal did not become healthy", {"timeout": "30s"})
        self.stop()
        return False

    def stop(self):
        """Stop the portal process"""
        if not self.process or self.process.poll() is not None:
            return

        print("\n🛑 Stopping portal...")
        self.process.terminate()
        try:
            self.process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            print("  ⚠️  Force killing portal...")
            self.process.kill()
            self.process.wait()
        self.process = None
        print("✅ Portal stopped")

    def run(self):
        """Main run method"""
        if not self.start():
            print("❌ Failed to start the account portal")
            sys.exit(1)

        print(f"🌐 Portal ready at http://localhost:{self.port}")
        print("⚠️  Press Ctrl+C to stop")

        try:
            while not self.shutdown_requested:
                if self.process.poll() is not None:
                    self.logger.log_error("portal_exited", "Portal process died",
                                          {"exit_code": self.process.returncode})
                    sys.exit(1)
                time.sleep(1)
        finally:
            self.stop()


def main():
    """Main entry point"""
    if not Path("src").exists():
        print("❌ Error: This script must be run from the project root directory")
        sys.exit(1)

    PortalLauncher().run()


if __name__ == "__main__":
    main()
