from __future__ import annotations

import json
import os
import signal
import socket
import subprocess
import sys
import tempfile
import time
import urllib.request
from pathlib import Path
from typing import Any

ACCOUNT = "smoke-admin"


def _free_port() -> int:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind(("127.0.0.1", 0))
        return int(sock.getsockname()[1])
    finally:
        sock.close()


def _http_json(
    url: str, *, method: str = "GET", body: dict[str, Any] | None = None, timeout_s: float = 2.0
) -> tuple[int, Any]:
    data = json.dumps(body).encode("utf-8") if body is not None else None
    req = urllib.request.Request(url, data=data, method=method)
    req.add_header("X-Account-Id", ACCOUNT)
    if data is not None:
        req.add_header("Content-Type", "application/json")
    with urllib.request.urlopen(req, timeout=timeout_s) as resp:
        return int(resp.status), json.loads(resp.read().decode("utf-8"))


def main() -> int:
    port = _free_port()
    base = f"http://127.0.0.1:{port}"

    with tempfile.TemporaryDirectory(prefix="itemtree-smoke-") as td:
        db_path = str(Path(td) / "itemtree.db")
        env = os.environ.copy()
        env.update(
            {
                "ITEMTREE_DB_PATH": db_path,
                "ITEMTREE_HOST": "127.0.0.1",
                "ITEMTREE_PORT": str(port),
                "ITEMTREE_DEBUG": "0",
            }
        )

        proc = subprocess.Popen(
            [sys.executable, "-m", "itemtree.main"],
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
        try:
            deadline = time.time() + 8.0
            last_err: str | None = None
            while time.time() < deadline:
                try:
                    status, _ = _http_json(f"{base}/health", timeout_s=0.5)
                    if status == 200:
                        break
                except Exception as exc:  # noqa: BLE001 - smoke script; keep it simple
                    last_err = str(exc)
                    time.sleep(0.1)
            else:
                output = proc.stdout.read() if proc.stdout else ""
                raise SystemExit(
                    f"server did not become healthy within timeout (last_err={last_err})\n{output}"
                )

            status, root = _http_json(f"{base}/items", method="POST", body={"name": "Smoke"})
            if status != 201:
                raise SystemExit(f"POST /items returned {status}")
            _, folder = _http_json(
                f"{base}/items", method="POST", body={"name": "Folder", "parent_id": root["id"]}
            )
            _, doc = _http_json(
                f"{base}/items",
                method="POST",
                body={"name": "Doc", "type": "document", "parent_id": root["id"]},
            )

            status, moved = _http_json(
                f"{base}/items/move",
                method="POST",
                body={"ids": [doc["id"]], "parent_id": folder["id"]},
            )
            if status != 200 or moved["failed"]:
                raise SystemExit(f"move failed: {moved}")

            _, children = _http_json(f"{base}/items/{folder['id']}/children")
            paths = [child["path"] for child in children["items"]]
            if paths != [f"{root['id']}.{folder['id']}.{doc['id']}"]:
                raise SystemExit(f"unexpected children after move: {paths}")

            print("smoke ok")
            return 0
        finally:
            try:
                proc.send_signal(signal.SIGTERM)
            except ProcessLookupError:
                pass
            try:
                proc.wait(timeout=3)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait(timeout=3)


if __name__ == "__main__":
    raise SystemExit(main())
