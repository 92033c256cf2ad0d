import asyncio
import os
import socket
import stat
import zipfile

FAKE_SERVER = """#!/bin/sh
echo "Starting minecraft server version 1.20.4"
echo "Loading properties" >&2
echo "Done (1.234s)! For help, type \\"help\\""
while IFS= read -r line; do
    case "$line" in
        stop)
            echo "Stopping the server"
            exit 0
            ;;
        crash)
            echo "Exception in server tick loop" >&2
            exit 3
            ;;
        *)
            echo "cmd: $line"
            ;;
    esac
done
"""

STUBBORN_SERVER = """#!/bin/sh
echo "Done (0.5s)! For help, type \\"help\\""
while IFS= read -r line; do
    echo "ignored: $line"
done
"""


def write_executable(path: str, content: str) -> str:
    with open(path, "w") as f:
        f.write(content)

    os.chmod(path, os.stat(path).st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    return path


def write_file(path: str, content: str = "") -> str:
    os.makedirs(os.path.dirname(path), exist_ok=True)

    with open(path, "w") as f:
        f.write(content)

    return path


def make_server_dir(root: str, *, jar_name: str = "paper-1.20.4-435.jar", script: str = FAKE_SERVER) -> dict:
    """Lay out a server directory: a placeholder jar, a launch script and a fake java runtime"""
    server_dir = os.path.join(root, "server")
    os.makedirs(server_dir, exist_ok=True)

    return {
        "dir": server_dir,
        "jar": write_file(os.path.join(server_dir, jar_name), "not really a jar"),
        "script": write_executable(os.path.join(server_dir, "start.sh"), script),
        "java": write_executable(os.path.join(root, "fake-java"), script),
    }


def make_zip(path: str, members: dict) -> str:
    with zipfile.ZipFile(path, "w") as zf:
        for name, content in members.items():
            zf.writestr(name, content)

    return path


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("0.0.0.0", 0))
        return s.getsockname()[1]


async def wait_for(predicate, timeout: float = 10.0, interval: float = 0.05) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met in time")

        await asyncio.sleep(interval)


def instance_data(**overrides) -> dict:
    data = {
        "name": "survival",
        "core_type": "paper",
        "mc_version": "1.20.4",
        "path": "/srv/survival",
        "jar_path": "/srv/survival/paper.jar",
        "startup_mode": "jar",
        "java_path": "java",
        "max_memory": 4096,
        "min_memory": 1024,
        "port": 25565,
    }
    data.update(overrides)

    return data
