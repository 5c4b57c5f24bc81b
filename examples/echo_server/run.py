#!/usr/bin/env python3
"""
Runs the echo server example.

Example usage: ./run.py 10 3 --offline
"""
import argparse
import importlib.util
import logging
import os
from pathlib import Path
import subprocess
import sys


def main():
    parser = argparse.ArgumentParser(description="Runs the echo server example.")
    parser.add_argument("clients", type=int, help="number of simulated client connections")
    parser.add_argument("messages", type=int, help="number of messages sent by each client")
    parser.add_argument("--offline", action="store_true", help="compile with do_transform.py instead of @resumable")
    parser.add_argument("-v", "--verbose", action="store_true", help="log debug messages to stderr")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    this_dir = Path(os.path.dirname(os.path.realpath(__file__)))  # The directory this script is in.
    compiler_dir = this_dir / ".." / ".." / "compiler"
    sys.path.insert(0, str(compiler_dir))

    script_path = this_dir / "echo_server.py"
    if args.offline:
        transformed_path = this_dir / "echo_server_transformed.py"
        with script_path.open("r") as fs, transformed_path.open("w") as ft:
            subprocess.check_call([sys.executable, str(compiler_dir / "do_transform.py")], stdin=fs, stdout=ft)
        script_path = transformed_path

    spec = importlib.util.spec_from_file_location("echo_server", script_path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    result, invocations = module.handler({"clients": args.clients, "messages": args.messages})

    # Assert that result is correct.
    for i in range(args.clients):
        expected = [f"MSG {i}.{j}" for j in range(args.messages)]
        if result[f"client{i}"] != expected:
            sys.exit(f"WRONG RESULT for client{i} -- expected: {expected}, actual: {result[f'client{i}']}")

    print(f"Success: {args.clients} client(s) served in {invocations} invocation(s)")


if __name__ == '__main__':
    main()
