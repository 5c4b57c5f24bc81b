#!/usr/bin/env python3
"""Takes Python source code from standard input and prints code with compiled resumable blocks to standard output."""
import argparse
import ast
import logging
import sys

import astor

from cotransform import transform


def main():
    parser = argparse.ArgumentParser(description="Resumable-block compiler")
    parser.add_argument("--list-steps", action="store_true",
                        help="Print the resume points of every resumable block instead of the transformed code.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug messages to stderr.")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    source = sys.stdin.read()
    mod = ast.parse(source)
    transformed, blocks = transform(mod)

    if args.list_steps:
        for block in blocks:
            print(f"{block.func_name} (line {block.lineno}), block {block.index}:")
            for point in block.points:
                print(f"  step {point.step}: {point.kind} at line {point.node.lineno}")
        return

    print(astor.to_source(transformed))  # Print out resulting AST as code.


if __name__ == '__main__':
    main()
