"""
CLI entry point for dmxpgen.

Plugin mode (what protoc runs; request on stdin, response on stdout):
    protoc --plugin=protoc-gen-dmxp --dmxp_out=targets=go+python:gen/ schema.proto

Standalone mode (descriptor set written by protoc):
    protoc --include_imports --include_source_info \\
        --descriptor_set_out=schema.pb schema.proto
    python3 -m tools.dmxpgen --descriptor-set schema.pb --outdir gen/
"""

import argparse
import os
import sys

from . import __version__
from .log import setup_logging
from .protocol import DecodeError, HostAdapter, generate_from_descriptor_set


def _report(diagnostics):
    for d in diagnostics:
        print(str(d), file=sys.stderr)


def run_plugin(stdin=None, stdout=None) -> int:
    """Serve one protoc plugin exchange. Returns the process exit code."""
    stdin = stdin if stdin is not None else sys.stdin.buffer
    stdout = stdout if stdout is not None else sys.stdout.buffer

    adapter = HostAdapter()
    try:
        response = adapter.handle(stdin.read())
    except DecodeError as e:
        print(f"protoc-gen-dmxp: {e}", file=sys.stderr)
        return 1

    stdout.write(response)
    stdout.flush()

    result = adapter.last_result
    _report(result.warnings)
    return 0 if result.ok else 1


def run_standalone(args) -> int:
    try:
        with open(args.descriptor_set, "rb") as f:
            data = f.read()
    except OSError as e:
        print(f"error: cannot read {args.descriptor_set}: {e.strerror}", file=sys.stderr)
        return 1

    parameter = ",".join(args.parameter or [])
    try:
        result = generate_from_descriptor_set(data, parameter, args.file or ())
    except DecodeError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    _report(result.diagnostics)
    if not result.ok:
        print(f"\n{len(result.errors)} error(s); no files written", file=sys.stderr)
        return 1

    for f in result.files:
        path = os.path.join(args.outdir, f.path)
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "wb") as out:
            out.write(f.data)
        print(f"  wrote {path}")

    targets = sorted({f.target for f in result.files})
    print(f"\nGenerated {len(result.files)} files for "
          f"{len(targets)} target(s): {', '.join(targets) or 'none'}")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="protoc-gen-dmxp",
        description="dmxp IPC binding generator (protoc plugin). Without "
                    "--descriptor-set, reads a CodeGeneratorRequest from stdin."
    )
    parser.add_argument("--descriptor-set",
                        help="Input FileDescriptorSet (protoc --descriptor_set_out)")
    parser.add_argument("--outdir", default=".", help="Output directory")
    parser.add_argument("--parameter", action="append",
                        help="Generator parameter, e.g. targets=go+python (repeatable)")
    parser.add_argument("--file", action="append",
                        help="Proto file to generate (repeatable; default: every "
                             "file no other file imports)")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args(argv)

    setup_logging(args.log_level)

    if args.descriptor_set:
        return run_standalone(args)
    return run_plugin()


if __name__ == "__main__":
    sys.exit(main())
