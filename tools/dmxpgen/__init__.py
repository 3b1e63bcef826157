"""
dmxpgen: protoc plugin that generates DMXP shared-memory IPC bindings.

Reads protobuf descriptors annotated with dmxp channel options, builds a
language-neutral model of channels and message shapes, and emits client
code for C++, Go, Python and Rust that talks to the dmxp transport.
"""

__version__ = "0.3.0"
