"""RISC-V bring-up - orchestration for a bootable RISC-V software stack.

This package drives the external build systems for cross toolchains, the
emulator, the kernel, boot firmware and a minimal root filesystem, in a
fixed, dependency-ordered sequence.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
