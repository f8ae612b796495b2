"""
holo-build - Cross-distribution system package compiler.

Builds RPM and Pacman packages from a single abstract package description
without a distribution-specific toolchain.
"""

__version__ = "1.0.0"


def __getattr__(name: str):
    """Lazy import for heavy dependencies."""
    if name == "PackageBuilder":
        from holo_build.core.build import PackageBuilder

        return PackageBuilder
    if name == "Package":
        from holo_build.models.package import Package

        return Package
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["PackageBuilder", "Package", "__version__"]
