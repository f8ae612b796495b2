"""Package format generators."""

from holo_build.core.tools import ExternalTools
from holo_build.generators.base import Generator
from holo_build.generators.pacman import PacmanGenerator
from holo_build.generators.rpm import RPMGenerator


def get_generator(format_name: str, materialize: bool = False, tools: ExternalTools | None = None) -> Generator:
    """Factory function to create a generator by format name."""
    match format_name:
        case "pacman":
            return PacmanGenerator(materialize=materialize, tools=tools)
        case "rpm":
            return RPMGenerator()
        case _:
            raise ValueError(f"Unknown package format: {format_name!r}. Use 'pacman' or 'rpm'.")


__all__ = ["Generator", "PacmanGenerator", "RPMGenerator", "get_generator"]
