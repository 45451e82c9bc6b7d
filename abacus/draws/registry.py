"""Registry for draw algorithms."""

from abacus.errors import InvalidConfiguration

from .base import DrawAlgorithm
from .power_paired import PowerPairedDraw
from .random_draw import RandomDraw


class DrawRegistry:
    """Registry for managing available draw algorithms."""

    def __init__(self):
        self._algorithms: dict[str, type[DrawAlgorithm]] = {}
        self._register_built_in_algorithms()

    def _register_built_in_algorithms(self):
        self.register(RandomDraw)
        self.register(PowerPairedDraw)

    def register(self, algorithm_class: type[DrawAlgorithm]) -> None:
        """Register a draw algorithm class."""
        instance = algorithm_class()
        self._algorithms[instance.name] = algorithm_class

    def get_algorithm(self, name: str) -> DrawAlgorithm:
        """Get an algorithm instance by name."""
        if name not in self._algorithms:
            raise InvalidConfiguration(
                f"Unknown draw algorithm: {name}. Available: {list(self._algorithms.keys())}"
            )
        return self._algorithms[name]()

    def list_algorithms(self) -> list[str]:
        return list(self._algorithms.keys())

    def get_algorithm_descriptions(self) -> dict[str, str]:
        return {name: cls().description for name, cls in self._algorithms.items()}


# Global registry instance
draw_registry = DrawRegistry()
