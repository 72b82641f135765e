"""pyhpfem.io.graph"""
from __future__ import annotations

from typing import List, Optional, Tuple

import numpy as np


class ConvergenceGraph:
    """Append-only series of (x, y) pairs, e.g. (ndof, relative error in %)."""

    def __init__(self, name: str = "", x_label: str = "", y_label: str = "error [%]"):
        self.name = name
        self.x_label = x_label
        self.y_label = y_label
        self._values: List[Tuple[float, float]] = []

    def add_values(self, x: float, y: float) -> None:
        self._values.append((float(x), float(y)))

    def __len__(self):
        return len(self._values)

    @property
    def data(self) -> np.ndarray:
        return np.array(self._values, dtype=float).reshape(-1, 2)

    def save(self, filename: str) -> None:
        """Write one ``x y`` row per entry."""
        np.savetxt(filename, self.data, fmt="%.17g")

    def plot(self, ax=None, loglog: bool = True):
        import matplotlib.pyplot as plt

        if ax is None:
            _, ax = plt.subplots()
        data = self.data
        plot = ax.loglog if loglog else ax.plot
        plot(data[:, 0], data[:, 1], "o-", label=self.name or None)
        ax.set_xlabel(self.x_label)
        ax.set_ylabel(self.y_label)
        ax.grid(True, which="both", alpha=0.3)
        if self.name:
            ax.legend()
        return ax


def load_graph(filename: str, name: Optional[str] = None) -> ConvergenceGraph:
    graph = ConvergenceGraph(name or filename)
    for x, y in np.loadtxt(filename, ndmin=2):
        graph.add_values(x, y)
    return graph
