"""pyhpfem.io.visualization"""
import os
from typing import Optional, Sequence

import numpy as np
import matplotlib.pyplot as plt
from matplotlib.collections import LineCollection

from pyhpfem.fem.projection import element_values

# --- Style definitions ---
_SLN_COLOR = "tab:blue"
_REF_COLOR = "tab:orange"
_EXACT_COLOR = "black"
_ELEM_EDGE = "0.4"


def _sample(space, eq=0, sln=0, points_per_element=20):
    xs, us = [], []
    for e in space.active_elements():
        x = np.linspace(e.x1, e.x2, points_per_element)
        u, _ = element_values(e, x, sln)
        xs.append(x)
        us.append(np.real(u[eq]))
    return np.concatenate(xs), np.concatenate(us)


def plot_solution(space, *, eq=0, sln=0, ax=None, label=None, color=_SLN_COLOR,
                  points_per_element=20, show_elements=True, exact_sol=None, show=False):
    """Plot one solution component of ``space``.

    Args:
        space (Space): Space whose active elements hold the solution.
        eq (int): Equation (component) to plot.
        sln (int): Solution slot.
        ax (matplotlib.axes.Axes, optional): Axes to draw on.
        exact_sol (callable, optional): ``exact(x) -> (values, derivatives)``
            drawn as a dashed reference curve.
        show_elements (bool): Mark element boundaries on the x axis.
    """
    if ax is None:
        _, ax = plt.subplots(figsize=(7, 4))
    x, u = _sample(space, eq, sln, points_per_element)
    ax.plot(x, u, color=color, label=label)
    if exact_sol is not None:
        xe = np.linspace(space.a, space.b, 400)
        ue = np.real([np.atleast_1d(exact_sol(float(xi))[0])[eq] for xi in xe])
        ax.plot(xe, ue, "--", color=_EXACT_COLOR, lw=1, label="exact")
    if show_elements:
        nodes = [e.x1 for e in space.active_elements()] + [space.b]
        ax.plot(nodes, np.zeros(len(nodes)), "|", color=_ELEM_EDGE, ms=10)
    if label or exact_sol is not None:
        ax.legend()
    ax.set_xlabel("x")
    if show:
        plt.show()
    return ax


def plot_mesh(space, *, ax=None, show=False):
    """Draw the active elements as horizontal bars at the height of their degree."""
    if ax is None:
        _, ax = plt.subplots(figsize=(7, 2.5))
    segs = [[(e.x1, e.p), (e.x2, e.p)] for e in space.active_elements()]
    ax.add_collection(LineCollection(segs, colors=_SLN_COLOR, linewidths=4))
    for e in space.active_elements():
        ax.axvline(e.x1, color=_ELEM_EDGE, lw=0.5)
    ax.axvline(space.b, color=_ELEM_EDGE, lw=0.5)
    p_max = max(e.p for e in space.active_elements())
    ax.set_xlim(space.a, space.b)
    ax.set_ylim(0, p_max + 1)
    ax.set_xlabel("x")
    ax.set_ylabel("p")
    if show:
        plt.show()
    return ax


def plot_element_errors(space, err_est_array: Sequence[float], *, ax=None, show=False):
    if ax is None:
        _, ax = plt.subplots(figsize=(7, 2.5))
    elems = list(space.active_elements())
    ax.bar([e.x1 for e in elems], err_est_array, width=[e.length for e in elems],
           align="edge", color=_REF_COLOR, edgecolor=_ELEM_EDGE)
    if np.any(np.asarray(err_est_array) > 0):
        ax.set_yscale("log")
    ax.set_xlabel("x")
    ax.set_ylabel("element error")
    if show:
        plt.show()
    return ax


def adapt_plotting(space, ref_space, step: int, out_dir: str, *,
                   err_est_array: Optional[Sequence[float]] = None, exact_sol=None, eq=0):
    """Save solution / mesh / error plots of one adaptivity step as PNG files."""
    os.makedirs(out_dir, exist_ok=True)
    n_rows = 3 if err_est_array is not None else 2
    fig, axes = plt.subplots(n_rows, 1, figsize=(8, 3 * n_rows), sharex=True)
    plot_solution(ref_space, eq=eq, ax=axes[0], label="reference", color=_REF_COLOR,
                  show_elements=False)
    plot_solution(space, eq=eq, ax=axes[0], label="coarse", exact_sol=exact_sol)
    axes[0].set_title(f"adaptivity step {step}")
    plot_mesh(space, ax=axes[1])
    if err_est_array is not None:
        plot_element_errors(space, err_est_array, ax=axes[2])
    fig.tight_layout()
    path = os.path.join(out_dir, f"step-{step:03d}.png")
    fig.savefig(path)
    plt.close(fig)
    return path
