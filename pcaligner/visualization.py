"""Visualization utilities for ICP results."""

import matplotlib.pyplot as plt
import numpy as np


def plot_convergence(trace, save_path=None, show=False):
    """
    Plot ICP convergence: residual error and per-iteration deltas.

    Args:
        trace: List of TraceEntry from a RegistrationResult
        save_path: Optional path to save the plot
        show: Whether to open an interactive window

    Returns:
        The matplotlib Figure
    """
    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(15, 6))

    iterations = [entry.iteration for entry in trace]
    errors = [entry.residual_error for entry in trace]
    rotation_deltas = np.degrees([entry.rotation_delta for entry in trace])
    translation_deltas = [entry.translation_delta for entry in trace]

    # Plot convergence curve
    ax1.plot(iterations, errors, marker='o', linewidth=2, markersize=4,
             color='#2E86AB', label='Residual Error')
    ax1.set_xlabel('Iteration', fontsize=12)
    ax1.set_ylabel('Residual Error', fontsize=12)
    ax1.set_title('ICP Convergence', fontsize=14, fontweight='bold')
    if errors and min(errors) > 0:
        ax1.set_yscale('log')
    ax1.grid(True, alpha=0.3)
    ax1.legend(loc='best')

    # Deltas between consecutive estimates
    ax2.plot(iterations, rotation_deltas, marker='o', linewidth=2, markersize=4,
             color='red', label='Rotation delta (deg)')
    ax2.plot(iterations, translation_deltas, marker='s', linewidth=2, markersize=4,
             color='green', label='Translation delta')
    ax2.set_xlabel('Iteration', fontsize=12)
    ax2.set_ylabel('Delta', fontsize=12)
    ax2.set_title('Per-iteration Change', fontsize=14, fontweight='bold')
    ax2.grid(True, alpha=0.3)
    ax2.legend(loc='best')

    fig.tight_layout()
    if save_path is not None:
        fig.savefig(save_path, dpi=150)
    if show:
        plt.show()
    return fig
