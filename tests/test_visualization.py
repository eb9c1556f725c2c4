# test_visualization.py
import matplotlib

matplotlib.use('Agg')

import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402

from pcaligner import PointCloud, plot_convergence, register  # noqa: E402


def test_plot_convergence_saves_figure(grid_cloud, tmp_path):
    reference = PointCloud(grid_cloud.points + np.array([1.0, 0.5]))
    result = register(grid_cloud, reference)
    path = tmp_path / "convergence.png"

    fig = plot_convergence(result.trace, save_path=path)

    assert path.exists()
    assert len(fig.axes) == 2
    plt.close(fig)
