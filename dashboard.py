"""
Dashboard Module
================
Report figures for droplet measurements.
Uses matplotlib with a non-interactive backend (file output only).
"""

import os
from typing import Optional

import cv2
import numpy as np
import pandas as pd
import matplotlib
matplotlib.use('Agg')  # Non-interactive backend for file output
import matplotlib.pyplot as plt
from matplotlib.gridspec import GridSpec

from config import PipelineConfig
from contour_detector import ContourDetector


class MeasurementDashboard:
    """
    Generates visualization figures for tension measurements.

    Can produce:
    - Single-photo report (annotated droplet + measured values)
    - Batch summary (tension per image, failures marked)
    """

    def __init__(self, config: PipelineConfig, output_dir: str = "./results/figures"):
        self.config = config
        self.output_dir = output_dir
        os.makedirs(output_dir, exist_ok=True)

        # Style settings
        plt.rcParams.update({
            'figure.facecolor': '#1a1a2e',
            'axes.facecolor': '#16213e',
            'axes.edgecolor': '#e2e2e2',
            'axes.labelcolor': '#e2e2e2',
            'text.color': '#e2e2e2',
            'xtick.color': '#e2e2e2',
            'ytick.color': '#e2e2e2',
            'grid.color': '#2a2a4a',
            'font.size': 10,
        })

    def plot_measurement(self, image: np.ndarray, result,
                         save_path: Optional[str] = None) -> plt.Figure:
        """
        Plot the annotated photo next to a table of measured values.

        Args:
            image: The photo that was measured (BGR or grayscale).
            result: MeasurementResult from MeasurementPipeline.measure.
        """
        fig = plt.figure(figsize=(12, 6))
        gs = GridSpec(1, 2, width_ratios=[2, 1], figure=fig)

        ax_img = fig.add_subplot(gs[0])
        if result.ok:
            detector = ContourDetector(self.config)
            shown = detector.annotate_image(image, result.contour, result.dimensions.extent)
        else:
            shown = image
        if shown.ndim == 3:
            shown = cv2.cvtColor(shown, cv2.COLOR_BGR2RGB)
            ax_img.imshow(shown)
        else:
            ax_img.imshow(shown, cmap='gray')
        ax_img.set_title(result.display_text, color='#00d4ff')
        ax_img.axis('off')

        ax_table = fig.add_subplot(gs[1])
        ax_table.axis('off')
        record = result.to_record()
        rows = []
        for key in ['width_mm', 'height_mm', 'scale_mm_per_px', 'density_kg_m3',
                    'tension_mn_per_m', 'point_count', 'error']:
            value = record[key]
            if isinstance(value, float):
                value = f'{value:.4g}'
            rows.append([key, '-' if value is None else str(value)])
        table = ax_table.table(cellText=rows, colLabels=['Quantity', 'Value'],
                               loc='center', cellLoc='center')
        table.auto_set_font_size(False)
        table.set_fontsize(9)
        table.scale(1, 1.5)
        for cell in table.get_celld().values():
            cell.set_facecolor('#16213e')
            cell.set_edgecolor('#2a2a4a')
            cell.set_text_props(color='#e2e2e2')

        plt.tight_layout()

        if save_path is None:
            name = os.path.splitext(result.source or 'measurement')[0]
            save_path = os.path.join(self.output_dir, f'measurement_{name}.png')
        fig.savefig(save_path, dpi=150, bbox_inches='tight')

        return fig

    def plot_batch_summary(self, frame: pd.DataFrame, save: bool = True) -> plt.Figure:
        """
        Bar chart of surface tension per image. Failed images get a red
        marker at zero.
        """
        n = max(1, len(frame))
        fig, ax = plt.subplots(figsize=(max(6, 0.5 * n + 2), 5))
        fig.suptitle('Surface Tension per Image', fontsize=14,
                     fontweight='bold', color='#00d4ff')

        if not frame.empty:
            x = np.arange(len(frame))
            ok = (frame['status'] == 'success').to_numpy()
            values = frame['tension_mn_per_m'].astype(float).fillna(0.0).to_numpy()

            ax.bar(x[ok], values[ok], color='#00d4ff', alpha=0.8, edgecolor='white')
            if (~ok).any():
                ax.scatter(x[~ok], np.zeros((~ok).sum()), marker='x',
                           color='#ff4d4d', s=60, label='Measurement failed')
                ax.legend(fontsize=8)
            ax.set_xticks(x)
            ax.set_xticklabels([str(name) for name in frame['image']],
                               rotation=45, ha='right', fontsize=7)

            if ok.any():
                mean = values[ok].mean()
                ax.axhline(mean, color='#ffcc00', linestyle='--', linewidth=1)
                ax.text(0.99, 0.95, f'mean {mean:.1f} mN/m', transform=ax.transAxes,
                        ha='right', va='top', color='#ffcc00', fontsize=9)

        ax.set_ylabel('Surface Tension (mN/m)')
        ax.grid(True, alpha=0.3, axis='y')
        plt.tight_layout()

        if save:
            path = os.path.join(self.output_dir, 'tension_summary.png')
            fig.savefig(path, dpi=150, bbox_inches='tight')
            print(f"  Saved: {path}")

        return fig
