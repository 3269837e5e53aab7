"""Display utilities for before/after comparison."""

import logging
from typing import Optional, Tuple

import matplotlib.pyplot as plt

from processing.buffer import PixelBuffer


def show_image(buffer: PixelBuffer,
               title: str = "Image",
               figsize: Tuple[int, int] = (10, 8),
               save_path: Optional[str] = None,
               show: bool = True) -> None:
    """Display a pixel buffer using matplotlib.

    Args:
        buffer: Buffer to display
        title: Title for the display window
        figsize: Figure size as (width, height)
        save_path: Optional path to save the displayed image
        show: Whether to open a window
    """
    fig = plt.figure(figsize=figsize)
    plt.imshow(buffer.as_array())
    plt.title(f"{title}\n{buffer.width}x{buffer.height}")
    plt.axis('off')

    _finish(fig, save_path, show)


def show_before_after(before: PixelBuffer,
                      after: PixelBuffer,
                      before_title: str = "Original",
                      after_title: str = "Enhanced",
                      overall_title: str = "Before and After Comparison",
                      save_path: Optional[str] = None,
                      show: bool = True) -> None:
    """Show original and enhanced buffers side by side.

    Both panels share the same display extent so the enhanced image is
    compared at equal size rather than at its larger pixel count.
    """
    fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(15, 7))
    fig.suptitle(overall_title, fontsize=16)

    extent = (0, before.width, before.height, 0)

    ax1.imshow(before.as_array(), extent=extent)
    ax1.set_title(f"{before_title}\n{before.width}x{before.height}")
    ax1.axis('off')

    ax2.imshow(after.as_array(), extent=extent)
    ax2.set_title(f"{after_title}\n{after.width}x{after.height}")
    ax2.axis('off')

    plt.tight_layout()
    _finish(fig, save_path, show)


def _finish(fig, save_path: Optional[str], show: bool) -> None:
    if save_path:
        fig.savefig(save_path, bbox_inches='tight', dpi=150)
        logging.getLogger(__name__).info(f"Display saved to {save_path}")

    if show:
        plt.show()
    plt.close(fig)
