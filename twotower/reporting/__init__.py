"""Plots written alongside the demo report."""

from .plots import save_embedding_projection, save_loss_curves  # noqa: F401
