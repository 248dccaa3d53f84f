import numpy as np
import pytest

from twotower.reporting import save_embedding_projection, save_loss_curves


def test_save_loss_curves_writes_image(tmp_path):
    path = save_loss_curves(
        {"Classic": [1.0, 0.8, 0.6], "Deep": [1.1, 0.7]},
        output_path=tmp_path / "plots" / "loss.png",
    )

    assert path.exists()
    assert path.stat().st_size > 0


def test_save_loss_curves_rejects_empty_history(tmp_path):
    with pytest.raises(ValueError):
        save_loss_curves({"Classic": []}, output_path=tmp_path / "loss.png")


def test_save_embedding_projection_annotates_subset(tmp_path):
    coords = np.random.default_rng(0).normal(size=(30, 2))
    labels = [f"Item {index}" for index in range(30)]

    path = save_embedding_projection(
        coords, labels=labels, annotate=5, output_path=tmp_path / "projection.png"
    )

    assert path.exists()


@pytest.mark.parametrize("coords", [np.zeros((0, 2)), np.zeros((4, 3))])
def test_save_embedding_projection_validates_coords(tmp_path, coords):
    with pytest.raises(ValueError):
        save_embedding_projection(coords, output_path=tmp_path / "projection.png")
