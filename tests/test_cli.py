"""Tests for the command-line tools."""

import sys
import pytest
import numpy as np
import yaml

from distcarto.cli import deform, points
from distcarto.generators import read_points, write_points


SOURCE = np.array([(0, 0), (10, 0), (0, 10), (10, 10)], dtype=float)


@pytest.fixture
def source_layer(tmp_path):
    path = tmp_path / "source.geojson"
    write_points(path, SOURCE)
    return path


class TestPointsCLI:
    def test_unipolar(self, tmp_path, source_layer, monkeypatch, capsys):
        times = tmp_path / "times.csv"
        np.savetxt(times, [0.0, 5.0, 5.0, 10.0], delimiter=",")
        out = tmp_path / "image.geojson"
        monkeypatch.setattr(sys, "argv", [
            "distcarto-points", str(source_layer), "-o", str(out),
            "--times", str(times), "--reference", "0", "--speed", "1.0",
        ])

        points.main()

        image, _ = read_points(out)
        assert np.allclose(image[1], (5, 0))
        assert np.allclose(image[3], (10 / np.sqrt(2), 10 / np.sqrt(2)))
        assert "Unipolar displacement" in capsys.readouterr().out

    def test_multipolar(self, tmp_path, source_layer, monkeypatch, capsys):
        D = np.hypot(*(SOURCE[:, None, :] - SOURCE[None, :, :]).transpose(2, 0, 1))
        matrix = tmp_path / "durations.csv"
        np.savetxt(matrix, D, delimiter=",")
        out = tmp_path / "image.geojson"
        monkeypatch.setattr(sys, "argv", [
            "distcarto-points", str(source_layer), "-o", str(out), "--durations", str(matrix),
        ])

        points.main()

        image, _ = read_points(out)
        assert np.allclose(image, SOURCE, atol=1e-8)
        assert "Multipolar positioning" in capsys.readouterr().out

    def test_invalid_durations(self, tmp_path, source_layer, monkeypatch):
        times = tmp_path / "times.csv"
        np.savetxt(times, [0.0, -5.0, 5.0, 10.0], delimiter=",")
        monkeypatch.setattr(sys, "argv", [
            "distcarto-points", str(source_layer), "-o", str(tmp_path / "image.geojson"),
            "--times", str(times),
        ])

        with pytest.raises(SystemExit):
            points.main()


class TestDeformCLI:
    def test_run_job(self, tmp_path, source_layer, monkeypatch, capsys):
        write_points(tmp_path / "image.geojson", SOURCE * [2.0, 1.0])
        write_points(tmp_path / "towns.geojson", np.array([(5.0, 5.0), (2.0, 8.0)]))
        job = tmp_path / "job.yaml"
        with open(job, "w") as f:
            yaml.dump({
                "points": {"source": "source.geojson", "image": "image.geojson"},
                "layers": ["towns.geojson"],
                "output_dir": "out",
            }, f)
        monkeypatch.setattr(sys, "argv", ["distcarto-deform", str(job), "--no-progress", "-w", "2"])

        deform.main()

        towns, _ = read_points(tmp_path / "out" / "towns.geojson")
        assert np.allclose(towns, [(10, 5), (4, 8)], atol=1e-8)
        assert "Processed: 1" in capsys.readouterr().out
