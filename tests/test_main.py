"""
Tests for the command line entry point.
"""

from pathlib import Path

import yaml

import main
from tests.conftest import config_dict, write_lines


def write_config(tmp_path, **sections):
    path = tmp_path / "adapt.yaml"
    data = config_dict(tmp_path, **sections)
    data["logging"] = {"log_dir": str(tmp_path / "logs")}
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return str(path)


class TestMain:
    """End-to-end runs through main()."""

    def test_init_model_then_adapt(self, tmp_path, vocab_files):
        config = write_config(tmp_path)
        write_lines(tmp_path / "train.src", ["ich bin"])
        write_lines(tmp_path / "train.trg", ["i am"])
        write_lines(tmp_path / "input.src", ["ich bin", "das haus"])

        assert main.main(["--mode", "init-model", "--config", config]) == 0
        assert (tmp_path / "model.pt").exists()

        assert main.main(["--mode", "adapt", "--config", config, "--no-progress"]) == 0
        output = (tmp_path / "output.txt").read_text(encoding="utf-8")
        assert len(output.splitlines()) == 2

    def test_init_model_output_path(self, tmp_path, vocab_files):
        config = write_config(tmp_path)
        target = tmp_path / "models" / "baseline.npz"

        assert main.main(["--mode", "init-model", "--config", config, "--output", str(target)]) == 0
        assert target.exists()

    def test_missing_config_file(self, tmp_path):
        assert main.main(["--config", str(tmp_path / "missing.yaml")]) == 1

    def test_missing_model_fails(self, tmp_path, vocab_files):
        config = write_config(tmp_path)
        write_lines(tmp_path / "train.src", [])
        write_lines(tmp_path / "train.trg", [])
        write_lines(tmp_path / "input.src", ["ich"])

        assert main.main(["--config", config, "--no-progress"]) == 1

    def test_override_from_command_line(self, tmp_path, vocab_files):
        config = write_config(tmp_path)
        assert main.main(["--mode", "init-model", "--config", config,
                          "--set", "model.dim_vocabs=[10, 10, 10]"]) == 1

    def test_script_starts_with_interpreter_line(self):
        first_line = Path(main.__file__).read_text(encoding="utf-8").splitlines()[0]
        assert first_line.startswith("#!")
