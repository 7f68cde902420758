import json

import pandas as pd
import pytest

import predict_decisions as pdx


def _write_inputs(tmp_path, stretched_layouts):
    positions, choices = stretched_layouts
    pos_dir = tmp_path / "scaled"
    pos_dir.mkdir()
    for i, df in enumerate(positions):
        df.to_csv(pos_dir / f"dfm_{i:02d}.csv", index_label="document")
    (pos_dir / "README.txt").write_text("not a layout", encoding="utf-8")
    choices_path = tmp_path / "choices.csv"
    choices.to_csv(choices_path)  # saved with its RangeIndex
    return pos_dir, choices_path


def test_load_positions_sorted_and_indexed(tmp_path, stretched_layouts) -> None:
    pos_dir, _ = _write_inputs(tmp_path, stretched_layouts)
    layouts = pdx.load_positions(pos_dir)
    assert len(layouts) == 8
    first = stretched_layouts[0][0]
    assert sorted(layouts[0].index) == sorted(first.index)
    assert list(layouts[0].columns) == ["dim1", "dim2"]


def test_load_choices_drops_saved_index(tmp_path, stretched_layouts) -> None:
    _, choices_path = _write_inputs(tmp_path, stretched_layouts)
    choices = pdx.load_choices(choices_path)
    assert list(choices.columns) == ["stretch", "noise"]


def test_load_choices_drops_label_column(tmp_path) -> None:
    path = tmp_path / "choices.csv"
    pd.DataFrame({"config": ["P-N-L", "P-N"], "stem": [1, 0]}).to_csv(path, index=False)
    assert list(pdx.load_choices(path).columns) == ["stem"]


def test_missing_inputs(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        pdx.load_positions(tmp_path / "nope")
    with pytest.raises(FileNotFoundError):
        pdx.load_positions(tmp_path)
    with pytest.raises(FileNotFoundError):
        pdx.load_choices(tmp_path / "choices.csv")


def test_main_writes_results(tmp_path, stretched_layouts, capsys) -> None:
    pos_dir, choices_path = _write_inputs(tmp_path, stretched_layouts)
    out_dir = tmp_path / "out"
    res = pdx.main(["--positions_dir", str(pos_dir), "--choices", str(choices_path),
                    "--out_dir", str(out_dir)])

    for name in ["decision_summary.csv", "document_classification_errors.csv",
                 "alignment_diagnostics.csv", "fit_notes.csv", "summary.json"]:
        assert (out_dir / name).exists(), name

    summary = json.loads((out_dir / "summary.json").read_text(encoding="utf-8"))
    assert summary["n_documents"] == 6 and summary["n_layouts"] == 8
    assert summary["evaluation"] == "in-sample"
    assert summary["decisions"]["stretch"]["significant"] is True
    assert summary["decisions"]["stretch"]["mean_classification_error"] == 0.0

    table = pd.read_csv(out_dir / "decision_summary.csv", index_col=0, encoding="utf-8-sig")
    assert list(table.index) == ["stretch", "noise"]
    assert table.loc["noise", "mean_classification_error"] == pytest.approx(
        res["mean_classification_error"]["noise"])
    assert "[OK] Saved prediction errors" in capsys.readouterr().out


def test_main_quiet_without_out_dir(tmp_path, stretched_layouts, capsys) -> None:
    pos_dir, choices_path = _write_inputs(tmp_path, stretched_layouts)
    res = pdx.main(["--positions_dir", str(pos_dir), "--choices", str(choices_path), "--quiet", "--z", "2.5"])
    out = capsys.readouterr().out
    assert "Mean classification errors" not in out
    assert "[INFO] Z_CRIT = 2.500" in out
    stats = res["mean_classification_error_stats"]
    assert stats.loc["noise", "CE_upper_bound"] == pytest.approx(
        stats.loc["noise", "mean_classification_error"] + 2.5 * stats.loc["noise", "classification_error_sd"])
    assert not (tmp_path / "out").exists()


@pytest.mark.parametrize("flag,value", [("--z", "-1.96"), ("--z", "0"), ("--max_iter", "0")])
def test_main_rejects_non_positive_tunables(tmp_path, stretched_layouts, capsys, flag, value) -> None:
    pos_dir, choices_path = _write_inputs(tmp_path, stretched_layouts)
    with pytest.raises(SystemExit) as exc:
        pdx.main(["--positions_dir", str(pos_dir), "--choices", str(choices_path), flag + "=" + value])
    assert exc.value.code == 2
    assert "must be positive" in capsys.readouterr().err
