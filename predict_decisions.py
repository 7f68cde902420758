# predict_decisions.py
# -*- coding: utf-8 -*-
"""
Command-line runner for prediction_errors.calculate_prediction_errors().

Inputs:
  - a folder of scaled layouts, one CSV/XLSX per preprocessing configuration. The first
    column holds the document id, the next two numeric columns the (x, y) position.
    Files are taken in sorted filename order, which must match the rows of the choices file.
  - a choices CSV/XLSX with one row per layout and one 0/1 column per preprocessing decision.

Outputs (only with --out_dir):
  - decision_summary.csv                 (mean error, sd, upper bound, significant per decision)
  - document_classification_errors.csv   (documents x decisions)
  - alignment_diagnostics.csv            (Procrustes residual/rotation per layout)
  - fit_notes.csv                        (degenerate or non-converged cells)
  - summary.json

Usage examples:
  python predict_decisions.py --positions_dir scaled/ --choices choices.csv
  python predict_decisions.py --positions_dir scaled/ --choices choices.csv --anchor 3 --n_jobs -1 --out_dir outputs/
"""

from __future__ import annotations
import argparse
import json
from pathlib import Path
from typing import List, Optional

import pandas as pd

import prediction_errors as pe

DEFAULT_OUT_DIR = None        # no files written unless --out_dir is given
LAYOUT_SUFFIXES = (".csv", ".xlsx", ".xls")


def _read_table(path: Path, **kwargs) -> pd.DataFrame:
    """Read CSV/XLSX with a few fallback encodings."""
    if path.suffix.lower() in [".xlsx", ".xls"]:
        return pd.read_excel(path, **kwargs)
    for enc in ("utf-8-sig", "utf-8", "gbk", "latin-1"):
        try:
            return pd.read_csv(path, encoding=enc, **kwargs)
        except UnicodeDecodeError:
            continue
    return pd.read_csv(path, **kwargs)


def load_positions(positions_dir: Path) -> List[pd.DataFrame]:
    """Load every layout file under positions_dir (sorted by name), indexed by document id."""
    if not positions_dir.is_dir():
        raise FileNotFoundError(f"Positions folder not found: {positions_dir}")
    files = sorted(p for p in positions_dir.iterdir() if p.suffix.lower() in LAYOUT_SUFFIXES)
    if not files:
        raise FileNotFoundError(f"No CSV/XLSX layouts under {positions_dir}")
    layouts = []
    for p in files:
        df = _read_table(p, index_col=0)
        df.index = df.index.map(str)
        layouts.append(df)
    print(f"[INFO] Loaded {len(layouts)} layouts from {positions_dir}")
    return layouts


def load_choices(path: Path) -> pd.DataFrame:
    """Load the decision matrix; a saved index or a leading label column is dropped."""
    if not path.exists():
        raise FileNotFoundError(f"Choices file not found: {path}")
    df = _read_table(path)
    df = df.loc[:, [not str(c).startswith("Unnamed") for c in df.columns]]
    if df.shape[1] > 1 and not pd.api.types.is_numeric_dtype(df.iloc[:, 0]):
        df = df.iloc[:, 1:]
    return df


def _save_json(obj: dict, path: Path) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, ensure_ascii=False)


def save_results(results: dict, out_dir: Path) -> None:
    out_dir.mkdir(parents=True, exist_ok=True)
    stats = results["mean_classification_error_stats"]
    stats.to_csv(out_dir / "decision_summary.csv", index_label="decision", encoding="utf-8-sig")
    results["document_classification_errors"].to_csv(out_dir / "document_classification_errors.csv",
                                                     index_label="document", encoding="utf-8-sig")
    results["alignment_diagnostics"].to_csv(out_dir / "alignment_diagnostics.csv", encoding="utf-8-sig")
    results["fit_notes"].to_csv(out_dir / "fit_notes.csv", index=False, encoding="utf-8-sig")
    summary = {
        "n_documents": int(len(results["document_classification_errors"])),
        "n_layouts": int(len(results["alignment_diagnostics"])),
        "n_fit_notes": int(len(results["fit_notes"])),
        "evaluation": "in-sample",
        "decisions": {str(k): {"mean_classification_error": float(r["mean_classification_error"]),
                               "classification_error_sd": float(r["classification_error_sd"]),
                               "CE_upper_bound": float(r["CE_upper_bound"]),
                               "significant": bool(r["significant"])}
                      for k, r in stats.iterrows()},
    }
    _save_json(summary, out_dir / "summary.json")
    print(f"[OK] Saved prediction errors -> {out_dir}")


def run(positions_dir: Path, choices_path: Path, anchor: int = 0, n_jobs: int = pe.N_JOBS,
        max_iter: int = pe.MAX_ITER, z: float = pe.Z_CRIT,
        out_dir: Optional[Path] = DEFAULT_OUT_DIR, verbose: bool = True) -> dict:
    layouts = load_positions(positions_dir)
    choices = load_choices(choices_path)
    results = pe.calculate_prediction_errors(layouts, choices, anchor=anchor, n_jobs=n_jobs,
                                           max_iter=max_iter, z=z, verbose=verbose)
    if out_dir is not None:
        save_results(results, out_dir)
    return results


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        description="Estimate how predictable each preprocessing decision is from aligned document positions."
    )
    parser.add_argument("--positions_dir", type=str, required=True,
                        help="Folder with one layout CSV/XLSX per preprocessing configuration (sorted by name).")
    parser.add_argument("--choices", type=str, required=True,
                        help="CSV/XLSX with one row per layout and one 0/1 column per decision.")
    parser.add_argument("--anchor", type=int, default=0,
                        help="Index of the reference layout (default: 0, the first file).")
    parser.add_argument("--n_jobs", type=int, default=pe.N_JOBS,
                        help="joblib workers across documents (default: 1, serial).")
    parser.add_argument("--max_iter", type=int, default=pe.MAX_ITER,
                        help="Solver iterations per logistic fit.")
    parser.add_argument("--z", type=float, default=pe.Z_CRIT,
                        help="Normal quantile for the upper bound (default: 1.96).")
    parser.add_argument("--out_dir", type=str, default=DEFAULT_OUT_DIR,
                        help="Folder to save CSV/JSON results. Nothing is written if omitted.")
    parser.add_argument("--quiet", action="store_true", help="Suppress the per-decision summary.")
    args = parser.parse_args(argv)

    if args.max_iter <= 0:
        parser.error(f"--max_iter must be positive, got {args.max_iter}")
    if args.z <= 0:
        parser.error(f"--z must be positive, got {args.z}")
    max_iter, z = args.max_iter, args.z
    if z != pe.Z_CRIT:
        print(f"[INFO] Z_CRIT = {z:.3f}")

    out_dir = Path(args.out_dir).resolve() if args.out_dir else None
    return run(Path(args.positions_dir), Path(args.choices), anchor=args.anchor,
               n_jobs=args.n_jobs, max_iter=max_iter, z=z, out_dir=out_dir, verbose=not args.quiet)


if __name__ == "__main__":
    main()
