# -*- coding: utf-8 -*-
"""
Preprocessing-decision predictability from scaled document positions

What this module does
---------------------
- Align every scaled layout onto an anchor layout with orthogonal Procrustes
  (rotation/reflection + translation, no rescaling); rows are joined by document id.
- Reshape the aligned layouts into one (n_layouts x 2) trajectory per document.
- For every document x preprocessing decision, fit a logistic regression of the
  decision's 0/1 label on the document's (x, y) trajectory and report the
  misclassification rate.
- Aggregate per decision: mean, sample sd, upper bound (mean + 1.96 sd) and a
  significance flag (upper bound < 0.5).

Notes
-----
- The misclassification rate is IN-SAMPLE: the classifier is fitted and scored on
  the same layouts. It is a fast diagnostic of how much a decision moves documents,
  not a generalization estimate. Do not replace it with a train/test split.
- A decision that is constant across all layouts cannot be fitted; the cell
  degenerates to predicting the single observed class (error 0) and a fit note is
  recorded. Solver convergence warnings are recorded the same way.
"""

from __future__ import annotations
import warnings
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import LogisticRegression

# ----------------------- Tunables -----------------------
Z_CRIT = 1.96                # normal quantile for the upper bound
CHANCE_ERROR = 0.5           # a decision is significant when the upper bound is below this
PROBA_THRESHOLD = 0.5        # round-half-up: p >= threshold -> 1
MAX_ITER = 1000              # lbfgs iterations per cell
N_JOBS = 1                   # joblib workers across documents (1 = serial)

NOTE_CONSTANT = "constant outcome; predicted the single observed class"
NOTE_CONVERGENCE = "solver did not converge; used last iterate"

# ----------------------- Validation -----------------------
def _coords(layout: pd.DataFrame, i: int) -> pd.DataFrame:
    """First two numeric columns of a layout, renamed to x/y and indexed by str ids."""
    if not isinstance(layout, pd.DataFrame):
        raise ValueError(f"Layout {i} must be a pandas DataFrame indexed by document id, got {type(layout).__name__}.")
    num = layout.select_dtypes(include="number")
    if num.shape[1] < 2:
        raise ValueError(f"Layout {i} needs two numeric coordinate columns, found {num.shape[1]}.")
    out = num.iloc[:, :2].astype(float)
    out.columns = ["x", "y"]; out.index = out.index.map(str)
    if out.empty:
        raise ValueError(f"Layout {i} has no documents.")
    if out.index.has_duplicates:
        dup = out.index[out.index.duplicated()].unique().tolist()
        raise ValueError(f"Layout {i} has duplicated document ids: {dup[:5]}")
    if not np.isfinite(out.to_numpy()).all():
        raise ValueError(f"Layout {i} contains non-finite coordinates.")
    return out

def validate_inputs(positions_list: Sequence[pd.DataFrame], preprocessing_choices: pd.DataFrame,
                    anchor: int = 0) -> Tuple[List[pd.DataFrame], pd.DataFrame]:
    """Check every precondition up front; return clean x/y layouts and an int decision matrix."""
    num_dfms = len(positions_list)
    if num_dfms < 2:
        raise ValueError(f"Alignment needs at least 2 layouts, got {num_dfms}.")
    if not -num_dfms <= anchor < num_dfms:
        raise ValueError(f"anchor={anchor} is out of range for {num_dfms} layouts.")
    layouts = [_coords(p, i) for i, p in enumerate(positions_list)]

    ref_ids = set(layouts[anchor].index)
    for i, lay in enumerate(layouts):
        ids = set(lay.index)
        if ids != ref_ids:
            missing = sorted(ref_ids - ids)[:5]; extra = sorted(ids - ref_ids)[:5]
            raise ValueError(f"Layout {i} does not cover the anchor's documents "
                             f"(missing: {missing}, unexpected: {extra}).")

    if not isinstance(preprocessing_choices, pd.DataFrame):
        raise ValueError("preprocessing_choices must be a pandas DataFrame with one column per decision.")
    if len(preprocessing_choices) != num_dfms:
        raise ValueError(f"preprocessing_choices has {len(preprocessing_choices)} rows "
                         f"but there are {num_dfms} layouts.")
    if preprocessing_choices.shape[1] == 0:
        raise ValueError("preprocessing_choices has no decision columns.")
    choices = preprocessing_choices.copy()
    for col in choices.columns:
        vals = pd.to_numeric(choices[col], errors="coerce")
        if vals.isna().any() or not vals.isin([0, 1]).all():
            raise ValueError(f"Decision column '{col}' must contain only 0/1 indicators.")
        choices[col] = vals.astype(int)
    choices.columns = [str(c) for c in choices.columns]
    return layouts, choices.reset_index(drop=True)

# ----------------------- Alignment engine -----------------------
def procrustes_rotate(X: np.ndarray, Y: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Orthogonal Procrustes of Y onto X without scaling (reflections allowed).
    Returns (Yrot, A, t) with Yrot = Y @ A + t minimizing ||X - Yrot||_F.
    """
    X = np.asarray(X, float); Y = np.asarray(Y, float)
    if X.shape != Y.shape or X.ndim != 2 or X.shape[1] != 2:
        raise ValueError("X and Y must be (N,2) with equal N.")
    x_mean = X.mean(axis=0); y_mean = Y.mean(axis=0)
    U, _, Vt = np.linalg.svd((Y - y_mean).T @ (X - x_mean))
    A = U @ Vt
    t = x_mean - y_mean @ A
    return Y @ A + t, A, t

def align_layouts(layouts: Sequence[pd.DataFrame], anchor: int = 0) -> Tuple[pd.Index, List[np.ndarray], pd.DataFrame]:
    """
    Rotate every layout onto the anchor's frame.
    Returns (document ids in canonical sorted order, aligned (ndoc,2) arrays in layout order, diagnostics).
    """
    anchor_pos = layouts[anchor].sort_index(kind="mergesort")
    doc_ids = anchor_pos.index
    X = anchor_pos.to_numpy()
    aligned: List[np.ndarray] = []; rows = []
    for i, lay in enumerate(layouts):
        if i == anchor % len(layouts):
            aligned.append(X.copy())
            rows.append({"layout": i, "anchor": True, "rms": 0.0, "rot_deg": 0.0,
                         "reflected": False, "tx": 0.0, "ty": 0.0})
            continue
        Y = lay.reindex(doc_ids).to_numpy()
        Yrot, A, t = procrustes_rotate(X, Y)
        aligned.append(Yrot)
        rows.append({"layout": i, "anchor": False,
                     "rms": float(np.sqrt(np.mean(np.sum((X - Yrot)**2, axis=1)))),
                     "rot_deg": float(np.degrees(np.arctan2(A[0, 1], A[0, 0]))),
                     "reflected": bool(np.linalg.det(A) < 0),
                     "tx": float(t[0]), "ty": float(t[1])})
    return doc_ids, aligned, pd.DataFrame(rows).set_index("layout")

# ----------------------- Document profiles -----------------------
def build_document_profiles(doc_ids: pd.Index, aligned: Sequence[np.ndarray]) -> Dict[str, pd.DataFrame]:
    """One (n_layouts x 2) x/y table per document, rows in layout order."""
    stack = np.stack(aligned, axis=0)  # (num_dfms, ndoc, 2)
    return {doc: pd.DataFrame(stack[:, j, :], columns=["x", "y"]) for j, doc in enumerate(doc_ids)}

# ----------------------- Predictability estimator -----------------------
def _fit_cell(xy: np.ndarray, outcome: np.ndarray, max_iter: int = MAX_ITER) -> Tuple[float, Optional[str]]:
    """In-sample misclassification rate of outcome ~ x + y (logit), plus an optional fit note."""
    classes = np.unique(outcome)
    if classes.size < 2:
        return 0.0, NOTE_CONSTANT
    note = None
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", ConvergenceWarning)
        # C=inf: unpenalised maximum likelihood, same model as a binomial GLM
        fit = LogisticRegression(C=np.inf, solver="lbfgs", max_iter=max_iter)
        fit.fit(xy, outcome)
    for w in caught:
        if issubclass(w.category, ConvergenceWarning):
            note = NOTE_CONVERGENCE
        else:
            warnings.warn_explicit(w.message, w.category, w.filename, w.lineno)
    proba = fit.predict_proba(xy)[:, list(fit.classes_).index(1)]
    predictions = (proba >= PROBA_THRESHOLD).astype(int)
    return float(np.sum(predictions != outcome)) / len(outcome), note

def _document_errors(doc: str, profile: pd.DataFrame, choices: pd.DataFrame, max_iter: int) -> Tuple[np.ndarray, List[Tuple[str, str, str]]]:
    xy = profile[["x", "y"]].to_numpy()
    errs = np.zeros(choices.shape[1]); notes = []
    for j, col in enumerate(choices.columns):
        try:
            errs[j], note = _fit_cell(xy, choices[col].to_numpy(), max_iter)
        except (ValueError, np.linalg.LinAlgError) as e:
            errs[j], note = float("nan"), f"fit failed: {e}"
        if note is not None:
            notes.append((doc, col, note))
    return errs, notes

def document_prediction_errors(profiles: Dict[str, pd.DataFrame], choices: pd.DataFrame,
                               n_jobs: int = N_JOBS, max_iter: int = MAX_ITER) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Documents x decisions table of misclassification rates, plus fit notes."""
    docs = list(profiles.keys())
    results = Parallel(n_jobs=n_jobs)(delayed(_document_errors)(d, profiles[d], choices, max_iter) for d in docs)
    errors = pd.DataFrame(np.vstack([r[0] for r in results]) if docs else np.zeros((0, choices.shape[1])),
                          index=pd.Index(docs, name="document"), columns=list(choices.columns))
    notes = pd.DataFrame([n for r in results for n in r[1]], columns=["document", "decision", "note"])
    return errors, notes

def summarize_prediction_errors(classification_errors: pd.DataFrame, z: float = Z_CRIT,
                                chance: float = CHANCE_ERROR) -> pd.DataFrame:
    """Per-decision mean, sample sd, upper bound and significance flag."""
    mean_ce = classification_errors.mean(axis=0)
    mean_sd = classification_errors.std(axis=0, ddof=1)
    mean_ub = mean_ce + z * mean_sd
    return pd.DataFrame({"mean_classification_error": mean_ce,
                         "classification_error_sd": mean_sd,
                         "CE_upper_bound": mean_ub,
                         "significant": mean_ub < chance},
                        index=classification_errors.columns)

# ----------------------- Entry -----------------------
def calculate_prediction_errors(positions_list: Sequence[pd.DataFrame], preprocessing_choices: pd.DataFrame,
                                anchor: int = 0, n_jobs: int = N_JOBS, max_iter: int = MAX_ITER,
                                z: float = Z_CRIT, verbose: bool = True) -> Dict[str, object]:
    """
    Predict each preprocessing decision from aligned document positions.

    positions_list: scaled layouts (DataFrames indexed by document id, two numeric columns).
    preprocessing_choices: one row per layout, one 0/1 column per decision.
    anchor: index of the reference layout (default: the first one).
    n_jobs: joblib workers across documents; results match the serial run up to float summation order.

    Returns a dict with mean_classification_error (Series), mean_classification_error_stats,
    document_classification_errors, alignment_diagnostics and fit_notes (DataFrames).
    Errors are in-sample misclassification rates.
    """
    layouts, choices = validate_inputs(positions_list, preprocessing_choices, anchor)
    if verbose:
        print(f"[INFO] {len(layouts)} layouts, {len(layouts[anchor])} documents, "
              f"{choices.shape[1]} decisions (anchor = layout {anchor % len(layouts)})")

    doc_ids, aligned, diagnostics = align_layouts(layouts, anchor)
    profiles = build_document_profiles(doc_ids, aligned)
    classification_errors, notes = document_prediction_errors(profiles, choices, n_jobs=n_jobs, max_iter=max_iter)
    stats = summarize_prediction_errors(classification_errors, z=z)
    mean_ce = stats["mean_classification_error"].copy()

    if verbose:
        if len(notes):
            print(f"[WARN] {len(notes)} degenerate or non-converged fit(s); see fit_notes.")
        print("[INFO] Mean classification errors for each preprocessing decision:\n")
        print(mean_ce.to_string())
    return {"mean_classification_error": mean_ce,
            "mean_classification_error_stats": stats,
            "document_classification_errors": classification_errors,
            "alignment_diagnostics": diagnostics,
            "fit_notes": notes}
