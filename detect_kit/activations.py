from typing import List, Tuple, Union

import numpy as np

from .errors import DegenerateSoftmaxError

ArrayOrFloat = Union[float, np.ndarray]


def sigmoid(x: ArrayOrFloat) -> ArrayOrFloat:
    """
    Logistic function 1 / (1 + exp(-x)).

    Accepts a scalar or an array; scalars come back as Python floats. Evaluated
    through exp(-|x|) so large magnitudes never overflow.
    """

    arr = np.asarray(x, dtype=np.float64)
    e = np.exp(-np.abs(arr))
    out = np.where(arr >= 0, 1.0 / (1.0 + e), e / (1.0 + e))
    if out.ndim == 0:
        return float(out)
    return out


def softmax_rows(logits: np.ndarray, axis: int = -1) -> Tuple[np.ndarray, np.ndarray]:
    """
    Softmax along `axis` for every row at once.

    Returns (probs, valid). A row is invalid when its maximum is not finite
    (NaN, +inf, all -inf) or its normalizer is zero/non-finite; invalid rows
    hold meaningless values and must be ignored by the caller.
    """

    arr = np.asarray(logits, dtype=np.float64)
    peak = arr.max(axis=axis, keepdims=True)
    finite = np.isfinite(peak)
    with np.errstate(invalid="ignore", over="ignore"):
        exps = np.exp(arr - np.where(finite, peak, 0.0))
        totals = exps.sum(axis=axis, keepdims=True)
        valid = finite & np.isfinite(totals) & (totals > 0)
        probs = exps / np.where(valid, totals, 1.0)
    return probs, np.squeeze(valid, axis=axis)


def softmax(values: Union[np.ndarray, List[float]]) -> Union[np.ndarray, List[float]]:
    """
    In-place softmax over a 1-D buffer (max-subtracted for stability).

    Raises DegenerateSoftmaxError and leaves the buffer untouched when the
    maximum is not finite (NaN, +inf, all -inf) or the normalizer is zero.
    """

    arr = np.asarray(values, dtype=np.float64)
    if arr.size == 0:
        raise ValueError("softmax() requires a non-empty sequence.")
    if arr.ndim != 1:
        raise ValueError(f"softmax() expects a 1-D sequence, got shape {arr.shape}.")

    result, valid = softmax_rows(arr)
    if not bool(valid):
        raise DegenerateSoftmaxError(f"softmax input is degenerate (max={np.max(arr)}).")

    if isinstance(values, np.ndarray):
        values[...] = result.astype(values.dtype, copy=False)
    else:
        values[:] = result.tolist()
    return values
