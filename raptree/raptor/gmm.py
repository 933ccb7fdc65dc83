"""Gaussian mixture model fitted with Expectation-Maximization.

## RAG Theory: Why a Mixture Model?

Soft clustering lets a chunk belong to several clusters with different
probabilities: a chunk about "stress and cortisol" can feed both a
"neuroscience" summary and a "health effects" summary. The Bayesian
Information Criterion (BIC) scores each candidate component count so the
orchestrator can pick K without a hand-tuned value (lower BIC = better).

## Numerical Safety

- Every covariance gets GMM_REG_COVAR added to its diagonal before the
  inverse and determinant are taken.
- A singular or non-positive-determinant covariance yields the density floor
  GMM_MIN_DENSITY instead of failing, so one degenerate component cannot
  turn the responsibilities into NaN.
- Densities are combined in log space; the floor is applied in log space too.
"""

import warnings
from typing import Optional

import numpy as np

from raptree.config import (
    GMM_MAX_ITER,
    GMM_MIN_DENSITY,
    GMM_REG_COVAR,
    GMM_TOL,
)
from raptree.raptor.exceptions import InsufficientDataError, NumericDegeneracyWarning

LOG_MIN_DENSITY = np.log(GMM_MIN_DENSITY)


class GaussianMixture:
    """Full-covariance Gaussian mixture.

    Args:
        n_components: Number of mixture components.
        max_iter: Cap on EM iterations.
        tol: Stop once the log-likelihood improves by less than this.
        random_state: Seed for choosing the initial means; None is random.
        reg_covar: Diagonal regularization applied before inversion.

    Attributes (after fit):
        weights_, means_, covariances_: Fitted parameters.
        converged_: True if tol was reached before max_iter.
        n_iter_: Number of EM iterations run.
        lower_bound_: Log-likelihood of the training data after the last step.
    """

    def __init__(
        self,
        n_components: int,
        max_iter: int = GMM_MAX_ITER,
        tol: float = GMM_TOL,
        random_state: Optional[int] = None,
        reg_covar: float = GMM_REG_COVAR,
    ):
        if n_components < 1:
            raise ValueError(f"n_components must be >= 1, got {n_components}")
        self.n_components = n_components
        self.max_iter = max_iter
        self.tol = tol
        self.random_state = random_state
        self.reg_covar = reg_covar

        self.weights_: Optional[np.ndarray] = None
        self.means_: Optional[np.ndarray] = None
        self.covariances_: Optional[np.ndarray] = None
        self.converged_ = False
        self.n_iter_ = 0
        self.lower_bound_ = -np.inf

    def fit(self, data) -> "GaussianMixture":
        """Estimate parameters with EM.

        Raises:
            InsufficientDataError: If there are fewer samples than components.
        """
        data = self._validate(data)
        n_samples = data.shape[0]
        if n_samples < self.n_components:
            raise InsufficientDataError(n_samples, self.n_components)

        self._initialize_parameters(data)

        self.converged_ = False
        prev_log_likelihood = -np.inf
        for iteration in range(1, self.max_iter + 1):
            responsibilities = self._e_step(data)
            self._m_step(data, responsibilities)

            log_likelihood = self._log_likelihood(data)
            self.n_iter_ = iteration
            self.lower_bound_ = log_likelihood
            if abs(log_likelihood - prev_log_likelihood) < self.tol:
                self.converged_ = True
                break
            prev_log_likelihood = log_likelihood

        return self

    def predict_proba(self, data) -> np.ndarray:
        """Responsibilities (n_samples, n_components); parameters untouched."""
        self._check_fitted()
        return self._e_step(self._validate(data))

    def predict(self, data) -> np.ndarray:
        return self.predict_proba(data).argmax(axis=1)

    def bic(self, data) -> float:
        """Bayesian Information Criterion: -2 log L + n_params log n."""
        self._check_fitted()
        data = self._validate(data)
        n_samples, n_features = data.shape
        return float(
            -2 * self._log_likelihood(data) + self._n_parameters(n_features) * np.log(n_samples)
        )

    def _n_parameters(self, n_features: int) -> float:
        k = self.n_components
        weight_params = k - 1
        mean_params = k * n_features
        cov_params = k * n_features * (n_features + 1) / 2
        return weight_params + mean_params + cov_params

    def _initialize_parameters(self, data: np.ndarray) -> None:
        n_samples, n_features = data.shape
        rng = np.random.default_rng(self.random_state)

        self.weights_ = np.full(self.n_components, 1.0 / self.n_components)
        indices = rng.choice(n_samples, size=self.n_components, replace=False)
        self.means_ = data[np.sort(indices)].copy()
        self.covariances_ = np.tile(np.eye(n_features), (self.n_components, 1, 1))

    def _estimate_weighted_log_prob(self, data: np.ndarray) -> np.ndarray:
        """log(weight_k * pdf_k(x_i)) for every sample and component."""
        n_samples, n_features = data.shape
        log_prob = np.empty((n_samples, self.n_components))
        for k in range(self.n_components):
            log_prob[:, k] = self._log_gaussian_pdf(
                data, self.means_[k], self.covariances_[k]
            )
        with np.errstate(divide="ignore"):
            log_weights = np.log(self.weights_)
        return log_prob + log_weights

    def _log_gaussian_pdf(self, data: np.ndarray, mean: np.ndarray, cov: np.ndarray) -> np.ndarray:
        n_features = data.shape[1]
        regularized = cov + self.reg_covar * np.eye(n_features)
        try:
            sign, log_det = np.linalg.slogdet(regularized)
            if sign <= 0 or not np.isfinite(log_det):
                raise np.linalg.LinAlgError("non-positive determinant")
            cov_inv = np.linalg.inv(regularized)
        except np.linalg.LinAlgError:
            warnings.warn(
                "Singular covariance in mixture component, using density floor",
                NumericDegeneracyWarning,
                stacklevel=2,
            )
            return np.full(data.shape[0], LOG_MIN_DENSITY)

        diff = data - mean
        mahalanobis = np.einsum("ij,jk,ik->i", diff, cov_inv, diff)
        return -0.5 * (n_features * np.log(2 * np.pi) + log_det + mahalanobis)

    def _e_step(self, data: np.ndarray) -> np.ndarray:
        weighted = self._estimate_weighted_log_prob(data)
        log_norm = _logsumexp(weighted)
        with np.errstate(invalid="ignore"):
            responsibilities = np.exp(weighted - log_norm[:, np.newaxis])
        # Rows whose every component has zero weight stay all-zero
        return np.nan_to_num(responsibilities, nan=0.0)

    def _m_step(self, data: np.ndarray, responsibilities: np.ndarray) -> None:
        n_samples = data.shape[0]
        for k in range(self.n_components):
            resp = responsibilities[:, k]
            nk = resp.sum()
            if nk < 1e-10:
                continue  # Empty component keeps its previous parameters

            self.weights_[k] = nk / n_samples
            self.means_[k] = resp @ data / nk
            diff = data - self.means_[k]
            self.covariances_[k] = (resp[:, np.newaxis] * diff).T @ diff / nk

    def _log_likelihood(self, data: np.ndarray) -> float:
        per_sample = _logsumexp(self._estimate_weighted_log_prob(data))
        return float(np.maximum(per_sample, LOG_MIN_DENSITY).sum())

    def _validate(self, data) -> np.ndarray:
        data = np.asarray(data, dtype=float)
        if data.ndim != 2 or data.shape[0] == 0:
            raise ValueError(f"Expected a non-empty 2D array, got shape {data.shape}")
        return data

    def _check_fitted(self) -> None:
        if self.means_ is None:
            raise RuntimeError("GaussianMixture must be fitted before use")


def _logsumexp(values: np.ndarray) -> np.ndarray:
    """Row-wise log(sum(exp(values))) without overflow."""
    row_max = values.max(axis=1)
    safe_max = np.where(np.isfinite(row_max), row_max, 0.0)
    with np.errstate(divide="ignore"):
        return safe_max + np.log(np.exp(values - safe_max[:, np.newaxis]).sum(axis=1))
