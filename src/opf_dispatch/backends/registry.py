from __future__ import annotations

import logging
import threading

from opf_dispatch.config import DCBackendConfig
from opf_dispatch.errors import BackendUnavailableError
from opf_dispatch.formulation import BACKEND_FAMILIES

from .base import OPFBackend

logger = logging.getLogger(__name__)


class BackendRegistry:
    """
    One backend per backend family, with a cached availability probe.

    Adding a backend is a registration: `registry.register(MyBackend())`.
    Availability of each family is probed on first use and cached until
    `clear_cache()` (or re-registration of that family).
    """

    def __init__(self) -> None:
        self._backends: dict[str, OPFBackend] = {}
        self._available: dict[str, bool] = {}

    def register(self, backend: OPFBackend, *, replace: bool = False) -> None:
        family = str(backend.family)
        if family not in BACKEND_FAMILIES:
            raise ValueError(
                f"Unknown backend family {family!r} for {backend!r}; "
                f"expected one of {BACKEND_FAMILIES}"
            )
        if family in self._backends and not replace:
            raise ValueError(
                f"Backend family {family!r} already has {self._backends[family]!r}; "
                "pass replace=True to override."
            )
        self._backends[family] = backend
        self._available.pop(family, None)
        logger.debug("Registered OPF backend %r", backend)

    def get(self, family: str) -> OPFBackend:
        """Return the backend of `family` (BackendUnavailableError if none is registered)."""
        try:
            return self._backends[family]
        except KeyError:
            raise BackendUnavailableError(family) from None

    def is_available(self, family: str) -> bool:
        if family in self._available:
            return self._available[family]
        backend = self._backends.get(family)
        ok = False
        if backend is not None:
            try:
                ok = bool(backend.probe())
            except Exception:  # noqa: BLE001 - a broken install counts as unavailable
                logger.exception("Availability probe failed for %r", backend)
                ok = False
        self._available[family] = ok
        logger.debug("Backend family %s available=%s", family, ok)
        return ok

    def availability(self) -> dict[str, bool]:
        return {family: self.is_available(family) for family in BACKEND_FAMILIES}

    def names(self) -> dict[str, str]:
        return {family: b.name for family, b in self._backends.items()}

    def clear_cache(self) -> None:
        self._available.clear()

    def __contains__(self, family: object) -> bool:
        return family in self._backends

    def __iter__(self):
        return iter(sorted(self._backends.values(), key=lambda b: BACKEND_FAMILIES.index(b.family)))


_DEFAULT_REGISTRY: BackendRegistry | None = None
_DEFAULT_LOCK = threading.Lock()


def build_registry(dc_cfg: DCBackendConfig | None = None) -> BackendRegistry:
    """New registry with the built-in backends; the DC backend uses `dc_cfg`."""
    from .pypower_pips import builtin_pypower_backends
    from .pypsa_dc import PyPSADCBackend

    reg = BackendRegistry()
    reg.register(PyPSADCBackend(dc_cfg))
    for backend in builtin_pypower_backends():
        reg.register(backend)
    return reg


def default_registry() -> BackendRegistry:
    """Process-wide registry with the built-in backends (built lazily, once)."""
    global _DEFAULT_REGISTRY
    with _DEFAULT_LOCK:
        if _DEFAULT_REGISTRY is None:
            _DEFAULT_REGISTRY = build_registry()
        return _DEFAULT_REGISTRY
