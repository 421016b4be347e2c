from __future__ import annotations

import pytest

from conftest import FakeBackend
from opf_dispatch.backends import BackendRegistry, build_registry, module_available
from opf_dispatch.errors import BackendUnavailableError
from opf_dispatch.formulation import BACKEND_FAMILIES, FAMILY_DC, FAMILY_GENERALIZED_A


class _BrokenProbe(FakeBackend):
    def probe(self) -> bool:
        raise RuntimeError("broken install")


def test_probe_is_cached_until_cleared():
    reg = BackendRegistry()
    b = FakeBackend("fake", FAMILY_DC)
    reg.register(b)

    assert reg.is_available(FAMILY_DC)
    assert reg.is_available(FAMILY_DC)
    reg.availability()
    assert b.probe_calls == 1

    reg.clear_cache()
    assert reg.is_available(FAMILY_DC)
    assert b.probe_calls == 2


def test_availability_covers_every_family():
    reg = BackendRegistry()
    reg.register(FakeBackend("fake", FAMILY_DC, available=False))
    avail = reg.availability()
    assert set(avail) == set(BACKEND_FAMILIES)
    assert not any(avail.values())


def test_register_rejects_duplicates_and_unknown_families():
    reg = BackendRegistry()
    reg.register(FakeBackend("a", FAMILY_GENERALIZED_A))
    with pytest.raises(ValueError, match="already has"):
        reg.register(FakeBackend("b", FAMILY_GENERALIZED_A))

    reg.register(FakeBackend("b", FAMILY_GENERALIZED_A), replace=True)
    assert reg.get(FAMILY_GENERALIZED_A).name == "b"
    assert reg.names() == {FAMILY_GENERALIZED_A: "b"}

    with pytest.raises(ValueError, match="Unknown backend family"):
        reg.register(FakeBackend("c", "quantum"))


def test_replacing_a_backend_drops_cached_availability():
    reg = BackendRegistry()
    reg.register(FakeBackend("a", FAMILY_DC, available=False))
    assert not reg.is_available(FAMILY_DC)
    reg.register(FakeBackend("b", FAMILY_DC, available=True), replace=True)
    assert reg.is_available(FAMILY_DC)


def test_get_missing_family_raises():
    with pytest.raises(BackendUnavailableError):
        BackendRegistry().get(FAMILY_DC)


def test_failing_probe_counts_as_unavailable():
    reg = BackendRegistry()
    reg.register(_BrokenProbe("broken", FAMILY_DC))
    assert reg.is_available(FAMILY_DC) is False


def test_builtin_registry_has_one_backend_per_family():
    reg = build_registry()
    assert sorted(reg.names()) == sorted(BACKEND_FAMILIES)
    assert reg.names()[FAMILY_DC] == "pypsa-highs"
    assert [b.family for b in reg] == list(BACKEND_FAMILIES)


def test_module_available():
    assert module_available("json")
    assert not module_available("opf_dispatch_no_such_module")
