"""In-memory package catalog, dependency graph, and validator doubles."""

from __future__ import annotations

import threading
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path


class FakeCatalog:
    """Catalog over real package directories created under a temp root."""

    def __init__(
        self,
        root: Path,
        dependencies: Mapping[str, Sequence[str]],
        *,
        files_per_package: int = 1,
    ) -> None:
        self.root = root
        self._dependencies = {name: tuple(deps) for name, deps in dependencies.items()}
        for name in self._dependencies:
            package_dir = root / name
            package_dir.mkdir(parents=True, exist_ok=True)
            for index in range(files_per_package):
                (package_dir / f"file{index}.txt").write_text(f"{name}:{index}\n")

    def package_ids(self) -> Iterable[str]:
        return list(self._dependencies)

    def package_root(self, package_id: str) -> Path:
        return self.root / package_id

    def package_files(self, package_id: str) -> Sequence[Path]:
        return sorted(self.package_root(package_id).glob("*.txt"))

    def dependencies_of(self, package_id: str) -> Sequence[str]:
        return self._dependencies[package_id]


class FakeGraph:
    """Reverse dependency graph derived from declared dependencies."""

    def __init__(self, dependencies: Mapping[str, Sequence[str]]) -> None:
        self._dependents: dict[str, list[str]] = {name: [] for name in dependencies}
        for name, deps in dependencies.items():
            for dep in deps:
                self._dependents.setdefault(dep, []).append(name)

    def dependents_of(self, package_id: str) -> Sequence[str]:
        return tuple(self._dependents.get(package_id, ()))


class CountingValidator:
    """Validator returning a small dict and counting calls per package."""

    def __init__(self, *, failing: Iterable[str] = ()) -> None:
        self.calls: Counter[str] = Counter()
        self.failing = set(failing)
        self._lock = threading.Lock()

    def validate(self, package_id: str) -> dict[str, object]:
        with self._lock:
            self.calls[package_id] += 1
        if package_id in self.failing:
            msg = f"{package_id} is invalid"
            raise ValueError(msg)
        return {"package": package_id, "ok": True}


class ManualClock:
    """Settable clock for age-based expiry tests."""

    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


__all__ = ["CountingValidator", "FakeCatalog", "FakeGraph", "ManualClock"]
